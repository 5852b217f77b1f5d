from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ticker.api.routes import router
from ticker.config.settings import Settings, get_settings
from ticker.integrations.coingecko_rest import CoinGeckoRestClient
from ticker.services.fetcher import RetryingFetcher
from ticker.services.quote_cache import QuoteCache
from ticker.services.quote_normalizer import QuoteNormalizer
from ticker.services.rate_limiter import RateLimiter
from ticker.services.storage import build_store
from ticker.services.ticker_orchestrator import TickerOrchestrator


def build_orchestrator(settings: Settings) -> TickerOrchestrator:
    store = build_store(settings.STORE_PATH)
    rate_limiter = RateLimiter(
        store=store,
        window_ms=settings.RATE_LIMIT_WINDOW_MS,
        max_calls=settings.RATE_LIMIT_MAX_CALLS,
        buffer_ms=settings.RATE_LIMIT_BUFFER_MS,
        cooldown_ms=settings.PROVIDER_COOLDOWN_MS,
    )
    fetcher = RetryingFetcher(
        client=CoinGeckoRestClient(settings.PROVIDER_BASE_URL, timeout=settings.REQUEST_TIMEOUT_SEC),
        rate_limiter=rate_limiter,
        max_retries=settings.MAX_RETRIES,
        base_backoff_ms=settings.BASE_BACKOFF_MS,
        max_backoff_ms=settings.MAX_BACKOFF_MS,
        max_jitter_ms=settings.MAX_JITTER_MS,
        request_spacing_ms=settings.REQUEST_SPACING_MS,
        max_throttle_retries=settings.MAX_THROTTLE_RETRIES,
    )
    return TickerOrchestrator(
        fetcher=fetcher,
        quote_cache=QuoteCache(store=store, freshness_window_ms=settings.FRESHNESS_WINDOW_MS),
        normalizer=QuoteNormalizer(
            vs_currency=settings.VS_CURRENCY,
            base_id=settings.BASE_ASSET_ID,
            counter_id=settings.COUNTER_ASSET_ID,
            gold_ids=settings.GOLD_ASSET_IDS,
            gold_price_unit=settings.GOLD_PRICE_UNIT,
            eur_per_usd=settings.EUR_PER_USD,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.get_settings()
    orchestrator = app.state.orchestrator_factory(settings)
    app.state.ticker_orchestrator = orchestrator

    init_task = asyncio.create_task(orchestrator.initialize(), name='ticker-initialize')
    app.state.ticker_init_task = init_task
    app.state.ticker_schedule = orchestrator.schedule_periodic_refresh(
        settings.REFRESH_INTERVAL_MS, immediate=False
    )
    print(f"[TICKER][lifespan_start] interval_ms={settings.REFRESH_INTERVAL_MS}", flush=True)

    try:
        yield
    finally:
        orchestrator.teardown()
        if not init_task.done():
            init_task.cancel()
        print("[TICKER][lifespan_stop]", flush=True)


app = FastAPI(title="Live BTC Ticker", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/v1")

# NOTE: factories are read at startup so tests can swap them before the lifespan runs.
app.state.get_settings = get_settings
app.state.orchestrator_factory = build_orchestrator
