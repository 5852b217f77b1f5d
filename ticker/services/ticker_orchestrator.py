from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from ticker.errors import FetchError, IncompleteDataError
from ticker.schemas.quote import CacheRecord, QuoteItem, TickerState
from ticker.services.fetcher import RetryingFetcher
from ticker.services.quote_cache import QuoteCache
from ticker.services.quote_normalizer import QuoteNormalizer, default_items, merge_by_id

REFRESH_FAILED_MESSAGE = "Failed to fetch live data. Using cached data if available."
INITIAL_LOAD_FAILED_MESSAGE = "Failed to load initial data. Using cached data if available."

IDLE = "IDLE"
LOADING = "LOADING"
SUCCEEDED = "SUCCEEDED"
FAILED = "FAILED"

ACTIVE = "ACTIVE"
TORN_DOWN = "TORN_DOWN"

Listener = Callable[[TickerState], None]


class PeriodicRefreshHandle:
    """Cancellable recurring refresh; an in-flight refresh finishes but is not rescheduled."""

    def __init__(
        self,
        orchestrator: "TickerOrchestrator",
        interval_ms: int,
        *,
        immediate: bool = True,
    ) -> None:
        self.orchestrator = orchestrator
        self.interval_ms = interval_ms
        self.immediate = immediate
        self.ticks = 0
        self._cancelled = False
        self._refreshing = False
        self.task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> "PeriodicRefreshHandle":
        self.task = asyncio.create_task(self._run(), name="ticker-periodic-refresh")
        return self

    async def _wait_interval(self) -> None:
        await self.orchestrator.sleep_fn(self.interval_ms / 1000)

    async def _run(self) -> None:
        if not self.immediate and not self._cancelled:
            await self._wait_interval()
        while not self._cancelled and self.orchestrator.active:
            self.ticks += 1
            self._refreshing = True
            try:
                await self.orchestrator.refresh()
            finally:
                self._refreshing = False
            if self._cancelled:
                return
            await self._wait_interval()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        print(f"[TICKER][schedule_cancel] ticks={self.ticks}", flush=True)
        # a running refresh is left to finish
        if self.task is not None and not self._refreshing and not self.task.done():
            self.task.cancel()


class TickerOrchestrator:
    """Owns the refresh lifecycle and the state published to the display layer.

    refresh() is cache-first: a cached batch is published immediately and, when
    still fresh, no network call is made. Failures never escape; they become a
    soft error string next to the last cached items.
    """

    def __init__(
        self,
        *,
        fetcher: RetryingFetcher,
        quote_cache: QuoteCache,
        normalizer: QuoteNormalizer,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.quote_cache = quote_cache
        self.normalizer = normalizer
        self.sleep_fn = sleep_fn

        self.phase = IDLE
        self.last_outcome: str | None = None
        self.lifecycle = ACTIVE
        self._state = TickerState(items=default_items(), is_loading=False)
        self._listeners: list[Listener] = []
        self._schedule: PeriodicRefreshHandle | None = None

        self.refresh_calls = 0
        self.skipped_while_loading = 0
        self.cache_hits = 0
        self.network_refreshes = 0
        self.failures = 0
        self.suppressed_publishes = 0
        self.listener_failures = 0

    @property
    def active(self) -> bool:
        return self.lifecycle == ACTIVE

    @property
    def tracked_ids(self) -> list[str]:
        return [item.id for item in self._state.items]

    def state(self) -> TickerState:
        return self._state.model_copy(deep=True)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, **changes) -> None:
        if not self.active:
            self.suppressed_publishes += 1
            print(f"[TICKER][publish_suppressed] fields={','.join(sorted(changes))}", flush=True)
            return
        self._state = self._state.model_copy(update=changes)
        snapshot = self.state()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                self.listener_failures += 1
                print(f"[TICKER][listener_failed] listener={listener!r} error={exc}", flush=True)

    def _publish_record(self, record: CacheRecord, **extra) -> None:
        self._publish(
            items=merge_by_id(self._state.items, record.items),
            last_updated=record.fetched_at_epoch_ms,
            **extra,
        )

    async def initialize(self) -> None:
        try:
            record = self.quote_cache.read()
            if record is not None:
                print(f"[TICKER][initialize_from_cache] fetched_at={record.fetched_at_epoch_ms}", flush=True)
                self._publish_record(record)
            await self.refresh()
        except Exception as exc:
            print(f"[TICKER][initialize_failed] error={exc}", flush=True)
            self._publish(error=INITIAL_LOAD_FAILED_MESSAGE, is_loading=False)

    async def _fetch_items(self) -> list[QuoteItem]:
        last_exc: Exception | None = None
        for gold_id, target in self.normalizer.targets():
            try:
                payload = await self.fetcher.fetch(target)
                return self.normalizer.normalize(payload, gold_id)
            except (FetchError, IncompleteDataError) as exc:
                print(f"[TICKER][target_failed] gold_id={gold_id} error={exc}", flush=True)
                last_exc = exc
        if last_exc is None:
            raise FetchError("no fetch targets configured")
        raise last_exc

    async def refresh(self) -> None:
        if self.phase == LOADING:
            self.skipped_while_loading += 1
            print("[TICKER][refresh_skip] reason=already_loading", flush=True)
            return
        if not self.active:
            return

        self.refresh_calls += 1
        self.phase = LOADING
        try:
            record = self.quote_cache.read()
            if record is not None:
                if self.quote_cache.is_fresh(record):
                    self._publish_record(record, is_loading=False, error=None)
                    self.cache_hits += 1
                    print(
                        f"[TICKER][cache_fresh] age_ms={self.quote_cache.age_ms(record)} network=0",
                        flush=True,
                    )
                    self.phase = IDLE
                    return
                self._publish_record(record, is_loading=False)

            self._publish(is_loading=True, error=None)
            self.network_refreshes += 1
            items = await self._fetch_items()
            written = self.quote_cache.write(items)
            self._publish_record(written, error=None)
            self.last_outcome = SUCCEEDED
            print(f"[TICKER][refresh_ok] fetched_at={written.fetched_at_epoch_ms}", flush=True)
        except Exception as exc:
            self.failures += 1
            self.last_outcome = FAILED
            print(f"[TICKER][refresh_failed] error={exc}", flush=True)
            self._publish(error=REFRESH_FAILED_MESSAGE)
            try:
                fallback = self.quote_cache.read()
            except Exception as read_exc:
                print(f"[TICKER][cache_fallback_failed] error={read_exc}", flush=True)
                fallback = None
            if fallback is not None:
                self._publish_record(fallback)
        finally:
            if self.phase == LOADING:
                self.phase = IDLE
                self._publish(is_loading=False)

    def schedule_periodic_refresh(self, interval_ms: int, *, immediate: bool = True) -> PeriodicRefreshHandle:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        if self._schedule is not None:
            self._schedule.cancel()
        print(f"[TICKER][schedule_start] interval_ms={interval_ms} immediate={int(immediate)}", flush=True)
        self._schedule = PeriodicRefreshHandle(self, interval_ms, immediate=immediate).start()
        return self._schedule

    def teardown(self) -> None:
        if self._schedule is not None:
            self._schedule.cancel()
            self._schedule = None
        if self.lifecycle == TORN_DOWN:
            return
        self.lifecycle = TORN_DOWN
        self._listeners.clear()
        print("[TICKER][teardown]", flush=True)

    def metrics(self) -> dict:
        out = {
            "phase": self.phase,
            "lifecycle": self.lifecycle,
            "last_outcome": self.last_outcome,
            "refresh_calls": self.refresh_calls,
            "skipped_while_loading": self.skipped_while_loading,
            "cache_hits": self.cache_hits,
            "network_refreshes": self.network_refreshes,
            "failures": self.failures,
            "suppressed_publishes": self.suppressed_publishes,
            "listener_failures": self.listener_failures,
            "cache_writes": self.quote_cache.writes,
        }
        out.update(self.fetcher.metrics())
        out.update(self.fetcher.rate_limiter.metrics())
        return out
