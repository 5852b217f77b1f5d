from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable

from ticker.errors import FetchError, ProviderRateLimitError
from ticker.schemas.quote import FetchTarget
from ticker.services.rate_limiter import RateLimiter


def random_jitter_ms(ceiling_ms: int) -> int:
    if ceiling_ms <= 0:
        return 0
    return random.randrange(ceiling_ms)


class RetryingFetcher:
    """Rate-limited provider call with exponential backoff and jitter."""

    def __init__(
        self,
        *,
        client,
        rate_limiter: RateLimiter,
        max_retries: int = 1,
        base_backoff_ms: int = 3000,
        max_backoff_ms: int = 30_000,
        max_jitter_ms: int = 1000,
        request_spacing_ms: int = 0,
        max_throttle_retries: int = 5,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter_fn: Callable[[int], int] = random_jitter_ms,
    ) -> None:
        self.client = client
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.base_backoff_ms = base_backoff_ms
        self.max_backoff_ms = max_backoff_ms
        self.max_jitter_ms = max_jitter_ms
        self.request_spacing_ms = request_spacing_ms
        self.max_throttle_retries = max_throttle_retries
        self.sleep_fn = sleep_fn
        self.jitter_fn = jitter_fn

        self.network_calls = 0
        self.retries = 0
        self.throttled = 0

    @staticmethod
    def _status_code_from_error(exc: Exception) -> int | None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
        if isinstance(code, int):
            return code
        return None

    def _throttle_signal(self, exc: Exception) -> ProviderRateLimitError | None:
        if isinstance(exc, ProviderRateLimitError):
            return exc
        if self._status_code_from_error(exc) == 429:
            return ProviderRateLimitError(str(exc) or "PROVIDER_RATE_LIMITED")
        return None

    async def _call(self, target: FetchTarget) -> Any:
        if self.request_spacing_ms > 0:
            await self.sleep_fn(self.request_spacing_ms / 1000)
        self.network_calls += 1
        return await asyncio.to_thread(self.client.get_markets, target)

    async def fetch(
        self,
        target: FetchTarget,
        retries: int | None = None,
        backoff_ms: int | None = None,
    ) -> Any:
        attempts_left = self.max_retries if retries is None else retries
        backoff = self.base_backoff_ms if backoff_ms is None else backoff_ms
        throttles = 0

        while True:
            await self.rate_limiter.admit()
            try:
                payload = await self._call(target)
            except Exception as exc:
                throttle = self._throttle_signal(exc)
                if throttle is not None:
                    throttles += 1
                    self.throttled += 1
                    if throttles > self.max_throttle_retries:
                        raise FetchError("provider kept throttling", cause=exc) from exc
                    print(f"[FETCH][throttled] ids={','.join(target.ids)} count={throttles}", flush=True)
                    await self.rate_limiter.on_provider_throttle(throttle.retry_after_ms)
                    continue

                print(
                    f"[FETCH][attempt_failed] ids={','.join(target.ids)} retries_left={attempts_left} error={exc}",
                    flush=True,
                )
                if attempts_left <= 0:
                    raise FetchError(f"fetch failed after retries: {exc}", cause=exc) from exc

                delay_ms = min(backoff, self.max_backoff_ms) + self.jitter_fn(self.max_jitter_ms)
                print(f"[FETCH][retry_wait] delay_ms={delay_ms}", flush=True)
                await self.sleep_fn(delay_ms / 1000)
                attempts_left -= 1
                backoff = min(backoff * 2, self.max_backoff_ms)
                self.retries += 1
                continue

            print(f"[FETCH][ok] ids={','.join(target.ids)}", flush=True)
            return payload

    def metrics(self) -> dict[str, int]:
        return {
            "network_calls": self.network_calls,
            "fetch_retries": self.retries,
            "provider_throttled": self.throttled,
        }
