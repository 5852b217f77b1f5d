from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from pydantic import ValidationError

from ticker.schemas.quote import RateLimitCounter
from ticker.services.storage import KeyValueStore

RATE_LIMIT_KEY = "coingecko_rate_limit"


def now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """Sliding-window call counter persisted in a shared key-value store.

    Read-modify-write without locking: instances sharing one store may race,
    so the ceiling is advisory rather than a hard guarantee.
    """

    def __init__(
        self,
        *,
        store: KeyValueStore,
        window_ms: int = 60_000,
        max_calls: int = 5,
        buffer_ms: int = 1000,
        cooldown_ms: int = 30_000,
        clock_ms: Callable[[], int] = now_ms,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
        key: str = RATE_LIMIT_KEY,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be >= 1")
        self.store = store
        self.window_ms = window_ms
        self.max_calls = max_calls
        self.buffer_ms = buffer_ms
        self.cooldown_ms = cooldown_ms
        self.clock_ms = clock_ms
        self.sleep_fn = sleep_fn
        self.key = key
        self.waits = 0
        self.cooldowns = 0

    def read_counter(self) -> RateLimitCounter | None:
        raw = self.store.get(self.key)
        if raw is None:
            return None
        try:
            return RateLimitCounter.model_validate_json(raw)
        except (ValidationError, ValueError):
            print(f"[RATE][counter_unreadable] key={self.key}", flush=True)
            return None

    def _write_counter(self, window_start_ms: int, call_count: int) -> RateLimitCounter:
        counter = RateLimitCounter(window_start_epoch_ms=window_start_ms, call_count=call_count)
        self.store.set(self.key, counter.model_dump_json(by_alias=True))
        return counter

    async def admit(self) -> float:
        """Wait until a call is allowed, record it, and return the ms waited."""
        now = self.clock_ms()
        counter = self.read_counter()

        if counter is None or now - counter.window_start_epoch_ms > self.window_ms:
            self._write_counter(now, 1)
            return 0.0

        if counter.call_count < self.max_calls:
            self._write_counter(counter.window_start_epoch_ms, counter.call_count + 1)
            return 0.0

        remaining_ms = max(counter.window_start_epoch_ms + self.window_ms - now, 0)
        wait_ms = remaining_ms + self.buffer_ms
        self.waits += 1
        print(
            f"[RATE][window_full] calls={counter.call_count} max_calls={self.max_calls} wait_ms={wait_ms}",
            flush=True,
        )
        await self.sleep_fn(wait_ms / 1000)
        self._write_counter(self.clock_ms(), 1)
        return float(wait_ms)

    async def on_provider_throttle(self, retry_after_ms: int | None = None) -> float:
        """Provider said 429: reset the window and sit out the cooldown."""
        wait_ms = retry_after_ms if retry_after_ms is not None else self.cooldown_ms
        self.cooldowns += 1
        self._write_counter(self.clock_ms(), 0)
        print(f"[RATE][provider_throttle] cooldown_ms={wait_ms}", flush=True)
        await self.sleep_fn(wait_ms / 1000)
        return float(wait_ms)

    def metrics(self) -> dict:
        counter = self.read_counter()
        return {
            "rate_window_waits": self.waits,
            "rate_provider_cooldowns": self.cooldowns,
            "rate_window_start_ms": counter.window_start_epoch_ms if counter else None,
            "rate_call_count": counter.call_count if counter else 0,
        }
