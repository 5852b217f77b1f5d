from __future__ import annotations

from typing import Callable

from pydantic import ValidationError

from ticker.errors import MalformedCacheError
from ticker.schemas.quote import CacheRecord, QuoteItem
from ticker.services.rate_limiter import now_ms
from ticker.services.storage import KeyValueStore

CACHE_KEY = "btc_ticker_data"


class QuoteCache:
    """Single revolving slot holding the last accepted quote batch."""

    def __init__(
        self,
        *,
        store: KeyValueStore,
        freshness_window_ms: int = 5 * 60 * 1000,
        clock_ms: Callable[[], int] = now_ms,
        key: str = CACHE_KEY,
    ) -> None:
        self.store = store
        self.freshness_window_ms = freshness_window_ms
        self.clock_ms = clock_ms
        self.key = key
        self.writes = 0

    @staticmethod
    def _decode(raw: str) -> CacheRecord:
        try:
            return CacheRecord.model_validate_json(raw)
        except (ValidationError, ValueError) as exc:
            raise MalformedCacheError(str(exc)) from exc

    def read(self) -> CacheRecord | None:
        raw = self.store.get(self.key)
        if raw is None:
            return None
        try:
            return self._decode(raw)
        except MalformedCacheError:
            print(f"[CACHE][malformed] key={self.key}", flush=True)
            return None

    def write(self, items: list[QuoteItem]) -> CacheRecord:
        record = CacheRecord(items=[item.model_copy() for item in items], fetched_at_epoch_ms=self.clock_ms())
        # one value per slot so items and timestamp are always replaced together
        self.store.set(self.key, record.model_dump_json(by_alias=True))
        self.writes += 1
        print(f"[CACHE][write] items={len(record.items)} fetched_at={record.fetched_at_epoch_ms}", flush=True)
        return record

    def age_ms(self, record: CacheRecord, now: int | None = None) -> int:
        ref = self.clock_ms() if now is None else now
        return ref - record.fetched_at_epoch_ms

    def is_fresh(self, record: CacheRecord, now: int | None = None) -> bool:
        return self.age_ms(record, now) < self.freshness_window_ms
