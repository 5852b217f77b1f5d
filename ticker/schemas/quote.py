from pydantic import BaseModel, ConfigDict, Field


class QuoteItem(BaseModel):
    id: str
    label: str
    price: float | None = None
    change_percent_24h: float | None = None
    unit_symbol: str


class CacheRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[QuoteItem]
    fetched_at_epoch_ms: int = Field(alias="fetchedAtEpochMs")


class RateLimitCounter(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    window_start_epoch_ms: int = Field(alias="windowStartEpochMs")
    call_count: int = Field(alias="callCount", ge=0)


class FetchTarget(BaseModel):
    vs_currency: str
    ids: list[str]


class TickerState(BaseModel):
    items: list[QuoteItem]
    is_loading: bool = False
    error: str | None = None
    last_updated: int | None = None
