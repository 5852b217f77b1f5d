from __future__ import annotations


class TickerError(Exception):
    """Base class for quote acquisition failures."""


class NetworkError(TickerError):
    """Connectivity, timeout, non-2xx or undecodable provider response."""


class ProviderRateLimitError(TickerError):
    def __init__(self, message: str = "PROVIDER_RATE_LIMITED", *, retry_after_ms: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class FetchError(TickerError):
    """Retries exhausted; `cause` holds the last underlying failure."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class IncompleteDataError(TickerError):
    def __init__(self, missing_ids: list[str]) -> None:
        super().__init__(f"incomplete data from provider: missing={','.join(missing_ids)}")
        self.missing_ids = list(missing_ids)


class MalformedCacheError(TickerError):
    pass
