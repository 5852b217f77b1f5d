from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from ticker.errors import NetworkError, ProviderRateLimitError
from ticker.schemas.quote import FetchTarget


class CoinGeckoRestClient:
    """Blocking client for the /coins/markets endpoint."""

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        *,
        timeout: float = 15.0,
        session: Optional[Any] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests

    @staticmethod
    def _retry_after_ms(response: Any) -> Optional[int]:
        headers = getattr(response, "headers", None) or {}
        raw = headers.get("Retry-After")
        try:
            seconds = float(raw)
        except (TypeError, ValueError):
            return None
        if seconds < 0:
            return None
        return int(seconds * 1000)

    def get_markets(self, target: FetchTarget) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/coins/markets"
        try:
            response = self.session.get(
                url,
                headers={"Accept": "application/json", "Cache-Control": "no-cache"},
                params={
                    "vs_currency": target.vs_currency,
                    "ids": ",".join(target.ids),
                    "price_change_percentage": "24h",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NetworkError(f"request to {url} failed: {exc}") from exc

        if response.status_code == 429:
            raise ProviderRateLimitError(retry_after_ms=self._retry_after_ms(response))

        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise NetworkError(f"HTTP {response.status_code} for {url}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise NetworkError(f"non-JSON body from {url}") from exc

        if not isinstance(payload, list):
            raise NetworkError(f"unexpected payload shape from {url}: {type(payload).__name__}")
        return payload
