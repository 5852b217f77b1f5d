import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field


def _split_csv(raw: str) -> list[str]:
    return [s.strip() for s in raw.split(",") if s.strip()]


class Settings(BaseModel):
    PROVIDER_BASE_URL: str = "https://api.coingecko.com/api/v3"
    VS_CURRENCY: str = "usd"
    BASE_ASSET_ID: str = "bitcoin"
    COUNTER_ASSET_ID: str = "ethereum"
    GOLD_ASSET_IDS: list[str] = Field(default_factory=lambda: ["pax-gold", "gold"], min_length=1, max_length=2)
    GOLD_PRICE_UNIT: Literal["troy_ounce", "gram"] = "troy_ounce"
    EUR_PER_USD: float = Field(0.9, gt=0)
    CALCULATOR_EUR_TO_USD: float = Field(1.09, gt=0)

    FRESHNESS_WINDOW_MS: int = Field(5 * 60 * 1000, gt=0)
    REFRESH_INTERVAL_MS: int = Field(5 * 60 * 1000, gt=0)

    RATE_LIMIT_WINDOW_MS: int = Field(60 * 1000, gt=0)
    RATE_LIMIT_MAX_CALLS: int = Field(5, ge=1)
    RATE_LIMIT_BUFFER_MS: int = Field(1000, ge=0)
    PROVIDER_COOLDOWN_MS: int = Field(30 * 1000, ge=0)
    MAX_THROTTLE_RETRIES: int = Field(5, ge=0)

    MAX_RETRIES: int = Field(1, ge=0)
    BASE_BACKOFF_MS: int = Field(3000, ge=0)
    MAX_BACKOFF_MS: int = Field(30 * 1000, ge=0)
    MAX_JITTER_MS: int = Field(1000, ge=0)
    REQUEST_SPACING_MS: int = Field(500, ge=0)
    REQUEST_TIMEOUT_SEC: float = Field(15.0, gt=0)

    STORE_PATH: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        # only forward variables that are set so model defaults apply otherwise
        raw: dict[str, object] = {}
        for name in cls.model_fields:
            value = os.getenv(f"TICKER_{name}")
            if value is None or value.strip() == "":
                continue
            raw[name] = value.strip()

        if "GOLD_ASSET_IDS" in raw:
            raw["GOLD_ASSET_IDS"] = _split_csv(str(raw["GOLD_ASSET_IDS"]))

        return cls.model_validate(raw)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
