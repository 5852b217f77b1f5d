from __future__ import annotations

import math
from typing import Any, Iterable

from ticker.errors import IncompleteDataError
from ticker.schemas.quote import FetchTarget, QuoteItem

TROY_OUNCE_GRAMS = 31.1034768

BTC_USD = "btc-usd"
BTC_EUR = "btc-eur"
BTC_ETH = "btc-eth"
GOLD_USD = "gold-usd"


def default_items() -> list[QuoteItem]:
    """The fixed tracked set, in display order, before any price is known."""
    return [
        QuoteItem(id=BTC_USD, label="BTC/USD", unit_symbol="$"),
        QuoteItem(id=BTC_EUR, label="BTC/EUR", unit_symbol="€"),
        QuoteItem(id=BTC_ETH, label="BTC/ETH", unit_symbol="Ξ"),
        QuoteItem(id=GOLD_USD, label="Gold (oz)/USD", unit_symbol="$"),
    ]


def cross_ratio_change(change_base: float, change_counter: float) -> float:
    try:
        value = (change_base - change_counter) / (1 + change_counter / 100)
    except ZeroDivisionError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def merge_by_id(current: Iterable[QuoteItem], incoming: Iterable[QuoteItem]) -> list[QuoteItem]:
    """Overlay incoming values on the current set; ids are never added or dropped."""
    updates = {item.id: item for item in incoming}
    out: list[QuoteItem] = []
    for item in current:
        update = updates.get(item.id)
        if update is None:
            out.append(item.model_copy())
            continue
        out.append(
            item.model_copy(
                update={"price": update.price, "change_percent_24h": update.change_percent_24h}
            )
        )
    return out


def _to_float(value: Any) -> float | None:
    try:
        if value is None or value == "":
            return None
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


class QuoteNormalizer:
    """Turns a /coins/markets payload into the tracked item set."""

    def __init__(
        self,
        *,
        vs_currency: str = "usd",
        base_id: str = "bitcoin",
        counter_id: str = "ethereum",
        gold_ids: list[str] | None = None,
        gold_price_unit: str = "troy_ounce",
        eur_per_usd: float = 0.9,
    ) -> None:
        if gold_price_unit not in ("troy_ounce", "gram"):
            raise ValueError("gold_price_unit must be one of: troy_ounce, gram")
        self.vs_currency = vs_currency
        self.base_id = base_id
        self.counter_id = counter_id
        self.gold_ids = list(gold_ids or ["pax-gold", "gold"])
        if not self.gold_ids:
            raise ValueError("at least one gold id is required")
        self.gold_price_unit = gold_price_unit
        self.eur_per_usd = eur_per_usd

    def targets(self) -> list[tuple[str, FetchTarget]]:
        return [
            (gold_id, FetchTarget(vs_currency=self.vs_currency, ids=[self.base_id, self.counter_id, gold_id]))
            for gold_id in self.gold_ids
        ]

    def normalize(self, payload: list[Any], gold_id: str) -> list[QuoteItem]:
        rows: dict[str, dict] = {}
        for row in payload or []:
            if isinstance(row, dict) and row.get("id"):
                rows[str(row["id"])] = row

        prices: dict[str, float] = {}
        changes: dict[str, float | None] = {}
        missing: list[str] = []
        for asset_id in (self.base_id, self.counter_id, gold_id):
            row = rows.get(asset_id)
            price = _to_float(row.get("current_price")) if row else None
            if price is None or price <= 0:
                missing.append(asset_id)
                continue
            prices[asset_id] = price
            changes[asset_id] = _to_float(row.get("price_change_percentage_24h"))
        if missing:
            raise IncompleteDataError(missing)

        base_price = prices[self.base_id]
        base_change = changes[self.base_id]
        counter_change = changes[self.counter_id]

        gold_price = prices[gold_id]
        if self.gold_price_unit == "gram":
            gold_price *= TROY_OUNCE_GRAMS

        return [
            QuoteItem(id=BTC_USD, label="BTC/USD", price=base_price, change_percent_24h=base_change, unit_symbol="$"),
            QuoteItem(
                id=BTC_EUR,
                label="BTC/EUR",
                price=base_price * self.eur_per_usd,
                change_percent_24h=base_change,
                unit_symbol="€",
            ),
            QuoteItem(
                id=BTC_ETH,
                label="BTC/ETH",
                price=base_price / prices[self.counter_id],
                change_percent_24h=cross_ratio_change(base_change or 0.0, counter_change or 0.0),
                unit_symbol="Ξ",
            ),
            QuoteItem(
                id=GOLD_USD,
                label="Gold (oz)/USD",
                price=gold_price,
                change_percent_24h=changes[gold_id],
                unit_symbol="$",
            ),
        ]
