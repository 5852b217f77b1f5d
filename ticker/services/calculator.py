from __future__ import annotations

from ticker.schemas.calculator import CompareResult

DEFAULT_EUR_TO_USD = 1.09


def to_usd(amount: float, currency: str, eur_to_usd: float = DEFAULT_EUR_TO_USD) -> float:
    if currency.upper() == "EUR":
        return amount * eur_to_usd
    return amount


def compare_prices(
    price_1: float | None,
    price_2: float | None,
    investment: float | None,
    currency: str = "USD",
    *,
    eur_to_usd: float = DEFAULT_EUR_TO_USD,
) -> CompareResult | None:
    """Compare buying the same amount at two prices; None when any input is unusable."""
    if not price_1 or not price_2 or not investment:
        return None
    if price_1 <= 0 or price_2 <= 0 or investment <= 0:
        return None

    p1 = to_usd(price_1, currency, eur_to_usd)
    p2 = to_usd(price_2, currency, eur_to_usd)

    btc_1 = investment / p1
    btc_2 = investment / p2
    # both holdings valued at the second price
    investment_diff = btc_1 * p2 - btc_2 * p2
    price_diff = abs(p1 - p2)

    return CompareResult(
        price_1_usd=p1,
        price_2_usd=p2,
        btc_1=btc_1,
        btc_2=btc_2,
        investment_diff=investment_diff,
        price_diff=price_diff,
        percent_diff=price_diff / min(p1, p2) * 100,
        better_deal=1 if investment_diff > 0 else 2,
    )
