from typing import Literal

from pydantic import BaseModel


class CompareRequest(BaseModel):
    price_1: float
    price_2: float
    investment: float = 1000.0
    currency: Literal["USD", "EUR"] = "USD"


class CompareResult(BaseModel):
    price_1_usd: float
    price_2_usd: float
    btc_1: float
    btc_2: float
    investment_diff: float
    price_diff: float
    percent_diff: float
    better_deal: int
