# services/market_data/base.py
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


def round2(x: Any) -> Optional[float]:
    """Round money to cents; None/NaN stay None."""
    try:
        if x is None:
            return None
        f = float(x)
        if math.isnan(f) or math.isinf(f):
            return None
        return round(f, 2)
    except (TypeError, ValueError):
        return None


def round4(x: Any) -> Optional[float]:
    try:
        if x is None:
            return None
        f = float(x)
        if math.isnan(f) or math.isinf(f):
            return None
        return round(f, 4)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Quote:
    ticker: str
    name: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0  # fraction: 0.025 means 2.5%
    day_high: Optional[float] = None
    day_low: Optional[float] = None
    open: Optional[float] = None
    previous_close: Optional[float] = None
    volume: Optional[float] = None
    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    dividend_yield: Optional[float] = None
    week52_high: Optional[float] = None
    week52_low: Optional[float] = None
    source: str = "unknown"

    def is_valid(self) -> bool:
        return self.price is not None and self.price > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "name": self.name,
            "price": round2(self.price),
            "change": round2(self.change) or 0.0,
            "changePercent": round4(self.change_percent) or 0.0,
            "dayHigh": round2(self.day_high),
            "dayLow": round2(self.day_low),
            "open": round2(self.open),
            "previousClose": round2(self.previous_close),
            "volume": int(self.volume) if self.volume is not None else None,
            "marketCap": self.market_cap,
            "peRatio": round2(self.pe_ratio),
            "dividendYield": round4(self.dividend_yield),
            "week52High": round2(self.week52_high),
            "week52Low": round2(self.week52_low),
            "source": self.source,
        }


@dataclass(frozen=True)
class CompanyProfile:
    ticker: str
    name: str
    sector: Optional[str] = None
    industry: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    logo: Optional[str] = None
    employees: Optional[int] = None
    headquarters: Optional[str] = None
    founded: Optional[str] = None
    source: str = "unknown"

    def is_valid(self) -> bool:
        return bool((self.name or "").strip())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DividendRecord:
    ticker: str
    ex_date: str  # ISO date
    amount: float
    pay_date: Optional[str] = None
    frequency: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "exDate": self.ex_date,
            "payDate": self.pay_date,
            "amount": round4(self.amount) or 0.0,
            "frequency": self.frequency,
        }


@dataclass(frozen=True)
class PricePoint:
    date: str  # ISO date
    close: float
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    volume: Optional[float] = None
    adjusted_close: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "open": round2(self.open),
            "high": round2(self.high),
            "low": round2(self.low),
            "close": round2(self.close),
            "volume": int(self.volume) if self.volume is not None else None,
            "adjustedClose": round2(self.adjusted_close),
        }


@dataclass(frozen=True)
class TickerMatch:
    ticker: str
    name: str
    exchange: Optional[str] = None
    sector: Optional[str] = None
    price: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "name": self.name,
            "exchange": self.exchange,
            "sector": self.sector,
            "price": round2(self.price),
        }


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    """Typed outcome of one provider call. Providers never raise across the chain."""

    provider: str
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    @classmethod
    def success(cls, provider: str, value: T) -> "ProviderResult[T]":
        return cls(provider=provider, value=value)

    @classmethod
    def failure(cls, provider: str, error: str) -> "ProviderResult[T]":
        return cls(provider=provider, error=error or "unknown error")


class MarketDataProvider:
    """
    One upstream source. Subclasses override what they support; anything
    they do not override reports a failure so the gateway moves on.
    """

    name = "base"

    async def get_quote(self, ticker: str) -> ProviderResult[Quote]:
        return ProviderResult.failure(self.name, "quotes not supported")

    async def get_company_info(self, ticker: str) -> ProviderResult[CompanyProfile]:
        return ProviderResult.failure(self.name, "company info not supported")

    async def get_dividends(self, ticker: str) -> ProviderResult[List[DividendRecord]]:
        return ProviderResult.failure(self.name, "dividends not supported")

    async def get_historical(self, ticker: str, period: str) -> ProviderResult[List[PricePoint]]:
        return ProviderResult.failure(self.name, "history not supported")

    async def search(self, query: str) -> ProviderResult[List[TickerMatch]]:
        return ProviderResult.failure(self.name, "search not supported")

    async def aclose(self) -> None:
        return None


# Period -> calendar days of history requested from providers
PERIOD_DAYS: Dict[str, int] = {
    "1m": 31,
    "3m": 92,
    "6m": 183,
    "1y": 366,
    "2y": 731,
    "5y": 1827,
}


def period_days(period: str) -> int:
    return PERIOD_DAYS.get((period or "1y").lower(), 366)

