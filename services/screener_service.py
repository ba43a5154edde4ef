# services/screener_service.py
from __future__ import annotations

import asyncio
import logging
import statistics
from datetime import date, timedelta
from math import sqrt
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config.settings import TTL_SCREENER_SEC, TTL_STOCK_DETAIL_SEC
from models.stock import Stock
from schemas.asset import normalize_ticker_input
from schemas.screener import ScreenerFilters
from services.cache.cache_manager import CacheManager
from services.cache.keys import screener_key, stock_detail_key
from services.errors import InvalidTickerError
from services.market_data.base import round4
from services.market_data.gateway import MarketDataGateway
from utils.common_helpers import parse_date, utcnow

logger = logging.getLogger(__name__)

Json = Dict[str, Any]

POPULAR_LIMIT = 50
CHART_POINTS = 30
VOLATILITY_WINDOW = 30
MIN_POINTS_FOR_VOLATILITY = 20
TRADING_DAYS = 252

_SORT_COLUMNS = {
    "price": Stock.current_price,
    "marketCap": Stock.market_cap,
    "pe": Stock.pe_ratio,
    "dividendYield": Stock.dividend_yield,
    "name": Stock.name,
}


def stock_row(stock: Stock) -> Json:
    return {
        "ticker": stock.ticker,
        "name": stock.name or f"{stock.ticker} Corporation",
        "currentPrice": stock.current_price or 0.0,
        "price": stock.current_price or 0.0,
        "change": stock.day_change or 0.0,
        "changePercent": stock.day_change_percent or 0.0,
        "volume": stock.volume or 0,
        "marketCap": stock.market_cap or 0,
        "sector": stock.sector or "Unknown",
        "peRatio": stock.pe_ratio,
        "dividendYield": stock.dividend_yield,
    }


# ---------------------------
# Stock detail metrics
# ---------------------------
def year_return(closes: Sequence[float], current: float) -> Optional[float]:
    """Fractional return against the close ~250 trading days back (or the oldest close available)."""
    if not closes:
        return None
    base = closes[-250] if len(closes) > 250 else closes[0]
    if not base:
        return None
    return round4((current - base) / base)


def annualized_volatility(closes: Sequence[float]) -> float:
    """Population stdev of the last 30 daily returns, scaled by sqrt(252). 0 with 20 points or fewer."""
    if len(closes) <= MIN_POINTS_FOR_VOLATILITY:
        return 0.0
    window = closes[-VOLATILITY_WINDOW:]
    returns = [(b - a) / a for a, b in zip(window, window[1:]) if a]
    if len(returns) < 2:
        return 0.0
    return round4(sqrt(statistics.pvariance(returns) * TRADING_DAYS))


def range_position(current: float, low: Optional[float], high: Optional[float]) -> float:
    if low is None or high is None or high <= low:
        return 0.5
    return round4((current - low) / (high - low))


def trailing_dividend_sum(dividends: Sequence[Json], today: date) -> float:
    cutoff = today - timedelta(days=365)
    total = 0.0
    for d in dividends:
        ex = parse_date(d.get("exDate"))
        if ex is not None and cutoff < ex <= today:
            total += float(d.get("amount") or 0.0)
    return round(total, 4)


def next_ex_dividend(dividends: Sequence[Json], today: date) -> Optional[str]:
    future = sorted(
        ex for ex in (parse_date(d.get("exDate")) for d in dividends) if ex is not None and ex > today
    )
    return future[0].isoformat() if future else None


class ScreenerService:
    def __init__(
        self,
        gateway: MarketDataGateway,
        cache: CacheManager,
        today: Callable[[], date] = date.today,
    ):
        self.gateway = gateway
        self.cache = cache
        self._today = today
        self._cached_detail = cache.with_cache(self._build_detail, stock_detail_key, TTL_STOCK_DETAIL_SEC)

    # -----------------------
    # Screener
    # -----------------------
    def search(self, db: Session, filters: ScreenerFilters) -> Json:
        key = screener_key(filters.cache_fields())
        hit = self.cache.get(key)
        if hit is not None:
            return hit

        conditions = []
        if filters.min_price is not None:
            conditions.append(Stock.current_price >= filters.min_price)
        if filters.max_price is not None:
            conditions.append(Stock.current_price <= filters.max_price)
        if filters.min_market_cap is not None:
            conditions.append(Stock.market_cap >= filters.min_market_cap)
        if filters.max_market_cap is not None:
            conditions.append(Stock.market_cap <= filters.max_market_cap)
        if filters.min_pe is not None:
            conditions.append(Stock.pe_ratio >= filters.min_pe)
        if filters.max_pe is not None:
            conditions.append(Stock.pe_ratio <= filters.max_pe)
        # Filters take percent, stored yields are fractions
        if filters.min_dividend_yield is not None:
            conditions.append(Stock.dividend_yield >= filters.min_dividend_yield / 100)
        if filters.max_dividend_yield is not None:
            conditions.append(Stock.dividend_yield <= filters.max_dividend_yield / 100)
        if filters.sectors:
            conditions.append(Stock.sector.in_(filters.sectors))

        column = _SORT_COLUMNS[filters.sort_by]
        ordering = column.asc() if filters.sort_order == "asc" else column.desc()

        total = db.scalar(select(func.count()).select_from(Stock).where(*conditions)) or 0
        rows = db.scalars(
            select(Stock)
            .where(*conditions)
            .order_by(column.is_(None), ordering, Stock.ticker.asc())
            .limit(filters.limit)
        ).all()

        result = {"results": [stock_row(s) for s in rows], "total": int(total)}
        self.cache.set(key, result, TTL_SCREENER_SEC)
        return result

    def popular(self, db: Session) -> List[Json]:
        rows = db.scalars(
            select(Stock)
            .where(Stock.market_cap.is_not(None))
            .order_by(Stock.market_cap.desc())
            .limit(POPULAR_LIMIT)
        ).all()
        return [stock_row(s) for s in rows]

    # -----------------------
    # Stock detail
    # -----------------------
    async def stock_detail(self, ticker: str) -> Json:
        try:
            sym = normalize_ticker_input(ticker)
        except ValueError as exc:
            raise InvalidTickerError(str(exc))
        return await self._cached_detail(sym)

    async def _build_detail(self, sym: str) -> Json:
        quote, company, dividends, history = await asyncio.gather(
            self.gateway.get_quote(sym),
            self.gateway.get_company_info(sym),
            self.gateway.get_dividends(sym),
            self.gateway.get_historical_series(sym, "1y"),
        )

        # Placeholder data never lands in the reference table
        if quote.get("source") not in ("synthetic", "snapshot"):
            self.gateway.record_snapshot(quote, company)

        today = self._today()
        price = float(quote.get("price") or 0.0)
        closes = [float(p["close"]) for p in history if p.get("close")]

        week52_high = quote.get("week52High")
        week52_low = quote.get("week52Low")
        if week52_high is None and closes:
            week52_high = max(closes)
        if week52_low is None and closes:
            week52_low = min(closes)

        ordered_divs = sorted(dividends, key=lambda d: d.get("exDate") or "", reverse=True)

        return {
            "ticker": sym,
            "name": quote.get("name") or company.get("name"),
            "sector": company.get("sector"),
            "industry": company.get("industry"),
            "currentPrice": price,
            "change": quote.get("change"),
            "changePercent": quote.get("changePercent"),
            "dayHigh": quote.get("dayHigh"),
            "dayLow": quote.get("dayLow"),
            "open": quote.get("open"),
            "previousClose": quote.get("previousClose"),
            "volume": quote.get("volume"),
            "marketCap": quote.get("marketCap"),
            "peRatio": quote.get("peRatio"),
            "pegRatio": None,
            "priceToBook": None,
            "priceToSales": None,
            "week52High": week52_high,
            "week52Low": week52_low,
            "week52Range": {
                "low": week52_low,
                "high": week52_high,
                "current": price,
                "position": range_position(price, week52_low, week52_high),
            },
            "yearReturn": year_return(closes, price),
            "volatility": annualized_volatility(closes),
            "dividendYield": quote.get("dividendYield"),
            "annualDividend": trailing_dividend_sum(dividends, today),
            "dividendFrequency": ordered_divs[0].get("frequency") if ordered_divs else None,
            "exDividendDate": next_ex_dividend(dividends, today),
            "dividendGrowth": 0,
            "description": company.get("description"),
            "website": company.get("website"),
            "logo": company.get("logo"),
            "employees": company.get("employees"),
            "headquarters": company.get("headquarters"),
            "founded": company.get("founded"),
            "chartData": [{"date": p["date"], "price": p["close"]} for p in history[-CHART_POINTS:]],
            "lastUpdated": utcnow().isoformat(),
            "dataSource": quote.get("source"),
        }
