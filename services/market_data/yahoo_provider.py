# services/market_data/yahoo_provider.py
from __future__ import annotations

import asyncio
import logging
import time
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Tuple, Type

import pandas as pd
from yahooquery import Ticker
from yahooquery import search as yq_search

from services.market_data.base import (
    CompanyProfile,
    DividendRecord,
    MarketDataProvider,
    PricePoint,
    ProviderResult,
    Quote,
    TickerMatch,
)
from utils.common_helpers import normalize_ticker, safe_div, safe_float, safe_int

logger = logging.getLogger(__name__)

# yahooquery only understands its own period tokens
_YQ_PERIODS = {"1m": "1mo", "3m": "3mo", "6m": "6mo", "1y": "1y", "2y": "2y", "5y": "5y"}


def retry(
    fn: Callable[[], Any],
    *,
    attempts: int = 2,
    delay: float = 0.4,
    backoff: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
) -> Any:
    """
    Retry a blocking call with exponential backoff (crumb/CSRF hiccups are common).
    Raises RuntimeError (chained) if all attempts fail.
    """
    attempts = max(1, attempts)
    err: BaseException | None = None
    for i in range(attempts):
        try:
            return fn()
        except exceptions as e:
            err = e
            if i < attempts - 1:
                time.sleep(delay * (backoff ** i))
    raise RuntimeError(f"retry failed after {attempts} attempts") from err


def _ensure_symbol_dict(obj: Any, sym: str) -> Dict[str, Any]:
    """
    yahooquery can return strings, lists, or dicts not keyed by symbol.
    Normalize to a dict (or {}) for the symbol.
    """
    if isinstance(obj, dict):
        if sym in obj:
            return obj[sym] if isinstance(obj[sym], dict) else {}
        return obj
    return {}


def _ticker(sym: str) -> Ticker:
    return Ticker(sym, asynchronous=False, formatted=False, validate=False)


def _history_frame(df: Any, sym: str) -> pd.DataFrame:
    """Flatten the (symbol, date) MultiIndex frame yahooquery returns into plain columns."""
    if df is None or not isinstance(df, pd.DataFrame) or df.empty:
        return pd.DataFrame()

    df = df.reset_index()
    if "symbol" in df.columns:
        df = df[df["symbol"].astype(str).str.upper() == sym]
    if "index" in df.columns and "date" not in df.columns:
        df = df.rename(columns={"index": "date"})
    if "date" not in df.columns:
        return pd.DataFrame()

    df["date"] = pd.to_datetime(df["date"], utc=True, errors="coerce")
    return df.dropna(subset=["date"]).sort_values("date")


# ---------------------------
# Blocking fetchers (run in a worker thread)
# ---------------------------
def _fetch_quote(sym: str) -> Quote | None:
    tq = _ticker(sym)
    price = _ensure_symbol_dict(retry(lambda: tq.price), sym)
    detail = _ensure_symbol_dict(retry(lambda: tq.summary_detail), sym)
    if not price:
        return None

    current = safe_float(price.get("regularMarketPrice") or detail.get("regularMarketPrice"))
    previous = safe_float(price.get("regularMarketPreviousClose") or detail.get("previousClose"))
    change = safe_float(price.get("regularMarketChange"))
    if change is None and current is not None and previous is not None:
        change = current - previous

    return Quote(
        ticker=sym,
        name=price.get("shortName") or price.get("longName") or sym,
        price=current or 0.0,
        change=change or 0.0,
        # derived from the raw change so the fraction convention never depends on Yahoo's formatting
        change_percent=safe_div(change, previous) or 0.0,
        day_high=safe_float(price.get("regularMarketDayHigh") or detail.get("dayHigh")),
        day_low=safe_float(price.get("regularMarketDayLow") or detail.get("dayLow")),
        open=safe_float(price.get("regularMarketOpen") or detail.get("open")),
        previous_close=previous,
        volume=safe_float(price.get("regularMarketVolume") or detail.get("volume")),
        market_cap=safe_float(detail.get("marketCap") or price.get("marketCap")),
        pe_ratio=safe_float(detail.get("trailingPE")),
        dividend_yield=safe_float(detail.get("dividendYield")),
        week52_high=safe_float(detail.get("fiftyTwoWeekHigh")),
        week52_low=safe_float(detail.get("fiftyTwoWeekLow")),
        source="yahoo",
    )


def _fetch_profile(sym: str) -> CompanyProfile | None:
    tq = _ticker(sym)
    profile = _ensure_symbol_dict(retry(lambda: tq.asset_profile), sym)
    price = _ensure_symbol_dict(retry(lambda: tq.price), sym)
    name = price.get("longName") or price.get("shortName")
    if not profile and not name:
        return None
    hq = ", ".join(p for p in (profile.get("city"), profile.get("state"), profile.get("country")) if p) or None
    return CompanyProfile(
        ticker=sym,
        name=name or "",
        sector=profile.get("sector") or None,
        industry=profile.get("industry") or None,
        description=profile.get("longBusinessSummary") or None,
        website=profile.get("website") or None,
        employees=safe_int(profile.get("fullTimeEmployees")),
        headquarters=hq,
        source="yahoo",
    )


def _fetch_dividends(sym: str) -> List[DividendRecord]:
    tq = _ticker(sym)
    start = (date.today() - timedelta(days=2 * 365)).isoformat()
    df = _history_frame(retry(lambda: tq.dividend_history(start=start)), sym)
    if df.empty or "dividends" not in df.columns:
        return []
    out = [
        DividendRecord(ticker=sym, ex_date=row.date.date().isoformat(), amount=float(row.dividends))
        for row in df.itertuples(index=False)
        if safe_float(row.dividends)
    ]
    out.sort(key=lambda d: d.ex_date, reverse=True)
    return out


def _fetch_history(sym: str, period: str) -> List[PricePoint]:
    tq = _ticker(sym)
    df = _history_frame(retry(lambda: tq.history(period=_YQ_PERIODS.get(period, "1y"), interval="1d")), sym)
    if df.empty or "close" not in df.columns:
        return []
    has_adj = "adjclose" in df.columns
    points: List[PricePoint] = []
    for row in df.itertuples(index=False):
        close = safe_float(getattr(row, "close", None))
        if close is None:
            continue
        points.append(
            PricePoint(
                date=row.date.date().isoformat(),
                open=safe_float(getattr(row, "open", None)),
                high=safe_float(getattr(row, "high", None)),
                low=safe_float(getattr(row, "low", None)),
                close=close,
                volume=safe_float(getattr(row, "volume", None)),
                adjusted_close=safe_float(getattr(row, "adjclose", None)) if has_adj else None,
            )
        )
    return points


def _fetch_search(query: str) -> List[TickerMatch]:
    data = retry(lambda: yq_search(query, quotes_count=10, news_count=0))
    quotes = data.get("quotes") if isinstance(data, dict) else None
    return [
        TickerMatch(
            ticker=normalize_ticker(q.get("symbol")),
            name=q.get("longname") or q.get("shortname") or normalize_ticker(q.get("symbol")),
            exchange=q.get("exchange"),
            sector=q.get("sector"),
        )
        for q in quotes or []
        if isinstance(q, dict) and q.get("symbol")
    ]


class YahooProvider(MarketDataProvider):
    """Keyless Yahoo Finance via yahooquery. The library is blocking, so calls hop to a thread."""

    name = "yahoo"

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Tuple[Any, str | None]:
        try:
            return await asyncio.to_thread(fn, *args), None
        except Exception as e:
            return None, str(e)

    async def get_quote(self, ticker: str) -> ProviderResult[Quote]:
        value, err = await self._run(_fetch_quote, normalize_ticker(ticker))
        if err or value is None:
            return ProviderResult.failure(self.name, err or "empty quote payload")
        return ProviderResult.success(self.name, value)

    async def get_company_info(self, ticker: str) -> ProviderResult[CompanyProfile]:
        value, err = await self._run(_fetch_profile, normalize_ticker(ticker))
        if err or value is None:
            return ProviderResult.failure(self.name, err or "empty profile payload")
        return ProviderResult.success(self.name, value)

    async def get_dividends(self, ticker: str) -> ProviderResult[List[DividendRecord]]:
        value, err = await self._run(_fetch_dividends, normalize_ticker(ticker))
        if err:
            return ProviderResult.failure(self.name, err)
        return ProviderResult.success(self.name, value or [])

    async def get_historical(self, ticker: str, period: str) -> ProviderResult[List[PricePoint]]:
        value, err = await self._run(_fetch_history, normalize_ticker(ticker), period)
        if err:
            return ProviderResult.failure(self.name, err)
        return ProviderResult.success(self.name, value or [])

    async def search(self, query: str) -> ProviderResult[List[TickerMatch]]:
        value, err = await self._run(_fetch_search, query)
        if err:
            return ProviderResult.failure(self.name, err)
        return ProviderResult.success(self.name, value or [])
