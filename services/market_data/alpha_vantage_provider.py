# services/market_data/alpha_vantage_provider.py
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import httpx

from services.market_data.base import (
    CompanyProfile,
    DividendRecord,
    MarketDataProvider,
    PricePoint,
    ProviderResult,
    Quote,
    TickerMatch,
    period_days,
)
from utils.common_helpers import normalize_ticker, safe_float, safe_int, safe_json

logger = logging.getLogger(__name__)

# AV signals throttling and bad keys in-band with HTTP 200
_AV_ERROR_FIELDS = ("Error Message", "Note", "Information")


class AlphaVantageProvider(MarketDataProvider):
    """Alpha Vantage `query?function=...` API. Free tier: 25 calls/day, so it sits after FMP."""

    name = "alpha_vantage"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://www.alphavantage.co/query",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _call(self, function: str, **params: Any) -> Dict[str, Any]:
        r = await self._client.get(self.base_url, params={"function": function, **params, "apikey": self.api_key})
        r.raise_for_status()
        data = safe_json(r)
        if not isinstance(data, dict):
            raise ValueError("non-JSON response")
        for field in _AV_ERROR_FIELDS:
            if data.get(field):
                raise ValueError(str(data[field]))
        return data

    async def get_quote(self, ticker: str) -> ProviderResult[Quote]:
        sym = normalize_ticker(ticker)
        try:
            data = await self._call("GLOBAL_QUOTE", symbol=sym)
        except (httpx.HTTPError, ValueError) as e:
            return ProviderResult.failure(self.name, str(e))

        gq = data.get("Global Quote") or {}
        if not gq or not gq.get("01. symbol"):
            return ProviderResult.failure(self.name, "empty quote payload")

        # "10. change percent" arrives as "1.2345%"
        pct = safe_float(gq.get("10. change percent"))
        quote = Quote(
            ticker=normalize_ticker(gq.get("01. symbol")) or sym,
            name=sym,
            price=safe_float(gq.get("05. price")) or 0.0,
            change=safe_float(gq.get("09. change")) or 0.0,
            change_percent=(pct / 100.0) if pct is not None else 0.0,
            day_high=safe_float(gq.get("03. high")),
            day_low=safe_float(gq.get("04. low")),
            open=safe_float(gq.get("02. open")),
            previous_close=safe_float(gq.get("08. previous close")),
            volume=safe_float(gq.get("06. volume")),
            source=self.name,
        )
        return ProviderResult.success(self.name, quote)

    async def get_company_info(self, ticker: str) -> ProviderResult[CompanyProfile]:
        sym = normalize_ticker(ticker)
        try:
            data = await self._call("OVERVIEW", symbol=sym)
        except (httpx.HTTPError, ValueError) as e:
            return ProviderResult.failure(self.name, str(e))

        if not data.get("Symbol"):
            return ProviderResult.failure(self.name, "empty overview payload")

        hq = ", ".join(p for p in (data.get("Address"), data.get("Country")) if p) or None
        profile = CompanyProfile(
            ticker=normalize_ticker(data.get("Symbol")) or sym,
            name=data.get("Name") or "",
            sector=(data.get("Sector") or "").title() or None,
            industry=(data.get("Industry") or "").title() or None,
            description=data.get("Description") or None,
            employees=safe_int(data.get("FullTimeEmployees")),
            headquarters=hq,
            source=self.name,
        )
        return ProviderResult.success(self.name, profile)

    async def get_dividends(self, ticker: str) -> ProviderResult[List[DividendRecord]]:
        sym = normalize_ticker(ticker)
        try:
            data = await self._call("TIME_SERIES_MONTHLY_ADJUSTED", symbol=sym)
        except (httpx.HTTPError, ValueError) as e:
            return ProviderResult.failure(self.name, str(e))

        series = data.get("Monthly Adjusted Time Series")
        if not isinstance(series, dict):
            return ProviderResult.failure(self.name, "missing monthly series")

        # Monthly bars only say a dividend went ex within the month; the bar date stands in for the ex-date.
        cutoff = (date.today() - timedelta(days=2 * 365)).isoformat()
        out: List[DividendRecord] = []
        for day, values in series.items():
            amount = safe_float((values or {}).get("7. dividend amount"))
            if day < cutoff or not amount:
                continue
            out.append(DividendRecord(ticker=sym, ex_date=day[:10], amount=amount))
        out.sort(key=lambda d: d.ex_date, reverse=True)
        return ProviderResult.success(self.name, out)

    async def get_historical(self, ticker: str, period: str) -> ProviderResult[List[PricePoint]]:
        sym = normalize_ticker(ticker)
        days = period_days(period)
        try:
            data = await self._call(
                "TIME_SERIES_DAILY",
                symbol=sym,
                outputsize="compact" if days <= 100 else "full",
            )
        except (httpx.HTTPError, ValueError) as e:
            return ProviderResult.failure(self.name, str(e))

        series = data.get("Time Series (Daily)")
        if not isinstance(series, dict):
            return ProviderResult.failure(self.name, "missing daily series")

        cutoff = (date.today() - timedelta(days=days)).isoformat()
        points: List[PricePoint] = []
        for day, values in series.items():
            close = safe_float((values or {}).get("4. close"))
            if day < cutoff or close is None:
                continue
            points.append(
                PricePoint(
                    date=day[:10],
                    open=safe_float(values.get("1. open")),
                    high=safe_float(values.get("2. high")),
                    low=safe_float(values.get("3. low")),
                    close=close,
                    volume=safe_float(values.get("5. volume")),
                )
            )
        points.sort(key=lambda p: p.date)
        return ProviderResult.success(self.name, points)

    async def search(self, query: str) -> ProviderResult[List[TickerMatch]]:
        try:
            data = await self._call("SYMBOL_SEARCH", keywords=query)
        except (httpx.HTTPError, ValueError) as e:
            return ProviderResult.failure(self.name, str(e))

        matches = [
            TickerMatch(
                ticker=normalize_ticker(m.get("1. symbol")),
                name=m.get("2. name") or normalize_ticker(m.get("1. symbol")),
                exchange=m.get("4. region"),
            )
            for m in data.get("bestMatches") or []
            if isinstance(m, dict) and m.get("1. symbol")
        ]
        return ProviderResult.success(self.name, matches[:10])
