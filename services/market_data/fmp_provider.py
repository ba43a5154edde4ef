# services/market_data/fmp_provider.py
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


def _first(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    if isinstance(data, dict) and data:
        return data
    return None


def _join(*parts: Any) -> Optional[str]:
    clean = [str(p).strip() for p in parts if p not in (None, "")]
    return ", ".join(clean) or None


class FmpProvider(MarketDataProvider):
    """
    Financial Modeling Prep (v3 REST). Needs FMP_API_KEY.
    Every response is JSON; errors come back as {"Error Message": ...} with 200.
    """

    name = "fmp"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://financialmodelingprep.com/api/v3",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, **params: Any) -> Any:
        r = await self._client.get(f"{self.base_url}/{path.lstrip('/')}", params={**params, "apikey": self.api_key})
        r.raise_for_status()
        data = safe_json(r)
        if isinstance(data, dict) and data.get("Error Message"):
            raise ValueError(str(data["Error Message"]))
        return data

    # -----------------------
    # Quote
    # -----------------------
    async def get_quote(self, ticker: str) -> ProviderResult[Quote]:
        sym = normalize_ticker(ticker)
        try:
            row = _first(await self._get(f"quote/{sym}"))
        except (httpx.HTTPError, ValueError) as e:
            return ProviderResult.failure(self.name, str(e))
        if not row:
            return ProviderResult.failure(self.name, "empty quote payload")

        pct = safe_float(row.get("changesPercentage"))
        quote = Quote(
            ticker=normalize_ticker(row.get("symbol")) or sym,
            name=row.get("name") or sym,
            price=safe_float(row.get("price")) or 0.0,
            change=safe_float(row.get("change")) or 0.0,
            change_percent=(pct / 100.0) if pct is not None else 0.0,
            day_high=safe_float(row.get("dayHigh")),
            day_low=safe_float(row.get("dayLow")),
            open=safe_float(row.get("open")),
            previous_close=safe_float(row.get("previousClose")),
            volume=safe_float(row.get("volume")),
            market_cap=safe_float(row.get("marketCap")),
            pe_ratio=safe_float(row.get("pe")),
            week52_high=safe_float(row.get("yearHigh")),
            week52_low=safe_float(row.get("yearLow")),
            source=self.name,
        )
        return ProviderResult.success(self.name, quote)

    # -----------------------
    # Company profile
    # -----------------------
    async def get_company_info(self, ticker: str) -> ProviderResult[CompanyProfile]:
        sym = normalize_ticker(ticker)
        try:
            row = _first(await self._get(f"profile/{sym}"))
        except (httpx.HTTPError, ValueError) as e:
            return ProviderResult.failure(self.name, str(e))
        if not row:
            return ProviderResult.failure(self.name, "empty profile payload")

        profile = CompanyProfile(
            ticker=normalize_ticker(row.get("symbol")) or sym,
            name=row.get("companyName") or "",
            sector=row.get("sector") or None,
            industry=row.get("industry") or None,
            description=row.get("description") or None,
            website=row.get("website") or None,
            logo=row.get("image") or None,
            employees=safe_int(row.get("fullTimeEmployees")),
            headquarters=_join(row.get("address"), row.get("city"), row.get("state"), row.get("country")),
            founded=row.get("ipoDate") or None,
            source=self.name,
        )
        return ProviderResult.success(self.name, profile)

    # -----------------------
    # Dividends
    # -----------------------
    async def get_dividends(self, ticker: str) -> ProviderResult[List[DividendRecord]]:
        sym = normalize_ticker(ticker)
        try:
            data = await self._get(f"historical-price-full/stock_dividend/{sym}")
        except (httpx.HTTPError, ValueError) as e:
            return ProviderResult.failure(self.name, str(e))

        if not isinstance(data, dict):
            return ProviderResult.failure(self.name, "unexpected dividend payload")
        # Non-payers come back as {} with no "historical" key
        rows = data.get("historical") or []
        if not isinstance(rows, list):
            return ProviderResult.failure(self.name, "malformed dividend history")

        out: List[DividendRecord] = []
        for item in rows:
            ex = item.get("date")
            amount = safe_float(item.get("adjDividend")) or safe_float(item.get("dividend"))
            if not ex or amount is None:
                continue
            out.append(
                DividendRecord(
                    ticker=sym,
                    ex_date=str(ex)[:10],
                    pay_date=(str(item["paymentDate"])[:10] if item.get("paymentDate") else None),
                    amount=amount,
                )
            )
        out.sort(key=lambda d: d.ex_date, reverse=True)
        return ProviderResult.success(self.name, out)

    # -----------------------
    # History
    # -----------------------
    async def get_historical(self, ticker: str, period: str) -> ProviderResult[List[PricePoint]]:
        sym = normalize_ticker(ticker)
        to = date.today()
        frm = to - timedelta(days=period_days(period))
        try:
            data = await self._get(f"historical-price-full/{sym}", **{"from": frm.isoformat(), "to": to.isoformat()})
        except (httpx.HTTPError, ValueError) as e:
            return ProviderResult.failure(self.name, str(e))

        rows = data.get("historical") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            return ProviderResult.failure(self.name, "missing price history")

        points: List[PricePoint] = []
        for item in rows:
            close = safe_float(item.get("close"))
            if not item.get("date") or close is None:
                continue
            points.append(
                PricePoint(
                    date=str(item["date"])[:10],
                    open=safe_float(item.get("open")),
                    high=safe_float(item.get("high")),
                    low=safe_float(item.get("low")),
                    close=close,
                    volume=safe_float(item.get("volume")),
                    adjusted_close=safe_float(item.get("adjClose")),
                )
            )
        # FMP returns newest first
        points.sort(key=lambda p: p.date)
        return ProviderResult.success(self.name, points)

    # -----------------------
    # Search
    # -----------------------
    async def search(self, query: str) -> ProviderResult[List[TickerMatch]]:
        try:
            data = await self._get("search", query=query, limit=10)
        except (httpx.HTTPError, ValueError) as e:
            return ProviderResult.failure(self.name, str(e))
        if not isinstance(data, list):
            return ProviderResult.failure(self.name, "unexpected search payload")

        matches = [
            TickerMatch(
                ticker=normalize_ticker(item.get("symbol")),
                name=item.get("name") or normalize_ticker(item.get("symbol")),
                exchange=item.get("exchangeShortName"),
            )
            for item in data
            if isinstance(item, dict) and item.get("symbol")
        ]
        return ProviderResult.success(self.name, matches)
