# services/market_data/gateway.py
from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config.settings import (
    TTL_COMPANY_SEC,
    TTL_DIVIDENDS_SEC,
    TTL_HISTORICAL_SEC,
    TTL_QUOTE_SEC,
    TTL_SEARCH_SEC,
    Settings,
)
from models.stock import Stock
from services.cache.cache_manager import CacheManager
from services.cache.cache_utils import should_cache_non_empty
from services.cache.keys import company_key, dividend_key, historical_key, quote_key, search_key
from services.market_data import synthetic
from services.market_data.alpha_vantage_provider import AlphaVantageProvider
from services.market_data.base import CompanyProfile, MarketDataProvider, ProviderResult, Quote
from services.market_data.fmp_provider import FmpProvider
from services.market_data.yahoo_provider import YahooProvider
from utils.common_helpers import normalize_ticker, utcnow

logger = logging.getLogger(__name__)

Json = Dict[str, Any]


class MarketDataGateway:
    """
    Cache -> providers (strict priority order) -> stocks snapshot -> synthetic.

    Provider errors are logged and swallowed; callers always get data back
    (an empty list for dividends/history when nothing is available).
    """

    def __init__(
        self,
        providers: Iterable[MarketDataProvider],
        cache: CacheManager,
        session_factory: sessionmaker,
        today: Callable[[], date] = date.today,
    ):
        self.providers: List[MarketDataProvider] = list(providers)
        self.cache = cache
        self.session_factory = session_factory
        self._today = today

        # Cached entry points, keyed on the normalized ticker
        self._cached_quote = cache.with_cache(self._resolve_quote, quote_key, TTL_QUOTE_SEC)
        self._cached_company = cache.with_cache(self._resolve_company, company_key, TTL_COMPANY_SEC)
        self._cached_dividends = cache.with_cache(self._resolve_dividends, dividend_key, TTL_DIVIDENDS_SEC)
        self._cached_history = cache.with_cache(
            self._resolve_history, historical_key, TTL_HISTORICAL_SEC, should_cache=should_cache_non_empty
        )
        self._cached_search = cache.with_cache(self._resolve_search, search_key, TTL_SEARCH_SEC)

    async def aclose(self) -> None:
        for provider in self.providers:
            try:
                await provider.aclose()
            except Exception as exc:
                logger.warning("provider close failed provider=%s err=%s", provider.name, exc)

    # -----------------------
    # Provider chain
    # -----------------------
    async def _first_valid(
        self,
        op: str,
        ticker: str,
        call: Callable[[MarketDataProvider], Awaitable[ProviderResult]],
        is_valid: Callable[[Any], bool],
    ) -> Optional[Any]:
        for provider in self.providers:
            try:
                result = await call(provider)
            except Exception as exc:
                result = ProviderResult.failure(provider.name, f"unexpected {type(exc).__name__}: {exc}")

            if result.ok and is_valid(result.value):
                logger.debug("provider hit op=%s provider=%s ticker=%s", op, provider.name, ticker)
                return result.value

            logger.warning(
                "provider failed op=%s provider=%s ticker=%s err=%s",
                op, provider.name, ticker, result.error or "invalid payload",
                extra={"provider": provider.name, "ticker": ticker},
            )
        return None

    # -----------------------
    # Quotes
    # -----------------------
    async def get_quote(self, ticker: str) -> Json:
        return await self._cached_quote(normalize_ticker(ticker))

    async def get_quotes(self, tickers: Iterable[str]) -> Dict[str, Json]:
        """Fan out one get_quote per distinct ticker and join. Failed tickers are left out."""
        unique = list(dict.fromkeys(normalize_ticker(t) for t in tickers if normalize_ticker(t)))
        if not unique:
            return {}
        results = await asyncio.gather(*(self.get_quote(t) for t in unique), return_exceptions=True)
        out: Dict[str, Json] = {}
        for sym, res in zip(unique, results):
            if isinstance(res, BaseException):
                logger.warning("quote resolution failed ticker=%s err=%s", sym, res)
                continue
            out[sym] = res
        return out

    async def _resolve_quote(self, sym: str) -> Json:
        q = await self._first_valid("quote", sym, lambda p: p.get_quote(sym), lambda v: v.is_valid())
        if q is not None:
            payload = q.to_dict()
            self.record_snapshot(payload)
            return payload

        snap = self._snapshot_quote(sym)
        if snap is not None:
            logger.info("quote served from stocks snapshot ticker=%s", sym)
            return snap.to_dict()

        logger.info("quote served from synthetic data ticker=%s", sym)
        return synthetic.quote(sym).to_dict()

    def _load_stock(self, sym: str) -> Optional[Stock]:
        try:
            with self.session_factory() as db:
                return db.get(Stock, sym)
        except SQLAlchemyError as exc:
            logger.warning("stock snapshot lookup failed ticker=%s err=%s", sym, exc)
            return None

    def _snapshot_quote(self, sym: str) -> Optional[Quote]:
        stock = self._load_stock(sym)
        if stock is None or not stock.current_price or stock.current_price <= 0:
            return None
        change = stock.day_change or 0.0
        return Quote(
            ticker=stock.ticker,
            name=(stock.name or "").strip() or synthetic.company_name(sym),
            price=stock.current_price,
            change=change,
            change_percent=stock.day_change_percent or 0.0,
            previous_close=stock.current_price - change,
            volume=stock.volume,
            market_cap=stock.market_cap,
            pe_ratio=stock.pe_ratio,
            dividend_yield=stock.dividend_yield,
            week52_high=stock.week52_high,
            week52_low=stock.week52_low,
            source="snapshot",
        )

    def record_snapshot(self, quote: Json, profile: Optional[Json] = None) -> None:
        """Upsert the stocks reference row from fresh data. Failures are logged, never raised."""
        sym = normalize_ticker(quote.get("ticker"))
        if not sym or not quote.get("price"):
            return
        try:
            with self.session_factory() as db:
                stock = db.get(Stock, sym)
                if stock is None:
                    stock = Stock(ticker=sym)
                    db.add(stock)

                stock.name = quote.get("name") or stock.name
                stock.current_price = quote.get("price")
                stock.day_change = quote.get("change")
                stock.day_change_percent = quote.get("changePercent")
                for attr, field in (
                    ("volume", "volume"),
                    ("market_cap", "marketCap"),
                    ("pe_ratio", "peRatio"),
                    ("dividend_yield", "dividendYield"),
                    ("week52_high", "week52High"),
                    ("week52_low", "week52Low"),
                ):
                    if quote.get(field) is not None:
                        setattr(stock, attr, quote.get(field))

                if profile:
                    stock.sector = profile.get("sector") or stock.sector
                    stock.industry = profile.get("industry") or stock.industry
                    if not stock.name:
                        stock.name = profile.get("name")
                stock.last_updated = utcnow()
                db.commit()
        except SQLAlchemyError as exc:
            logger.warning("stock snapshot upsert failed ticker=%s err=%s", sym, exc)

    # -----------------------
    # Company profile
    # -----------------------
    async def get_company_info(self, ticker: str) -> Json:
        return await self._cached_company(normalize_ticker(ticker))

    async def _resolve_company(self, sym: str) -> Json:
        profile = await self._first_valid(
            "company", sym, lambda p: p.get_company_info(sym), lambda v: v.is_valid()
        )
        if profile is not None:
            return profile.to_dict()

        stock = self._load_stock(sym)
        if stock is not None and (stock.name or "").strip():
            return CompanyProfile(
                ticker=sym,
                name=stock.name,
                sector=stock.sector or synthetic.sector_for(sym),
                industry=stock.industry,
                source="snapshot",
            ).to_dict()

        return synthetic.company_profile(sym).to_dict()

    # -----------------------
    # Dividends
    # -----------------------
    async def get_dividends(self, ticker: str) -> List[Json]:
        return await self._cached_dividends(normalize_ticker(ticker))

    async def _resolve_dividends(self, sym: str) -> List[Json]:
        # A provider answering [] is authoritative: the ticker pays no dividends.
        # Synthetic payments only stand in when every provider failed.
        records = await self._first_valid(
            "dividends", sym, lambda p: p.get_dividends(sym), lambda v: isinstance(v, list)
        )
        if records is not None:
            return [r.to_dict() for r in records]
        return [r.to_dict() for r in synthetic.dividends(sym, today=self._today())]

    # -----------------------
    # Price history
    # -----------------------
    async def get_historical_series(self, ticker: str, period: str = "1y") -> List[Json]:
        return await self._cached_history(normalize_ticker(ticker), period)

    async def _resolve_history(self, sym: str, period: str) -> List[Json]:
        points = await self._first_valid("history", sym, lambda p: p.get_historical(sym, period), bool)
        if points is None:
            return []
        return [p.to_dict() for p in points]

    # -----------------------
    # Autocomplete
    # -----------------------
    async def search_tickers(self, query: str) -> List[Json]:
        q = (query or "").strip()
        if not q:
            return []

        local = self._search_stocks(q)
        if local:
            return local

        return await self._cached_search(q)

    def _search_stocks(self, q: str) -> List[Json]:
        try:
            with self.session_factory() as db:
                rows = db.scalars(
                    select(Stock)
                    .where(
                        or_(
                            func.upper(Stock.ticker).contains(q.upper(), autoescape=True),
                            func.lower(Stock.name).contains(q.lower(), autoescape=True),
                        )
                    )
                    .order_by(Stock.ticker.asc())
                    .limit(10)
                ).all()
        except SQLAlchemyError as exc:
            logger.warning("stock search failed err=%s", exc)
            return []
        return [
            {
                "ticker": s.ticker,
                "name": s.name or f"{s.ticker} Corporation",
                "sector": s.sector or "Unknown",
                "price": s.current_price or 0,
            }
            for s in rows
        ]

    async def _resolve_search(self, q: str) -> List[Json]:
        matches = await self._first_valid("search", q, lambda p: p.search(q), bool)
        if matches is None:
            matches = synthetic.search_suggestions(q)
        return [m.to_dict() for m in matches[:10]]


def build_providers(settings: Settings) -> List[MarketDataProvider]:
    """Priority order FMP -> Alpha Vantage -> Yahoo; a provider without its key is left out."""
    providers: List[MarketDataProvider] = []
    if settings.fmp_api_key:
        providers.append(FmpProvider(settings.fmp_api_key, settings.fmp_base_url, timeout=settings.http_timeout_sec))
    if settings.alpha_vantage_api_key:
        providers.append(
            AlphaVantageProvider(
                settings.alpha_vantage_api_key, settings.alpha_vantage_base_url, timeout=settings.http_timeout_sec
            )
        )
    if settings.enable_yahoo:
        providers.append(YahooProvider())
    logger.info("market data providers=%s", [p.name for p in providers] or "synthetic-only")
    return providers
