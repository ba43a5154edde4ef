# services/enrichment_service.py
"""
Holdings -> enriched positions -> portfolio summary.

Quotes and company sectors for every distinct ticker are fetched concurrently
and joined before any arithmetic happens. One ticker failing degrades that
position to a neutral record; it never fails the request.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Sequence

from sqlalchemy.orm import Session

from config.settings import TTL_EMPTY_SUMMARY_SEC, TTL_PORTFOLIO_SUMMARY_SEC
from models.asset import Asset
from services.asset_service import asset_to_dict, list_assets
from services.cache.cache_manager import CacheManager
from services.cache.keys import portfolio_summary_key
from services.market_data.gateway import MarketDataGateway
from services.portfolio_metrics import enrich_position, summarize
from utils.common_helpers import normalize_ticker

logger = logging.getLogger(__name__)

Json = Dict[str, Any]


class EnrichmentService:
    def __init__(self, gateway: MarketDataGateway, cache: CacheManager):
        self.gateway = gateway
        self.cache = cache

    async def _sectors(self, tickers: Sequence[str]) -> Dict[str, str]:
        results = await asyncio.gather(
            *(self.gateway.get_company_info(t) for t in tickers), return_exceptions=True
        )
        out: Dict[str, str] = {}
        for sym, res in zip(tickers, results):
            if isinstance(res, BaseException):
                logger.warning("company lookup failed ticker=%s err=%s", sym, res)
                continue
            if res.get("sector"):
                out[sym] = res["sector"]
        return out

    async def enrich_assets(self, assets: Iterable[Asset]) -> List[Json]:
        rows = [asset_to_dict(a) for a in assets]
        if not rows:
            return []

        tickers = list(dict.fromkeys(normalize_ticker(r["ticker"]) for r in rows))
        # Fan out quotes and profiles together, join once
        quotes, sectors = await asyncio.gather(
            self.gateway.get_quotes(tickers),
            self._sectors(tickers),
        )
        return [
            enrich_position(r, quotes.get(normalize_ticker(r["ticker"])), sectors.get(normalize_ticker(r["ticker"])))
            for r in rows
        ]

    async def enrich_holdings(self, db: Session, user_id: int) -> List[Json]:
        return await self.enrich_assets(list_assets(db, user_id))

    async def enrich_one(self, asset: Asset) -> Json:
        enriched = await self.enrich_assets([asset])
        return enriched[0]

    async def get_summary(self, db: Session, user_id: int) -> Json:
        key = portfolio_summary_key(user_id)
        hit = self.cache.get(key)
        if hit is not None:
            return hit

        positions = await self.enrich_holdings(db, user_id)
        summary = summarize(positions)
        # Empty portfolios are cheap to rebuild and likely to change soon
        ttl = TTL_PORTFOLIO_SUMMARY_SEC if positions else TTL_EMPTY_SUMMARY_SEC
        self.cache.set(key, summary, ttl)
        return summary

    async def refresh_summary(self, db: Session, user_id: int) -> Json:
        self.cache.delete(portfolio_summary_key(user_id))
        logger.info("portfolio summary refresh user_id=%s", user_id)
        return await self.get_summary(db, user_id)
