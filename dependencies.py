# dependencies.py
"""Request-time accessors for the service objects built in the lifespan hook."""
from fastapi import Request

from config.settings import Settings
from services.cache.cache_manager import CacheManager
from services.dividend_service import DividendService
from services.enrichment_service import EnrichmentService
from services.market_data.gateway import MarketDataGateway
from services.screener_service import ScreenerService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> CacheManager:
    return request.app.state.cache


def get_gateway(request: Request) -> MarketDataGateway:
    return request.app.state.gateway


def get_enrichment_service(request: Request) -> EnrichmentService:
    return request.app.state.enrichment


def get_dividend_service(request: Request) -> DividendService:
    return request.app.state.dividends


def get_screener_service(request: Request) -> ScreenerService:
    return request.app.state.screener
