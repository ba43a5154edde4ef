import asyncio
import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from config.settings import Settings
from database import create_db_engine, create_session_factory, init_db
from models.asset import Asset
from models.user import User
from services.cache.cache_backend import MemoryCacheBackend
from services.cache.cache_manager import CacheManager
from services.enrichment_service import EnrichmentService
from services.market_data.base import MarketDataProvider, ProviderResult, Quote
from services.market_data.gateway import MarketDataGateway

TICKERS = ("AAPL", "MSFT", "TSLA")


def _quote(provider, ticker, price=100.0):
    return ProviderResult.success(
        provider, Quote(ticker=ticker, name=f"{ticker} Inc.", price=price, change=1.0, change_percent=0.01, source=provider)
    )


class _RendezvousProvider(MarketDataProvider):
    """Each quote call waits until all expected calls are in flight."""

    name = "rendezvous"

    def __init__(self, expected, timeout=2.0):
        self.expected = expected
        self.timeout = timeout
        self.in_flight = 0
        self._all_started = None

    async def get_quote(self, ticker):
        if self._all_started is None:
            self._all_started = asyncio.Event()
        self.in_flight += 1
        if self.in_flight >= self.expected:
            self._all_started.set()
        try:
            await asyncio.wait_for(self._all_started.wait(), self.timeout)
        except asyncio.TimeoutError:
            return ProviderResult.failure(self.name, "calls were not issued together")
        return _quote(self.name, ticker)


class _PartlyBrokenProvider(MarketDataProvider):
    name = "primary"

    async def get_quote(self, ticker):
        if ticker == "TSLA":
            raise RuntimeError("connection reset by peer")
        return _quote(self.name, ticker, price=200.0)


class _FlakyGateway(MarketDataGateway):
    async def get_quote(self, ticker):
        if ticker == "TSLA":
            raise RuntimeError("cache backend exploded")
        return await super().get_quote(ticker)


class _EnrichmentCase(unittest.TestCase):
    def setUp(self):
        engine = create_db_engine(Settings(database_url="sqlite:///:memory:"))
        init_db(engine)
        self.session_factory = create_session_factory(engine)
        self.db = self.session_factory()
        self.addCleanup(self.db.close)
        self.cache = CacheManager(MemoryCacheBackend())

        self.user = User(email="holder@example.com", hashed_password="x", name="Holder")
        self.db.add(self.user)
        self.db.commit()
        for ticker in TICKERS:
            self.db.add(Asset(user_id=self.user.id, ticker=ticker, shares=2, avg_price=150.0))
        self.db.commit()

    def service(self, *providers, gateway_cls=MarketDataGateway):
        gateway = gateway_cls(list(providers), self.cache, self.session_factory)
        return EnrichmentService(gateway, self.cache)

    def by_ticker(self, positions):
        return {p["ticker"]: p for p in positions}


class TestConcurrentQuotes(_EnrichmentCase):
    def test_quote_fetches_are_in_flight_together(self):
        provider = _RendezvousProvider(expected=len(TICKERS))
        svc = self.service(provider)

        positions = asyncio.run(svc.enrich_holdings(self.db, self.user.id))

        self.assertEqual(provider.in_flight, len(TICKERS))
        self.assertEqual(sorted(p["ticker"] for p in positions), sorted(TICKERS))
        for p in positions:
            self.assertEqual(p["priceStatus"], "live")
            self.assertEqual(p["currentPrice"], 100.0)


class TestPartialFailure(_EnrichmentCase):
    def test_raising_provider_only_affects_its_ticker(self):
        positions = self.by_ticker(asyncio.run(self.service(_PartlyBrokenProvider()).enrich_holdings(self.db, self.user.id)))

        self.assertEqual(sorted(positions), sorted(TICKERS))
        self.assertEqual(positions["AAPL"]["currentPrice"], 200.0)
        self.assertEqual(positions["AAPL"]["profitLoss"], 100.0)
        self.assertEqual(positions["MSFT"]["priceStatus"], "live")
        # the failed ticker still resolves through the fallback chain
        self.assertEqual(positions["TSLA"]["priceStatus"], "synthetic")
        self.assertGreater(positions["TSLA"]["currentPrice"], 0)

    def test_failed_quote_degrades_to_neutral_position(self):
        svc = self.service(_PartlyBrokenProvider(), gateway_cls=_FlakyGateway)

        positions = self.by_ticker(asyncio.run(svc.enrich_holdings(self.db, self.user.id)))

        self.assertEqual(sorted(positions), sorted(TICKERS))
        tsla = positions["TSLA"]
        self.assertEqual(tsla["priceStatus"], "unavailable")
        self.assertEqual(tsla["currentPrice"], 0.0)
        self.assertEqual(tsla["profitLoss"], 0.0)
        self.assertEqual(tsla["totalCost"], 300.0)
        self.assertEqual(positions["AAPL"]["currentPrice"], 200.0)

        summary = asyncio.run(svc.get_summary(self.db, self.user.id))
        self.assertEqual(summary["assetCount"], 3)
        self.assertEqual(summary["totalValue"], 800.0)


if __name__ == "__main__":
    unittest.main()
