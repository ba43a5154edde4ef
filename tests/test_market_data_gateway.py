import asyncio
import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from config.settings import Settings
from database import create_db_engine, create_session_factory, init_db
from models.stock import Stock
from services.cache.cache_backend import MemoryCacheBackend
from services.cache.cache_manager import CacheManager
from services.cache.keys import company_key, dividend_key, historical_key, quote_key
from services.market_data import synthetic
from services.market_data.base import DividendRecord, MarketDataProvider, ProviderResult, Quote
from services.market_data.gateway import MarketDataGateway


class _FailingProvider(MarketDataProvider):
    name = "primary"

    def __init__(self):
        self.calls = 0

    async def get_quote(self, ticker):
        self.calls += 1
        return ProviderResult.failure(self.name, "HTTP 429")

    async def get_dividends(self, ticker):
        return ProviderResult.failure(self.name, "HTTP 500")


class _RaisingProvider(MarketDataProvider):
    name = "broken"

    async def get_quote(self, ticker):
        raise RuntimeError("socket closed")


class _QuoteProvider(MarketDataProvider):
    name = "secondary"

    def __init__(self, price=187.456):
        self.price = price
        self.calls = 0

    async def get_quote(self, ticker):
        self.calls += 1
        return ProviderResult.success(
            self.name,
            Quote(ticker=ticker, name=f"{ticker} Inc.", price=self.price, change=1.234, change_percent=0.00662, source=self.name),
        )

    async def get_dividends(self, ticker):
        return ProviderResult.success(
            self.name,
            [DividendRecord(ticker=ticker, ex_date="2025-11-10", amount=0.26)],
        )


class _NoDividendsProvider(MarketDataProvider):
    name = "yahoo"

    def __init__(self):
        self.calls = 0

    async def get_dividends(self, ticker):
        self.calls += 1
        return ProviderResult.success(self.name, [])


class _GatewayCase(unittest.TestCase):
    def setUp(self):
        engine = create_db_engine(Settings(database_url="sqlite:///:memory:"))
        init_db(engine)
        self.session_factory = create_session_factory(engine)
        self.cache = CacheManager(MemoryCacheBackend())

    def gateway(self, *providers):
        return MarketDataGateway(list(providers), self.cache, self.session_factory)


class TestQuoteFallback(_GatewayCase):
    def test_secondary_wins_when_primary_fails_and_result_is_cached(self):
        primary, secondary = _FailingProvider(), _QuoteProvider()
        gw = self.gateway(primary, secondary)

        quote = asyncio.run(gw.get_quote("aapl"))

        self.assertEqual(quote["source"], "secondary")
        self.assertEqual(quote["price"], 187.46)
        self.assertEqual(quote["changePercent"], 0.0066)
        self.assertEqual(self.cache.get(quote_key("AAPL")), quote)

        # a second call is served from cache
        asyncio.run(gw.get_quote("AAPL"))
        self.assertEqual(primary.calls, 1)
        self.assertEqual(secondary.calls, 1)

    def test_raising_provider_is_skipped(self):
        gw = self.gateway(_RaisingProvider(), _QuoteProvider())
        self.assertEqual(asyncio.run(gw.get_quote("MSFT"))["source"], "secondary")

    def test_provider_hit_upserts_stock_row(self):
        gw = self.gateway(_QuoteProvider(price=50.0))
        asyncio.run(gw.get_quote("IBM"))
        with self.session_factory() as db:
            stock = db.get(Stock, "IBM")
        self.assertIsNotNone(stock)
        self.assertEqual(stock.current_price, 50.0)

    def test_snapshot_used_when_all_providers_fail(self):
        with self.session_factory() as db:
            db.add(Stock(ticker="KO", name="Coca-Cola Company", current_price=61.2, day_change=0.4))
            db.commit()

        quote = asyncio.run(self.gateway(_FailingProvider()).get_quote("KO"))

        self.assertEqual(quote["source"], "snapshot")
        self.assertEqual(quote["price"], 61.2)
        self.assertEqual(quote["name"], "Coca-Cola Company")

    def test_synthetic_quote_is_stable_per_ticker(self):
        first = asyncio.run(self.gateway(_FailingProvider()).get_quote("QQQQ"))
        self.cache.clear()
        second = asyncio.run(self.gateway().get_quote("QQQQ"))

        self.assertEqual(first["source"], "synthetic")
        self.assertEqual(first, second)
        self.assertGreater(first["price"], 0)

    def test_get_quotes_dedupes_tickers(self):
        provider = _QuoteProvider()
        out = asyncio.run(self.gateway(provider).get_quotes(["AAPL", "aapl", "MSFT"]))
        self.assertEqual(sorted(out), ["AAPL", "MSFT"])
        self.assertEqual(provider.calls, 2)


class TestDividendsAndHistory(_GatewayCase):
    def test_provider_dividends(self):
        out = asyncio.run(self.gateway(_FailingProvider(), _QuoteProvider()).get_dividends("JNJ"))
        self.assertEqual(out, [{"ticker": "JNJ", "exDate": "2025-11-10", "payDate": None, "amount": 0.26, "frequency": None}])

    def test_synthetic_dividends_for_payers_and_none_for_non_payers(self):
        gw = self.gateway(_FailingProvider())
        payer = asyncio.run(gw.get_dividends("AAPL"))
        non_payer = asyncio.run(gw.get_dividends("GOOGL"))

        self.assertEqual(len(payer), 4)
        self.assertTrue(all(d["amount"] == synthetic.KNOWN_DIVIDENDS["AAPL"] for d in payer))
        self.assertEqual(non_payer, [])

    def test_empty_provider_answer_is_not_replaced_by_synthetic(self):
        # AMD is outside the placeholder table, which would otherwise invent 0.25 quarterly
        provider, backup = _NoDividendsProvider(), _QuoteProvider()
        gw = self.gateway(provider, backup)

        self.assertEqual(asyncio.run(gw.get_dividends("AMD")), [])
        self.assertEqual(self.cache.get(dividend_key("AMD")), [])

        asyncio.run(gw.get_dividends("amd"))
        self.assertEqual(provider.calls, 1)

    def test_history_failure_is_empty_and_not_cached(self):
        gw = self.gateway(_FailingProvider())
        self.assertEqual(asyncio.run(gw.get_historical_series("AAPL", "1y")), [])
        self.assertFalse(self.cache.has(historical_key("AAPL", "1y")))


class TestCachedEntryPoints(_GatewayCase):
    def test_company_info_is_cached_under_normalized_key(self):
        gw = self.gateway()
        profile = asyncio.run(gw.get_company_info(" msft "))

        self.assertEqual(profile["name"], "Microsoft Corporation")
        self.assertEqual(self.cache.get(company_key("MSFT")), profile)

    def test_search_results_are_cached(self):
        provider = _FailingProvider()
        gw = self.gateway(provider)
        first = asyncio.run(gw.search_tickers("zq"))
        self.assertTrue(self.cache.has("search:zq"))
        self.assertEqual(asyncio.run(gw.search_tickers("zq")), first)


class TestSearch(_GatewayCase):
    def test_stock_rows_come_first(self):
        with self.session_factory() as db:
            db.add(Stock(ticker="AAPL", name="Apple Inc.", sector="Technology", current_price=175.5))
            db.add(Stock(ticker="AAL", name="American Airlines", sector="Industrials", current_price=14.1))
            db.commit()

        out = asyncio.run(self.gateway().search_tickers("aa"))
        self.assertEqual([r["ticker"] for r in out], ["AAL", "AAPL"])

    def test_falls_back_to_synthetic_suggestions(self):
        out = asyncio.run(self.gateway(_FailingProvider()).search_tickers("zq"))
        self.assertEqual(out[0]["ticker"], "ZQ")
        self.assertEqual(asyncio.run(self.gateway().search_tickers("   ")), [])


if __name__ == "__main__":
    unittest.main()
