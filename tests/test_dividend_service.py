import asyncio
import os
import unittest
from datetime import date

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from config.settings import Settings
from database import create_db_engine, create_session_factory, init_db
from models.asset import Asset
from models.dividend import Dividend
from models.user import User
from services.cache.cache_backend import MemoryCacheBackend
from services.cache.cache_manager import CacheManager
from services.dividend_service import DividendService
from services.market_data.base import MarketDataProvider, ProviderResult
from services.market_data.gateway import MarketDataGateway

TODAY = date(2026, 3, 1)


def _div(ex, amount, pay=None):
    return {"exDate": ex, "payDate": pay, "amount": amount, "frequency": None}


class _FakeGateway:
    def __init__(self, dividends):
        self.dividends = dividends
        self.dividend_calls = 0

    async def get_dividends(self, ticker):
        self.dividend_calls += 1
        return list(self.dividends.get(ticker, []))

    async def get_quote(self, ticker):
        return {"ticker": ticker, "name": f"{ticker} Corp", "price": 50.0, "dividendYield": 0.04}


class _EmptyDividendProvider(MarketDataProvider):
    name = "yahoo"

    async def get_dividends(self, ticker):
        return ProviderResult.success(self.name, [])


class _DividendCase(unittest.TestCase):
    def setUp(self):
        engine = create_db_engine(Settings(database_url="sqlite:///:memory:"))
        init_db(engine)
        self.session_factory = create_session_factory(engine)
        self.db = self.session_factory()
        self.addCleanup(self.db.close)
        self.cache = CacheManager(MemoryCacheBackend())
        self.user = User(email="income@example.com", hashed_password="x", name="Income")
        self.db.add(self.user)
        self.db.commit()

    def hold(self, ticker, shares):
        asset = Asset(user_id=self.user.id, ticker=ticker, shares=shares, avg_price=40.0)
        self.db.add(asset)
        self.db.commit()
        return asset

    def service(self, dividends):
        self.gateway = _FakeGateway(dividends)
        return DividendService(self.gateway, self.cache, today=lambda: TODAY)


class TestUpcoming(_DividendCase):
    def test_window_total_shares_and_persistence(self):
        first = self.hold("KO", 10)
        self.hold("KO", 5)
        svc = self.service({
            "KO": [_div("2026-06-10", 0.5), _div("2026-03-10", 0.5, "2026-04-01"), _div("2025-12-10", 0.48)],
        })

        data, message = asyncio.run(svc.upcoming(self.db, self.user.id, 30))

        self.assertIsNone(message)
        self.assertEqual(len(data["dividends"]), 1)
        entry = data["dividends"][0]
        self.assertEqual(entry["exDate"], "2026-03-10")
        self.assertEqual(entry["shares"], 15)
        self.assertEqual(entry["totalAmount"], 7.5)
        self.assertEqual(entry["assetId"], first.id)
        self.assertEqual(entry["companyName"], "KO Corp")
        self.assertEqual(data["totalExpected"], 7.5)
        self.assertEqual(data["period"], {"days": 30, "startDate": "2026-03-01", "endDate": "2026-03-31"})

        row = self.db.query(Dividend).filter(Dividend.ticker == "KO").one()
        self.assertEqual(row.asset_id, first.id)
        self.assertEqual(row.pay_date, date(2026, 4, 1))
        self.assertEqual(entry["id"], row.id)

    def test_non_payer_returns_zero_not_failure(self):
        self.hold("GOOGL", 3)
        data, _ = asyncio.run(self.service({}).upcoming(self.db, self.user.id, 30))
        self.assertEqual(data["dividends"], [])
        self.assertEqual(data["totalExpected"], 0)

    def test_provider_reporting_no_dividends_yields_zero(self):
        self.hold("AMD", 100)
        gateway = MarketDataGateway([_EmptyDividendProvider()], self.cache, self.session_factory)
        svc = DividendService(gateway, self.cache, today=lambda: TODAY)

        data, _ = asyncio.run(svc.upcoming(self.db, self.user.id, 30))

        self.assertEqual(data["dividends"], [])
        self.assertEqual(data["totalExpected"], 0)

    def test_empty_portfolio_message(self):
        data, message = asyncio.run(self.service({}).upcoming(self.db, self.user.id, 30))
        self.assertEqual(data, {"dividends": [], "totalExpected": 0.0})
        self.assertEqual(message, "No assets in portfolio")

    def test_result_is_cached_per_window(self):
        self.hold("KO", 1)
        svc = self.service({"KO": [_div("2026-03-10", 0.5)]})
        asyncio.run(svc.upcoming(self.db, self.user.id, 30))
        asyncio.run(svc.upcoming(self.db, self.user.id, 30))
        self.assertEqual(self.gateway.dividend_calls, 1)
        asyncio.run(svc.upcoming(self.db, self.user.id, 60))
        self.assertEqual(self.gateway.dividend_calls, 2)


class TestAnnual(_DividendCase):
    def test_monthly_payer(self):
        self.hold("O", 100)
        svc = self.service({
            "O": [
                _div("2026-03-15", 0.25),
                _div("2026-02-01", 0.25),
                _div("2026-01-01", 0.25),
                _div("2025-12-01", 0.25),
            ],
        })

        out = asyncio.run(svc.annual(self.db, self.user.id))

        self.assertEqual(out["annualIncome"], 300.0)
        self.assertEqual(out["monthlyAverage"], 25.0)
        self.assertEqual(out["totalExpected30Days"], 25.0)
        self.assertEqual(out["totalExpected90Days"], 25.0)
        self.assertEqual(out["byMonth"], [{"month": "Mar 2026", "year": 2026, "amount": 25.0, "count": 1}])
        self.assertEqual(out["byStock"][0]["frequency"], "monthly")
        self.assertEqual(out["byStock"][0]["yield"], 0.04)
        self.assertEqual(len(out["upcomingDividends"]), 1)

    def test_projection_when_no_future_dates(self):
        self.hold("T", 10)
        svc = self.service({"T": [_div("2025-12-10", 0.3), _div("2025-09-10", 0.3), _div("2025-06-10", 0.3)]})

        out = asyncio.run(svc.annual(self.db, self.user.id))

        self.assertEqual(out["annualIncome"], 12.0)
        self.assertEqual(out["monthlyAverage"], 1.0)
        self.assertEqual(out["upcomingDividends"], [])
        self.assertEqual(len(out["byMonth"]), 12)
        self.assertTrue(all(m["amount"] == 1.0 for m in out["byMonth"]))
        self.assertEqual([m["count"] for m in out["byMonth"]][:4], [1, 0, 0, 1])
        self.assertEqual(out["byMonth"][0]["month"], "Mar 2026")

    def test_by_stock_sorted_by_annual_amount(self):
        self.hold("SMALL", 1)
        self.hold("BIG", 100)
        dates = ["2025-12-10", "2025-09-10", "2025-06-10"]
        svc = self.service({
            "SMALL": [_div(d, 0.1) for d in dates],
            "BIG": [_div(d, 0.5) for d in dates],
        })
        out = asyncio.run(svc.annual(self.db, self.user.id))
        self.assertEqual([s["ticker"] for s in out["byStock"]], ["BIG", "SMALL"])

    def test_empty_portfolio(self):
        out = asyncio.run(self.service({}).annual(self.db, self.user.id))
        self.assertEqual(out["annualIncome"], 0.0)
        self.assertEqual(out["byStock"], [])


if __name__ == "__main__":
    unittest.main()
