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
from schemas.asset import AssetCreate, AssetUpdate
from services.asset_service import add_asset, delete_asset, list_assets, update_asset
from services.cache.cache_backend import MemoryCacheBackend
from services.cache.cache_manager import CacheManager
from services.cache.keys import dividends_annual_key, dividends_upcoming_key, portfolio_summary_key
from services.errors import InvalidTickerError, NotFoundError, ValidationFailed


class _FakeGateway:
    def __init__(self, prices=None):
        self.prices = prices or {}

    async def get_quote(self, ticker):
        return {"ticker": ticker, "price": self.prices.get(ticker, 100.0)}


class TestAssetService(unittest.TestCase):
    def setUp(self):
        engine = create_db_engine(Settings(database_url="sqlite:///:memory:"))
        init_db(engine)
        self.db = create_session_factory(engine)()
        self.addCleanup(self.db.close)
        self.cache = CacheManager(MemoryCacheBackend())

        self.user = User(email="owner@example.com", hashed_password="x", name="Owner")
        self.other = User(email="other@example.com", hashed_password="x", name="Other")
        self.db.add_all([self.user, self.other])
        self.db.commit()

    def _add(self, user_id, payload, gateway=None):
        return asyncio.run(add_asset(self.db, gateway or _FakeGateway(), self.cache, user_id, payload))

    def test_add_creates_then_merges_with_weighted_average(self):
        first, created = self._add(self.user.id, AssetCreate(ticker="aapl", shares=5, avgPrice=140))
        self.assertTrue(created)
        self.assertEqual(first.ticker, "AAPL")

        merged, created = self._add(self.user.id, AssetCreate(ticker="AAPL", shares=10, avgPrice=150))
        self.assertFalse(created)
        self.assertEqual(merged.id, first.id)
        self.assertEqual(merged.shares, 15)
        self.assertEqual(merged.avg_price, 146.67)
        self.assertEqual(len(list_assets(self.db, self.user.id)), 1)

    def test_same_ticker_for_another_user_is_separate(self):
        self._add(self.user.id, AssetCreate(ticker="MSFT", shares=1, avgPrice=300))
        self._add(self.other.id, AssetCreate(ticker="MSFT", shares=2, avgPrice=310))
        self.assertEqual(len(list_assets(self.db, self.user.id)), 1)
        self.assertEqual(len(list_assets(self.db, self.other.id)), 1)

    def test_unpriced_ticker_is_rejected_before_writing(self):
        with self.assertRaises(InvalidTickerError):
            self._add(self.user.id, AssetCreate(ticker="NOPE", shares=1, avgPrice=10), _FakeGateway({"NOPE": 0}))
        self.assertEqual(list_assets(self.db, self.user.id), [])

    def test_mutations_invalidate_user_caches(self):
        self.cache.set(portfolio_summary_key(self.user.id), {"v": 1}, 300)
        self.cache.set(dividends_annual_key(self.user.id), {"v": 1}, 300)
        self.cache.set(dividends_upcoming_key(self.user.id, 30), {"v": 1}, 300)
        self.cache.set(portfolio_summary_key(self.other.id), {"v": 1}, 300)

        self._add(self.user.id, AssetCreate(ticker="V", shares=1, avgPrice=250))

        self.assertFalse(self.cache.has(portfolio_summary_key(self.user.id)))
        self.assertFalse(self.cache.has(dividends_annual_key(self.user.id)))
        self.assertFalse(self.cache.has(dividends_upcoming_key(self.user.id, 30)))
        self.assertTrue(self.cache.has(portfolio_summary_key(self.other.id)))

    def test_update_is_owner_scoped(self):
        asset, _ = self._add(self.user.id, AssetCreate(ticker="JPM", shares=3, avgPrice=150))

        with self.assertRaises(NotFoundError):
            update_asset(self.db, self.cache, self.other.id, asset.id, AssetUpdate(shares=1))

        updated = update_asset(self.db, self.cache, self.user.id, asset.id, AssetUpdate(shares=4, notes="core"))
        self.assertEqual(updated.shares, 4)
        self.assertEqual(updated.avg_price, 150)
        self.assertEqual(updated.notes, "core")

    def test_empty_update_is_rejected(self):
        asset, _ = self._add(self.user.id, AssetCreate(ticker="JPM", shares=3, avgPrice=150))

        with self.assertRaises(ValidationFailed):
            update_asset(self.db, self.cache, self.user.id, asset.id, AssetUpdate())

        # an explicit null note is a real change
        cleared = update_asset(self.db, self.cache, self.user.id, asset.id, AssetUpdate(notes=None))
        self.assertIsNone(cleared.notes)

    def test_delete_removes_linked_dividends(self):
        asset, _ = self._add(self.user.id, AssetCreate(ticker="JNJ", shares=3, avgPrice=150))
        self.db.add(Dividend(ticker="JNJ", ex_date=date(2026, 1, 1), amount=1.13, asset_id=asset.id))
        self.db.commit()

        with self.assertRaises(NotFoundError):
            delete_asset(self.db, self.cache, self.other.id, asset.id)

        delete_asset(self.db, self.cache, self.user.id, asset.id)
        self.assertIsNone(self.db.get(Asset, asset.id))
        self.assertEqual(self.db.query(Dividend).count(), 0)


class TestAssetValidation(unittest.TestCase):
    def test_ticker_rules(self):
        self.assertEqual(AssetCreate(ticker=" brk.b ", shares=1, avgPrice=1).ticker, "BRK.B")
        for bad in ("", "TOOLONG", "AB1", "A.BCD"):
            with self.assertRaises(ValueError):
                AssetCreate(ticker=bad, shares=1, avgPrice=1)

    def test_ranges_and_rounding(self):
        self.assertEqual(AssetCreate(ticker="AAPL", shares=1, avgPrice=10.456).avg_price, 10.46)
        with self.assertRaises(ValueError):
            AssetCreate(ticker="AAPL", shares=0, avgPrice=10)
        with self.assertRaises(ValueError):
            AssetCreate(ticker="AAPL", shares=1, avgPrice=2_000_000)
        with self.assertRaises(ValueError):
            AssetCreate(ticker="AAPL", shares=1, avgPrice=10, notes="x" * 501)


if __name__ == "__main__":
    unittest.main()
