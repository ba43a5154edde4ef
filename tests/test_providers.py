import asyncio
import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import httpx

from services.market_data.alpha_vantage_provider import AlphaVantageProvider
from services.market_data.fmp_provider import FmpProvider


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestFmpProvider(unittest.TestCase):
    def test_quote_percent_becomes_fraction(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["apikey"] = request.url.params.get("apikey")
            return httpx.Response(200, json=[{
                "symbol": "AAPL", "name": "Apple Inc.", "price": 190.5, "change": 2.5,
                "changesPercentage": 1.33, "previousClose": 188.0, "yearHigh": 199.6, "yearLow": 164.1,
                "marketCap": 2.9e12, "pe": 29.7,
            }])

        async def _run():
            provider = FmpProvider("k", "https://fmp.test/api/v3", client=_client(handler))
            return await provider.get_quote("aapl")

        res = asyncio.run(_run())
        self.assertTrue(res.ok)
        self.assertEqual(seen, {"path": "/api/v3/quote/AAPL", "apikey": "k"})
        quote = res.value.to_dict()
        self.assertEqual(quote["changePercent"], 0.0133)
        self.assertEqual(quote["week52High"], 199.6)
        self.assertEqual(quote["source"], "fmp")

    def test_error_message_body_is_a_failure(self):
        def handler(request):
            return httpx.Response(200, json={"Error Message": "Invalid API KEY."})

        async def _run():
            return await FmpProvider("bad", client=_client(handler)).get_quote("AAPL")

        res = asyncio.run(_run())
        self.assertFalse(res.ok)
        self.assertIn("Invalid API KEY", res.error)

    def test_http_error_is_a_failure(self):
        def handler(request):
            return httpx.Response(503)

        async def _run():
            return await FmpProvider("k", client=_client(handler)).get_quote("AAPL")

        self.assertFalse(asyncio.run(_run()).ok)

    def test_empty_dividend_body_means_no_dividends(self):
        def handler(request):
            self.assertEqual(request.url.path, "/api/v3/historical-price-full/stock_dividend/AMD")
            return httpx.Response(200, json={})

        async def _run():
            return await FmpProvider("k", "https://fmp.test/api/v3", client=_client(handler)).get_dividends("amd")

        res = asyncio.run(_run())
        self.assertTrue(res.ok)
        self.assertEqual(res.value, [])


class TestAlphaVantageProvider(unittest.TestCase):
    def test_global_quote(self):
        def handler(request):
            self.assertEqual(request.url.params.get("function"), "GLOBAL_QUOTE")
            return httpx.Response(200, json={"Global Quote": {
                "01. symbol": "MSFT", "02. open": "410.00", "03. high": "415.10", "04. low": "408.20",
                "05. price": "412.30", "06. volume": "18200000", "08. previous close": "409.00",
                "09. change": "3.30", "10. change percent": "0.8068%",
            }})

        async def _run():
            return await AlphaVantageProvider("k", client=_client(handler)).get_quote("MSFT")

        res = asyncio.run(_run())
        self.assertTrue(res.ok)
        self.assertEqual(res.value.to_dict()["changePercent"], 0.0081)
        self.assertEqual(res.value.price, 412.3)

    def test_throttle_note_is_a_failure(self):
        def handler(request):
            return httpx.Response(200, json={"Note": "Thank you for using Alpha Vantage! Our standard API call frequency is 5 calls per minute."})

        async def _run():
            return await AlphaVantageProvider("k", client=_client(handler)).get_quote("MSFT")

        res = asyncio.run(_run())
        self.assertFalse(res.ok)
        self.assertIn("call frequency", res.error)


if __name__ == "__main__":
    unittest.main()
