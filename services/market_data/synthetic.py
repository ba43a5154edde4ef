# services/market_data/synthetic.py
"""
Placeholder market data for when every provider (and the stocks table) comes up empty.

Values are seeded from a SHA-256 of the ticker, so the same ticker always gets
the same placeholder in every process. Dates are anchored on `today`.
"""
from __future__ import annotations

import hashlib
import random
from datetime import date, timedelta
from typing import Dict, List, Optional

from services.market_data.base import CompanyProfile, DividendRecord, Quote, TickerMatch
from utils.common_helpers import normalize_ticker

SOURCE = "synthetic"

KNOWN_PRICES: Dict[str, float] = {
    "AAPL": 175.50, "GOOGL": 142.30, "MSFT": 378.85, "AMZN": 145.20, "TSLA": 248.42,
    "NVDA": 875.30, "META": 485.75, "NFLX": 485.20, "V": 265.80, "JPM": 158.45,
    "JNJ": 162.30, "WMT": 165.85, "PG": 158.20, "UNH": 485.30, "HD": 365.85,
    "BAC": 38.75, "XOM": 115.20, "CVX": 158.45, "LLY": 785.30, "ABBV": 165.85,
    "BLK": 724.50, "ADBE": 590.10, "AXP": 158.75,
}

KNOWN_NAMES: Dict[str, str] = {
    "AAPL": "Apple Inc.", "GOOGL": "Alphabet Inc. Class A", "MSFT": "Microsoft Corporation",
    "AMZN": "Amazon.com Inc.", "TSLA": "Tesla Inc.", "NVDA": "NVIDIA Corporation",
    "META": "Meta Platforms Inc.", "NFLX": "Netflix Inc.", "BABA": "Alibaba Group Holding Ltd.",
    "V": "Visa Inc.", "JPM": "JPMorgan Chase & Co.", "JNJ": "Johnson & Johnson",
    "WMT": "Walmart Inc.", "PG": "Procter & Gamble Co.", "UNH": "UnitedHealth Group Inc.",
    "HD": "Home Depot Inc.", "BAC": "Bank of America Corp.", "XOM": "Exxon Mobil Corporation",
    "CVX": "Chevron Corporation", "LLY": "Eli Lilly and Company", "ABBV": "AbbVie Inc.",
    "BLK": "BlackRock Inc.", "ADBE": "Adobe Inc.", "AXP": "American Express Company",
}

KNOWN_SECTORS: Dict[str, str] = {
    "AAPL": "Technology", "GOOGL": "Communication Services", "MSFT": "Technology",
    "AMZN": "Consumer Discretionary", "TSLA": "Consumer Discretionary", "NVDA": "Technology",
    "META": "Communication Services", "NFLX": "Communication Services", "V": "Financial Services",
    "JPM": "Financial Services", "JNJ": "Healthcare", "WMT": "Consumer Defensive",
    "PG": "Consumer Defensive", "UNH": "Healthcare", "HD": "Consumer Discretionary",
    "BAC": "Financial Services", "XOM": "Energy", "CVX": "Energy", "LLY": "Healthcare",
    "ABBV": "Healthcare", "BLK": "Financial Services", "ADBE": "Technology", "AXP": "Financial Services",
}

# Quarterly per-share amounts; 0.0 marks a known non-payer
KNOWN_DIVIDENDS: Dict[str, float] = {
    "AAPL": 0.24, "MSFT": 0.75, "GOOGL": 0.0, "AMZN": 0.0, "TSLA": 0.0,
    "NVDA": 0.04, "META": 0.0, "V": 0.45, "JPM": 1.05, "JNJ": 1.13,
}
DEFAULT_DIVIDEND = 0.25

FALLBACK_SECTORS = ["Technology", "Healthcare", "Financial Services", "Consumer Cyclical", "Industrials"]
FALLBACK_INDUSTRIES = ["Software", "Biotechnology", "Banks", "Retail", "Aerospace"]


def _rng(ticker: str, salt: str = "") -> random.Random:
    digest = hashlib.sha256(f"{normalize_ticker(ticker)}|{salt}".encode("utf-8")).hexdigest()
    return random.Random(int(digest[:16], 16))


def _add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    # clamp to the last valid day (e.g. Jan 31 + 1 month)
    for day in (d.day, 30, 29, 28):
        try:
            return date(year, month, day)
        except ValueError:
            continue
    return date(year, month, 28)


def company_name(ticker: str) -> str:
    sym = normalize_ticker(ticker)
    return KNOWN_NAMES.get(sym, f"{sym} Corporation")


def sector_for(ticker: str) -> str:
    sym = normalize_ticker(ticker)
    if sym in KNOWN_SECTORS:
        return KNOWN_SECTORS[sym]
    return _rng(sym, "sector").choice(FALLBACK_SECTORS)


def base_price(ticker: str) -> float:
    sym = normalize_ticker(ticker)
    if sym in KNOWN_PRICES:
        return KNOWN_PRICES[sym]
    return round(_rng(sym, "price").uniform(50, 250), 2)


def quote(ticker: str) -> Quote:
    sym = normalize_ticker(ticker)
    rng = _rng(sym, "quote")
    price = base_price(sym)
    change = (rng.random() - 0.5) * price * 0.05  # within +/-2.5%
    prev = price - change
    return Quote(
        ticker=sym,
        name=company_name(sym),
        price=round(price, 2),
        change=round(change, 2),
        change_percent=round(change / prev, 4) if prev else 0.0,
        day_high=round(price + abs(change) + rng.random() * 5, 2),
        day_low=round(price - abs(change) - rng.random() * 5, 2),
        open=round(prev + (rng.random() - 0.5) * 2, 2),
        previous_close=round(prev, 2),
        volume=float(rng.randint(1_000_000, 6_000_000)),
        week52_high=round(price * (1 + rng.uniform(0.05, 0.35)), 2),
        week52_low=round(price * (1 - rng.uniform(0.05, 0.35)), 2),
        source=SOURCE,
    )


def company_profile(ticker: str) -> CompanyProfile:
    sym = normalize_ticker(ticker)
    rng = _rng(sym, "profile")
    return CompanyProfile(
        ticker=sym,
        name=company_name(sym),
        sector=sector_for(sym),
        industry=rng.choice(FALLBACK_INDUSTRIES),
        description=f"{company_name(sym)} is a leading company in its sector.",
        website=f"https://www.{sym.lower()}.com",
        employees=rng.randint(1_000, 101_000),
        headquarters="United States",
        source=SOURCE,
    )


def dividends(ticker: str, today: Optional[date] = None) -> List[DividendRecord]:
    """Four quarterly payments over the next year; ex-date ten days before pay-date."""
    sym = normalize_ticker(ticker)
    amount = KNOWN_DIVIDENDS.get(sym, DEFAULT_DIVIDEND)
    if amount <= 0:
        return []
    today = today or date.today()
    out: List[DividendRecord] = []
    for i in range(4):
        pay = _add_months(today, i * 3 + 1)
        ex = pay - timedelta(days=10)
        out.append(
            DividendRecord(
                ticker=sym,
                ex_date=ex.isoformat(),
                pay_date=pay.isoformat(),
                amount=amount,
                frequency="quarterly",
            )
        )
    return out


def search_suggestions(query: str) -> List[TickerMatch]:
    q = normalize_ticker(query)
    if not q:
        return []
    candidates = [q, f"{q}A", f"{q}B", f"{q}L", f"{q}T"] if len(q) <= 3 else [q]
    return [
        TickerMatch(
            ticker=sym,
            name=company_name(sym),
            sector=FALLBACK_SECTORS[i % len(FALLBACK_SECTORS)],
            price=base_price(sym),
        )
        for i, sym in enumerate(candidates)
    ]
