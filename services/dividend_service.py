# services/dividend_service.py
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from datetime import date, timedelta
from math import fsum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config.settings import TTL_DIVIDENDS_ANNUAL_SEC, TTL_DIVIDENDS_UPCOMING_SEC
from models.asset import Asset
from models.dividend import Dividend
from services.asset_service import list_assets
from services.cache.cache_manager import CacheManager
from services.cache.keys import dividends_annual_key, dividends_upcoming_key
from services.market_data.gateway import MarketDataGateway
from services.portfolio_metrics import FREQUENCY_MULTIPLIER, annualized_amount, infer_frequency
from utils.common_helpers import normalize_ticker, parse_date

logger = logging.getLogger(__name__)

Json = Dict[str, Any]

MAX_WINDOW_DAYS = 365
ANNUAL_UPCOMING_LIMIT = 10


def empty_annual_summary() -> Json:
    return {
        "upcomingDividends": [],
        "totalExpected30Days": 0.0,
        "totalExpected90Days": 0.0,
        "annualIncome": 0.0,
        "monthlyAverage": 0.0,
        "monthlyBreakdown": [],
        "byMonth": [],
        "byStock": [],
    }


def _add_months(d: date, months: int) -> date:
    idx = d.month - 1 + months
    return date(d.year + idx // 12, idx % 12 + 1, 1)


class _Holding:
    __slots__ = ("ticker", "shares", "first_asset_id")

    def __init__(self, ticker: str, shares: float, first_asset_id: int):
        self.ticker = ticker
        self.shares = shares
        self.first_asset_id = first_asset_id


def _group_holdings(assets: Sequence[Asset]) -> "OrderedDict[str, _Holding]":
    """Total shares per ticker across lots; the oldest lot owns persisted dividend rows."""
    out: "OrderedDict[str, _Holding]" = OrderedDict()
    for a in sorted(assets, key=lambda x: x.id):
        sym = normalize_ticker(a.ticker)
        if sym in out:
            out[sym].shares += float(a.shares)
        else:
            out[sym] = _Holding(sym, float(a.shares), a.id)
    return out


class DividendService:
    def __init__(
        self,
        gateway: MarketDataGateway,
        cache: CacheManager,
        today: Callable[[], date] = date.today,
    ):
        self.gateway = gateway
        self.cache = cache
        self._today = today

    async def _fetch(self, tickers: Sequence[str], with_quotes: bool = False) -> Dict[str, Tuple[List[Json], Json]]:
        async def one(sym: str) -> Tuple[List[Json], Json]:
            if with_quotes:
                divs, quote = await asyncio.gather(self.gateway.get_dividends(sym), self.gateway.get_quote(sym))
            else:
                divs, quote = await self.gateway.get_dividends(sym), {}
            return divs or [], quote or {}

        results = await asyncio.gather(*(one(t) for t in tickers), return_exceptions=True)
        out: Dict[str, Tuple[List[Json], Json]] = {}
        for sym, res in zip(tickers, results):
            if isinstance(res, BaseException):
                logger.warning("dividend lookup failed ticker=%s err=%s", sym, res)
                continue
            out[sym] = res
        return out

    # -----------------------
    # Upcoming window
    # -----------------------
    async def upcoming(self, db: Session, user_id: int, days: int = 30) -> Tuple[Json, Optional[str]]:
        """Dividends going ex within [today, today+days]. Returns (data, message)."""
        days = max(1, min(MAX_WINDOW_DAYS, int(days)))
        assets = list_assets(db, user_id)
        if not assets:
            return {"dividends": [], "totalExpected": 0.0}, "No assets in portfolio"

        key = dividends_upcoming_key(user_id, days)
        hit = self.cache.get(key)
        if hit is not None:
            return hit, None

        start = self._today()
        end = start + timedelta(days=days)
        holdings = _group_holdings(assets)
        fetched = await self._fetch(list(holdings), with_quotes=True)

        entries: List[Json] = []
        for sym, holding in holdings.items():
            divs, quote = fetched.get(sym, ([], {}))
            company = quote.get("name") or f"{sym} Corporation"
            for d in divs:
                ex = parse_date(d.get("exDate"))
                amount = d.get("amount") or 0.0
                if ex is None or not (start <= ex <= end) or amount <= 0:
                    continue
                row = self._persist(db, sym, ex, d, holding.first_asset_id)
                entries.append(
                    {
                        "id": row.id if row is not None else None,
                        "ticker": sym,
                        "exDate": ex.isoformat(),
                        "payDate": d.get("payDate"),
                        "amount": amount,
                        "frequency": d.get("frequency") or (row.frequency if row is not None else None),
                        "assetId": holding.first_asset_id,
                        "companyName": company,
                        "shares": holding.shares,
                        "totalAmount": round(amount * holding.shares, 2),
                    }
                )

        entries.sort(key=lambda e: e["exDate"])
        data = {
            "dividends": entries,
            "totalExpected": round(fsum(e["totalAmount"] for e in entries), 2),
            "period": {"days": days, "startDate": start.isoformat(), "endDate": end.isoformat()},
        }
        self.cache.set(key, data, TTL_DIVIDENDS_UPCOMING_SEC)
        return data, None

    def _persist(self, db: Session, sym: str, ex: date, record: Json, asset_id: int) -> Optional[Dividend]:
        """Store the (ticker, ex-date) row the first time it is seen. Failures are logged only."""
        try:
            row = db.query(Dividend).filter(Dividend.ticker == sym, Dividend.ex_date == ex).first()
            if row is not None:
                return row
            row = Dividend(
                ticker=sym,
                ex_date=ex,
                pay_date=parse_date(record.get("payDate")),
                amount=float(record.get("amount") or 0.0),
                frequency=record.get("frequency"),
                asset_id=asset_id,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row
        except IntegrityError:
            # Another request stored it first
            db.rollback()
            return db.query(Dividend).filter(Dividend.ticker == sym, Dividend.ex_date == ex).first()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("dividend persist failed ticker=%s ex_date=%s err=%s", sym, ex, exc)
            return None

    # -----------------------
    # Annual projection
    # -----------------------
    async def annual(self, db: Session, user_id: int) -> Json:
        assets = list_assets(db, user_id)
        if not assets:
            return empty_annual_summary()

        key = dividends_annual_key(user_id)
        hit = self.cache.get(key)
        if hit is not None:
            return hit

        today = self._today()
        in_30 = today + timedelta(days=30)
        in_90 = today + timedelta(days=90)
        holdings = _group_holdings(assets)
        fetched = await self._fetch(list(holdings), with_quotes=True)

        total_30 = 0.0
        total_90 = 0.0
        upcoming: List[Json] = []
        months: Dict[Tuple[int, int], Json] = {}
        by_stock: List[Json] = []
        annual_income = 0.0

        for sym, holding in holdings.items():
            divs, quote = fetched.get(sym, ([], {}))
            dated = [(parse_date(d.get("exDate")), d) for d in divs]
            dated = [(ex, d) for ex, d in dated if ex is not None and (d.get("amount") or 0) > 0]
            if not dated:
                continue
            company = quote.get("name") or f"{sym} Corporation"

            past = sorted((x for x in dated if x[0] <= today), key=lambda x: x[0], reverse=True)[:4]
            # Departs from the "fewer than two past ex-dates means quarterly" rule only when there
            # are no past ex-dates at all: announced dates (e.g. placeholder schedules) stand in for
            # history so the holding projects income instead of 0. One past date still means quarterly.
            basis = past or sorted(dated, key=lambda x: x[0])[:4]
            frequency = infer_frequency(ex for ex, _ in basis)
            latest_amount = float(basis[0][1]["amount"])
            annual_amount = annualized_amount(latest_amount, frequency, holding.shares)
            annual_income += annual_amount

            for ex, d in sorted(dated, key=lambda x: x[0]):
                if ex < today:
                    continue
                total_amount = round(float(d["amount"]) * holding.shares, 2)
                if ex <= in_30:
                    total_30 += total_amount
                if ex <= in_90:
                    total_90 += total_amount
                    upcoming.append(
                        {
                            "ticker": sym,
                            "exDate": ex.isoformat(),
                            "payDate": d.get("payDate"),
                            "amount": d["amount"],
                            "frequency": d.get("frequency") or frequency,
                            "companyName": company,
                            "shares": holding.shares,
                            "totalAmount": total_amount,
                        }
                    )
                bucket = months.setdefault((ex.year, ex.month), {"amount": 0.0, "count": 0})
                bucket["amount"] += total_amount
                bucket["count"] += 1

            if annual_amount > 0:
                by_stock.append(
                    {
                        "ticker": sym,
                        "companyName": company,
                        "annualAmount": annual_amount,
                        "yield": quote.get("dividendYield") or 0.0,
                        "frequency": frequency,
                    }
                )

        annual_income = round(annual_income, 2)
        monthly_average = round(annual_income / 12, 2)

        by_month = [
            {
                "month": date(y, m, 1).strftime("%b %Y"),
                "year": y,
                "amount": round(v["amount"], 2),
                "count": v["count"],
            }
            for (y, m), v in sorted(months.items())
        ][:12]
        if not by_month:
            by_month = self._projected_months(today, monthly_average, by_stock)

        upcoming.sort(key=lambda e: e["exDate"])
        by_stock.sort(key=lambda s: -s["annualAmount"])

        summary = {
            "upcomingDividends": upcoming[:ANNUAL_UPCOMING_LIMIT],
            "totalExpected30Days": round(total_30, 2),
            "totalExpected90Days": round(total_90, 2),
            "annualIncome": annual_income,
            "monthlyAverage": monthly_average,
            "monthlyBreakdown": by_month,
            "byMonth": by_month,
            "byStock": by_stock,
        }
        self.cache.set(key, summary, TTL_DIVIDENDS_ANNUAL_SEC)
        return summary

    @staticmethod
    def _projected_months(today: date, monthly_average: float, by_stock: Sequence[Json]) -> List[Json]:
        """Spread the average evenly over the next 12 months, counting expected payers per month."""
        out: List[Json] = []
        for i in range(12):
            month = _add_months(today, i)
            count = 0
            for s in by_stock:
                per_year = FREQUENCY_MULTIPLIER.get(s["frequency"], 4)
                if i % (12 // per_year) == 0:
                    count += 1
            out.append({"month": month.strftime("%b %Y"), "year": month.year, "amount": monthly_average, "count": count})
        return out
