# services/portfolio_metrics.py
"""
Pure portfolio arithmetic: per-position P&L, weighted-average cost merge,
portfolio summary and dividend-frequency inference.

Money is rounded to cents where it is computed, so cached payloads are display-ready.
Percent conventions:
  - profitLossPercent / totalProfitLossPercent: percent (12.5 means 12.5%)
  - dayChangePercent: fraction, same as quote changePercent (0.0125 means 1.25%)

totalProfitLossPercent deliberately uses the same x100 scale as the per-position
profitLossPercent, so a summary and its positions can be compared directly. Older
clients that read it as a fraction (totalProfitLoss / totalCost) must divide by 100.
"""
from __future__ import annotations

from datetime import date
from math import fsum
from typing import Any, Dict, Iterable, List, Optional, Sequence

Json = Dict[str, Any]

TOP_MOVERS = 5
TOP_ALLOCATION_ASSETS = 10

SECTOR_COLORS = [
    "#1e3a8a", "#10b981", "#059669", "#f59e0b", "#ef4444", "#8b5cf6",
    "#ec4899", "#14b8a6", "#f97316", "#6366f1", "#84cc16", "#06b6d4",
]

FREQUENCY_MULTIPLIER = {"monthly": 12, "quarterly": 4, "semi-annual": 2, "annual": 1}


def _r2(x: float) -> float:
    return round(float(x), 2)


def calculate_profit_loss(current_price: float, avg_cost: float, shares: float) -> Json:
    current_value = _r2(current_price * shares)
    total_cost = _r2(avg_cost * shares)
    profit_loss = _r2(current_value - total_cost)
    # zero-cost guard: never emit NaN/Infinity
    return_percent = _r2(profit_loss / total_cost * 100) if total_cost > 0 else 0.0
    return {
        "currentValue": current_value,
        "totalCost": total_cost,
        "profitLoss": profit_loss,
        "returnPercent": return_percent,
    }


def weighted_average_cost(
    existing_shares: float,
    existing_avg_cost: float,
    added_shares: float,
    added_price: float,
) -> float:
    """(s1*c1 + s2*c2) / (s1+s2), rounded to cents. 10@100 + 5@150 -> 116.67."""
    total_shares = existing_shares + added_shares
    if total_shares <= 0:
        return _r2(added_price)
    return _r2((existing_shares * existing_avg_cost + added_shares * added_price) / total_shares)


def enrich_position(asset: Json, quote: Optional[Json], sector: Optional[str] = None) -> Json:
    """
    Merge one stored position with its quote. A missing or unusable quote yields
    a neutral record (price 0, P&L 0) instead of failing the batch.
    """
    shares = float(asset["shares"])
    avg_price = float(asset["avgPrice"])
    price = (quote or {}).get("price")

    if not isinstance(price, (int, float)) or price <= 0:
        return {
            **asset,
            "currentPrice": 0.0,
            "currentValue": 0.0,
            "totalValue": 0.0,
            "totalCost": _r2(shares * avg_price),
            "profitLoss": 0.0,
            "profitLossPercent": 0.0,
            "dayChange": 0.0,
            "dayChangePercent": 0.0,
            "companyName": f"{asset['ticker']} Corporation",
            "sector": sector or "Other",
            "priceStatus": "unavailable",
        }

    calc = calculate_profit_loss(price, avg_price, shares)
    return {
        **asset,
        "currentPrice": _r2(price),
        "currentValue": calc["currentValue"],
        "totalValue": calc["currentValue"],
        "totalCost": calc["totalCost"],
        "profitLoss": calc["profitLoss"],
        "profitLossPercent": calc["returnPercent"],
        "dayChange": _r2((quote.get("change") or 0.0) * shares),
        "dayChangePercent": quote.get("changePercent") or 0.0,
        "companyName": quote.get("name") or f"{asset['ticker']} Corporation",
        "sector": sector or "Other",
        "priceStatus": "synthetic" if quote.get("source") == "synthetic" else "live",
    }


def _allocation_row(label: str, sector: str, value: float, total: float, index: int) -> Json:
    return {
        "sector": sector,
        "name": label,
        "value": _r2(value),
        "percentage": _r2(value / total * 100) if total > 0 else 0.0,
        "color": SECTOR_COLORS[index % len(SECTOR_COLORS)],
    }


def allocation_by_sector(positions: Sequence[Json], total_value: float) -> List[Json]:
    buckets: Dict[str, float] = {}
    for p in positions:
        key = p.get("sector") or "Other"
        buckets[key] = buckets.get(key, 0.0) + float(p.get("currentValue") or 0.0)
    ranked = sorted(buckets.items(), key=lambda kv: -kv[1])
    return [_allocation_row(name, name, value, total_value, i) for i, (name, value) in enumerate(ranked)]


def allocation_by_asset(positions: Sequence[Json], total_value: float, limit: int = TOP_ALLOCATION_ASSETS) -> List[Json]:
    ranked = sorted(positions, key=lambda p: -float(p.get("currentValue") or 0.0))[:limit]
    return [
        _allocation_row(p["ticker"], p.get("sector") or "Other", float(p.get("currentValue") or 0.0), total_value, i)
        for i, p in enumerate(ranked)
    ]


def empty_summary() -> Json:
    return {
        "totalValue": 0.0,
        "totalCost": 0.0,
        "totalProfitLoss": 0.0,
        "totalProfitLossPercent": 0.0,
        "dayChange": 0.0,
        "dayChangePercent": 0.0,
        "assetCount": 0,
        "topGainers": [],
        "topLosers": [],
        "allocation": [],
        "allocationByAsset": [],
    }


def summarize(positions: Sequence[Json], top_n: int = TOP_MOVERS) -> Json:
    if not positions:
        return empty_summary()

    total_value = _r2(fsum(float(p["currentValue"]) for p in positions))
    total_cost = _r2(fsum(float(p["totalCost"]) for p in positions))
    total_pl = _r2(total_value - total_cost)
    total_pl_pct = _r2(total_pl / total_cost * 100) if total_cost > 0 else 0.0

    day_change = _r2(fsum(float(p.get("dayChange") or 0.0) for p in positions))
    # denominator is yesterday's value, so today's move is not counted twice
    previous_value = total_value - day_change
    day_change_pct = round(day_change / previous_value, 4) if total_value > 0 and previous_value > 0 else 0.0

    by_return = sorted(positions, key=lambda p: -float(p["profitLossPercent"]))
    gainers = [p for p in by_return if p["profitLossPercent"] > 0][:top_n]
    losers = sorted((p for p in positions if p["profitLossPercent"] < 0), key=lambda p: p["profitLossPercent"])[:top_n]

    return {
        "totalValue": total_value,
        "totalCost": total_cost,
        "totalProfitLoss": total_pl,
        "totalProfitLossPercent": total_pl_pct,
        "dayChange": day_change,
        "dayChangePercent": day_change_pct,
        "assetCount": len(positions),
        "topGainers": gainers,
        "topLosers": losers,
        "allocation": allocation_by_sector(positions, total_value),
        "allocationByAsset": allocation_by_asset(positions, total_value),
    }


# ---------------------------
# Dividends
# ---------------------------
def infer_frequency(ex_dates: Iterable[date]) -> str:
    """
    Best-effort payment cadence from up to four of the most recent ex-dates.
    Average gap < 35d monthly, < 100d quarterly, < 200d semi-annual, else annual.
    Fewer than two dates defaults to quarterly.
    """
    recent = sorted(ex_dates, reverse=True)[:4]
    if len(recent) < 2:
        return "quarterly"
    gaps = [(recent[i - 1] - recent[i]).days for i in range(1, len(recent))]
    avg_gap = sum(gaps) / len(gaps)
    if avg_gap < 35:
        return "monthly"
    if avg_gap < 100:
        return "quarterly"
    if avg_gap < 200:
        return "semi-annual"
    return "annual"


def annualized_amount(latest_amount: float, frequency: str, shares: float) -> float:
    return _r2(latest_amount * FREQUENCY_MULTIPLIER.get(frequency, 4) * shares)
