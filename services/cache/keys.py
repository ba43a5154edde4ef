# services/cache/keys.py
from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Dict

_INVALID_KEY_CHARS = re.compile(r"[^a-z0-9:_-]")


def normalize_key(key: str) -> str:
    """Case-fold and restrict to [a-z0-9:_-]. Idempotent."""
    return _INVALID_KEY_CHARS.sub("_", (key or "").strip().lower())


def _sym(ticker: str) -> str:
    return (ticker or "").strip().upper()


def quote_key(ticker: str) -> str:
    return f"quote:{_sym(ticker)}"


def company_key(ticker: str) -> str:
    return f"company:{_sym(ticker)}"


def dividend_key(ticker: str) -> str:
    return f"dividend:{_sym(ticker)}"


def historical_key(ticker: str, period: str) -> str:
    return f"historical:{_sym(ticker)}:{period}"


def search_key(query: str) -> str:
    return f"search:{(query or '').strip()}"


def stock_detail_key(ticker: str) -> str:
    return f"stock:detail:{_sym(ticker)}"


def portfolio_summary_key(user_id: int) -> str:
    return f"portfolio:summary:{user_id}"


def dividends_annual_key(user_id: int) -> str:
    return f"dividends:annual:{user_id}"


def dividends_upcoming_prefix(user_id: int) -> str:
    return f"dividends:upcoming:{user_id}:"


def dividends_upcoming_key(user_id: int, days: int) -> str:
    # Scoped per user; the days window alone would leak one user's dividends to another.
    return f"{dividends_upcoming_prefix(user_id)}{days}"


def filter_hash(filters: Dict[str, Any]) -> str:
    """Deterministic hash of the non-null filter fields, independent of key order."""
    clean = {k: v for k, v in sorted(filters.items()) if v is not None and v != []}
    for k, v in clean.items():
        if isinstance(v, list):
            clean[k] = sorted(v)
    raw = json.dumps(clean, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def screener_key(filters: Dict[str, Any]) -> str:
    return f"screener:{filter_hash(filters)}"
