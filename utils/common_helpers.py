import math
from datetime import date, datetime, timezone
from typing import Any, Optional

import httpx


def safe_float(x: Any) -> Optional[float]:
    try:
        if x is None or x == "" or x == "None" or x == "-":
            return None
        f = float(str(x).replace("%", "").replace(",", "")) if isinstance(x, str) else float(x)
        if math.isnan(f) or math.isinf(f):
            return None
        return f
    except Exception:
        return None


def safe_int(x: Any) -> Optional[int]:
    f = safe_float(x)
    return int(f) if f is not None else None


def safe_div(n, d):
    try:
        return (n / d) if (n is not None and d not in (None, 0)) else None
    except ZeroDivisionError:
        return None


def safe_json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


def normalize_ticker(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_date(value: Any) -> Optional[date]:
    """Coerce ISO strings / datetimes / dates to a date; None when unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None
