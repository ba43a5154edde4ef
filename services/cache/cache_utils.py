# services/cache/cache_utils.py
from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any

from services.cache.cache_backend import JsonValue


def should_cache_any_json(val: Any) -> bool:
    """
    Cache any non-empty JSON value (dict/list/primitive).
    None is never cached: a None read back is indistinguishable from a miss.
    """
    return val is not None and isinstance(val, (dict, list, str, int, float, bool))


def should_cache_non_empty(val: Any) -> bool:
    """Skip empty lists/dicts so a transient provider outage is retried on the next call."""
    return should_cache_any_json(val) and val not in ([], {})


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def to_json_value(val: Any) -> JsonValue:
    """
    Round-trip through JSON so every backend hands back the same shape.
    Dates become ISO strings, dataclasses/pydantic models become dicts.
    """
    return json.loads(json.dumps(val, default=_json_default))
