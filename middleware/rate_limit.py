# middleware/rate_limit.py
"""
Rate limiting configuration using slowapi.

Usage in route files:
    from middleware.rate_limit import limiter, register_limit

    @router.post("/register")
    @limiter.limit(register_limit)
    async def register(request: Request, ...):
        ...

Limit strings are resolved on every request from the values configure_limiter()
installed, so create_app(settings) decides them rather than import order.
"""
import logging
import os
from typing import Dict

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from config.settings import Settings

logger = logging.getLogger(__name__)

_limits: Dict[str, str] = {
    "default": os.getenv("RATE_LIMIT_DEFAULT", "100/minute"),
    "register": os.getenv("RATE_LIMIT_REGISTER", "5/hour"),
}


def client_ip(request: Request) -> str:
    """
    Identify the caller for rate-limiting.

    Strategy:
      1. First entry of X-Forwarded-For (the original client behind a proxy).
      2. X-Real-IP.
      3. The socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return get_remote_address(request)


def default_limit() -> str:
    return _limits["default"]


def register_limit() -> str:
    return _limits["register"]


def retry_after_seconds(exc: RateLimitExceeded) -> int:
    """Length of the exhausted window; the counter resets at most this far out."""
    item = getattr(getattr(exc, "limit", None), "limit", None)
    try:
        return int(item.get_expiry())
    except AttributeError:
        return 60


# ─── Limiter ───────────────────────────────────────────────────────
# Storage is env-driven so several workers can share a Redis-backed window.
limiter = Limiter(
    key_func=client_ip,
    default_limits=[default_limit],
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
    strategy="fixed-window",
)


def configure_limiter(settings: Settings) -> Limiter:
    """Install this app's limits and start from empty windows."""
    _limits["default"] = settings.rate_limit_default
    _limits["register"] = settings.rate_limit_register
    limiter.reset()
    logger.info(
        "rate limiter configured default=%s register=%s",
        settings.rate_limit_default, settings.rate_limit_register,
    )
    return limiter
