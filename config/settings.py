# config/settings.py
"""
Process-wide settings, read once from the environment (and .env) at startup.

The lifespan hook in main.py builds a Settings instance and hands it to the
services it constructs; nothing else reads os.environ at call time.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# ─── Cache durations (seconds) ─────────────────────────────────────
TTL_QUOTE_SEC = 5 * 60
TTL_COMPANY_SEC = 24 * 60 * 60
TTL_DIVIDENDS_SEC = 60 * 60
TTL_HISTORICAL_SEC = 15 * 60
TTL_SCREENER_SEC = 10 * 60
TTL_SEARCH_SEC = 60 * 60
TTL_STOCK_DETAIL_SEC = 5 * 60
TTL_PORTFOLIO_SUMMARY_SEC = 5 * 60
TTL_EMPTY_SUMMARY_SEC = 60
TTL_DIVIDENDS_UPCOMING_SEC = 60 * 60
TTL_DIVIDENDS_ANNUAL_SEC = 60 * 60

CACHE_BACKENDS = ("memory", "database", "redis")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [p.strip() for p in raw.split(",") if p.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str
    app_env: str = "development"

    # ─── Connection-pool tuning (ignored for SQLite) ───────────────
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    # ─── Cache ─────────────────────────────────────────────────────
    cache_backend: str = "memory"
    cache_cleanup_interval_sec: int = 3600
    redis_url: Optional[str] = None
    redis_prefix: str = "stocklio:"

    # ─── Market data providers ─────────────────────────────────────
    fmp_api_key: str = ""
    fmp_base_url: str = "https://financialmodelingprep.com/api/v3"
    alpha_vantage_api_key: str = ""
    alpha_vantage_base_url: str = "https://www.alphavantage.co/query"
    enable_yahoo: bool = True
    http_timeout_sec: float = 10.0

    # ─── Auth ──────────────────────────────────────────────────────
    jwt_secret_key: str = "change-me-in-prod"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # ─── Rate limiting ─────────────────────────────────────────────
    rate_limit_default: str = "100/minute"
    rate_limit_register: str = "5/hour"

    # ─── Logging ───────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = False

    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def load_settings() -> Settings:
    """Build Settings from the environment. Raises when DATABASE_URL is missing."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set in the environment")

    app_env = (os.getenv("APP_ENV") or "development").strip().lower()

    # Persistent cache in production, in-process map everywhere else
    default_backend = "database" if app_env == "production" else "memory"
    cache_backend = (os.getenv("CACHE_BACKEND") or default_backend).strip().lower()
    if cache_backend not in CACHE_BACKENDS:
        raise RuntimeError(
            f"CACHE_BACKEND must be one of {', '.join(CACHE_BACKENDS)}, got {cache_backend!r}"
        )

    return Settings(
        database_url=database_url,
        app_env=app_env,
        db_pool_size=_env_int("DB_POOL_SIZE", 5),
        db_max_overflow=_env_int("DB_MAX_OVERFLOW", 10),
        db_pool_timeout=_env_int("DB_POOL_TIMEOUT", 30),
        db_pool_recycle=_env_int("DB_POOL_RECYCLE", 1800),
        cache_backend=cache_backend,
        cache_cleanup_interval_sec=_env_int("CACHE_CLEANUP_INTERVAL_SEC", 3600),
        redis_url=os.getenv("REDIS_URL") or None,
        redis_prefix=os.getenv("REDIS_PREFIX", "stocklio:"),
        fmp_api_key=os.getenv("FMP_API_KEY", ""),
        fmp_base_url=os.getenv("FMP_BASE_URL", "https://financialmodelingprep.com/api/v3"),
        alpha_vantage_api_key=os.getenv("ALPHA_VANTAGE_API_KEY", ""),
        alpha_vantage_base_url=os.getenv("ALPHA_VANTAGE_BASE_URL", "https://www.alphavantage.co/query"),
        enable_yahoo=_env_bool("ENABLE_YAHOO", True),
        http_timeout_sec=float(os.getenv("HTTP_TIMEOUT_SEC", "10")),
        jwt_secret_key=os.getenv("JWT_SECRET_KEY", "change-me-in-prod"),
        access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24),
        rate_limit_default=os.getenv("RATE_LIMIT_DEFAULT", "100/minute"),
        rate_limit_register=os.getenv("RATE_LIMIT_REGISTER", "5/hour"),
        cors_origins=_env_list("CORS_ORIGINS", ["http://localhost:3000"]),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
        # JSON lines by default in production for the log aggregator
        log_json=_env_bool("LOG_JSON", app_env == "production"),
    )
