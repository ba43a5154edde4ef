"""
Logging for the API process and the maintenance scripts.

- Level and JSON/plain format come from Settings (LOG_LEVEL, LOG_JSON, APP_ENV).
- Request and market-data context (method, path, status, ticker, provider...)
  travels as `extra=` fields and becomes top-level keys in JSON lines.
- Emails and bearer tokens are masked before any handler sees the message.
"""
import json
import logging
import re
import sys
from typing import Any, Optional

from config.settings import Settings

# Fields the middleware and services attach through `extra=`
CONTEXT_FIELDS = ("method", "path", "status", "duration_ms", "user_id", "ticker", "provider", "cache_key")

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "yahooquery", "urllib3")

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_BEARER_RE = re.compile(r"(?i)bearer\s+[\w\-.=]+")
_JWT_RE = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+")


def redact(text: str) -> str:
    text = _BEARER_RE.sub("Bearer [redacted]", text)
    text = _JWT_RE.sub("[redacted-token]", text)
    return _EMAIL_RE.sub("[redacted-email]", text)


class RedactingFilter(logging.Filter):
    """Rewrites the rendered message so PII never reaches a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def _json_serial(obj: Any):
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class JsonFormatter(logging.Formatter):
    """One JSON object per line; context fields are promoted to top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_serial)


def build_handler(settings: Settings, stream=None) -> logging.Handler:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter() if settings.log_json else logging.Formatter(PLAIN_FORMAT))
    handler.addFilter(RedactingFilter())
    return handler


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Install a single stdout handler on the root logger. Safe to call again on reload."""
    if settings is None:
        settings = Settings(database_url="")
    handler = build_handler(settings)

    root = logging.getLogger()
    root.setLevel(handler.level)
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.addHandler(handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
