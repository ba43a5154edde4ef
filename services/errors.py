# services/errors.py
"""
Domain errors raised by services and rendered by the exception handlers in main.py.

Every error carries a stable `error` code and a human-readable `message`.
Raw storage-engine text never reaches the client.
"""
from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    error = "Something went wrong"

    def __init__(self, message: str | None = None, *, status_code: int | None = None, error: str | None = None):
        self.message = message or self.error
        if status_code is not None:
            self.status_code = status_code
        if error is not None:
            self.error = error
        super().__init__(self.message)


class ValidationFailed(AppError):
    status_code = 400
    error = "Validation failed"


class InvalidTickerError(AppError):
    status_code = 400
    error = "Invalid ticker symbol"


class UnauthorizedError(AppError):
    status_code = 401
    error = "Unauthorized"


class NotFoundError(AppError):
    status_code = 404
    error = "Record not found"


class DuplicateError(AppError):
    status_code = 409
    error = "Record already exists"


class RelationError(AppError):
    status_code = 409
    error = "Related record constraint failed"


class DatabaseError(AppError):
    status_code = 500
    error = "Database error occurred"


def map_db_error(exc: Exception) -> AppError:
    """Translate a SQLAlchemy error into one of the user-facing categories."""
    if isinstance(exc, AppError):
        return exc

    if isinstance(exc, IntegrityError):
        text = str(getattr(exc, "orig", exc)).lower()
        if "unique" in text or "duplicate" in text:
            return DuplicateError("A record with this value already exists")
        if "foreign key" in text:
            return RelationError("Related record not found")
        return DatabaseError()

    if isinstance(exc, NoResultFound):
        return NotFoundError()

    if isinstance(exc, SQLAlchemyError):
        logger.error("database error type=%s", type(exc).__name__)
        return DatabaseError()

    return AppError()
