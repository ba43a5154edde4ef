from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

TICKER_PATTERN = re.compile(r"^[A-Z]{1,5}(\.[A-Z]{1,2})?$")

MIN_SHARES = 0.01
MAX_SHARES = 1_000_000
MIN_PRICE = 0.01
MAX_PRICE = 1_000_000
MAX_NOTES = 500


def normalize_ticker_input(value: str) -> str:
    ticker = (value or "").strip().upper()
    if not ticker:
        raise ValueError("ticker is required")
    if len(ticker) > 8:
        raise ValueError("ticker is too long")
    if not TICKER_PATTERN.match(ticker):
        raise ValueError("ticker must be 1-5 letters with an optional .XX class suffix")
    return ticker


def _check_shares(value: float) -> float:
    if not MIN_SHARES <= value <= MAX_SHARES:
        raise ValueError(f"shares must be between {MIN_SHARES} and {MAX_SHARES:,}")
    return value


def _check_price(value: float) -> float:
    if not MIN_PRICE <= value <= MAX_PRICE:
        raise ValueError(f"price must be between {MIN_PRICE} and {MAX_PRICE:,}")
    return round(value, 2)


def _check_notes(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if len(value) > MAX_NOTES:
        raise ValueError(f"notes must be at most {MAX_NOTES} characters")
    return value


class AssetCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    ticker: str
    shares: float
    avg_price: float = Field(alias="avgPrice")
    purchase_date: Optional[datetime] = Field(default=None, alias="purchaseDate")
    notes: Optional[str] = None

    @field_validator("ticker")
    @classmethod
    def validate_ticker(cls, value: str) -> str:
        return normalize_ticker_input(value)

    @field_validator("shares")
    @classmethod
    def validate_shares(cls, value: float) -> float:
        return _check_shares(value)

    @field_validator("avg_price")
    @classmethod
    def validate_avg_price(cls, value: float) -> float:
        return _check_price(value)

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return _check_notes(value)


class AssetUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    shares: Optional[float] = None
    avg_price: Optional[float] = Field(default=None, alias="avgPrice")
    notes: Optional[str] = None

    @field_validator("shares")
    @classmethod
    def validate_shares(cls, value: Optional[float]) -> Optional[float]:
        return None if value is None else _check_shares(value)

    @field_validator("avg_price")
    @classmethod
    def validate_avg_price(cls, value: Optional[float]) -> Optional[float]:
        return None if value is None else _check_price(value)

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return _check_notes(value)
