# services/asset_service.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.asset import Asset
from models.dividend import Dividend
from schemas.asset import AssetCreate, AssetUpdate
from services.cache.cache_manager import CacheManager
from services.cache.keys import dividends_annual_key, dividends_upcoming_prefix, portfolio_summary_key
from services.errors import InvalidTickerError, NotFoundError, ValidationFailed, map_db_error
from services.market_data.gateway import MarketDataGateway
from services.portfolio_metrics import weighted_average_cost
from utils.common_helpers import utcnow

logger = logging.getLogger(__name__)


def asset_to_dict(asset: Asset) -> Dict[str, Any]:
    return {
        "id": asset.id,
        "ticker": asset.ticker,
        "shares": asset.shares,
        "avgPrice": asset.avg_price,
        "purchaseDate": asset.purchase_date.isoformat() if asset.purchase_date else None,
        "notes": asset.notes,
        "createdAt": asset.created_at.isoformat() if asset.created_at else None,
        "updatedAt": asset.updated_at.isoformat() if asset.updated_at else None,
    }


def invalidate_user_caches(cache: CacheManager, user_id: int) -> None:
    """Drop every cached view derived from this user's holdings."""
    cache.delete(portfolio_summary_key(user_id))
    cache.delete(dividends_annual_key(user_id))
    cache.invalidate_prefix(dividends_upcoming_prefix(user_id))


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise map_db_error(exc)


def list_assets(db: Session, user_id: int) -> List[Asset]:
    return (
        db.query(Asset)
        .filter(Asset.user_id == user_id)
        .order_by(Asset.created_at.desc(), Asset.id.desc())
        .all()
    )


def get_asset(db: Session, user_id: int, asset_id: int) -> Asset:
    # Other users' rows look exactly like missing ones
    asset = db.query(Asset).filter(Asset.id == asset_id, Asset.user_id == user_id).first()
    if asset is None:
        raise NotFoundError("Asset not found")
    return asset


async def verify_ticker(gateway: MarketDataGateway, ticker: str) -> Dict[str, Any]:
    quote = await gateway.get_quote(ticker)
    price = (quote or {}).get("price")
    if not isinstance(price, (int, float)) or price <= 0:
        raise InvalidTickerError(f"Could not find a valid price for {ticker}")
    return quote


async def add_asset(
    db: Session,
    gateway: MarketDataGateway,
    cache: CacheManager,
    user_id: int,
    payload: AssetCreate,
) -> Tuple[Asset, bool]:
    """
    Add a position. A ticker the user already holds is merged into the existing
    row with a weighted-average cost. Returns (asset, created).
    """
    await verify_ticker(gateway, payload.ticker)

    existing = (
        db.query(Asset)
        .filter(Asset.user_id == user_id, Asset.ticker == payload.ticker)
        .order_by(Asset.id.asc())
        .first()
    )

    if existing is not None:
        existing.avg_price = weighted_average_cost(
            existing.shares, existing.avg_price, payload.shares, payload.avg_price
        )
        existing.shares = round(existing.shares + payload.shares, 6)
        if payload.notes:
            existing.notes = payload.notes
        _commit(db)
        db.refresh(existing)
        logger.info("asset merged user_id=%s asset_id=%s ticker=%s", user_id, existing.id, existing.ticker)
        invalidate_user_caches(cache, user_id)
        return existing, False

    asset = Asset(
        user_id=user_id,
        ticker=payload.ticker,
        shares=payload.shares,
        avg_price=payload.avg_price,
        purchase_date=payload.purchase_date or utcnow(),
        notes=payload.notes,
    )
    db.add(asset)
    _commit(db)
    db.refresh(asset)
    logger.info("asset created user_id=%s asset_id=%s ticker=%s", user_id, asset.id, asset.ticker)
    invalidate_user_caches(cache, user_id)
    return asset, True


def update_asset(
    db: Session,
    cache: CacheManager,
    user_id: int,
    asset_id: int,
    payload: AssetUpdate,
) -> Asset:
    if not payload.model_fields_set:
        raise ValidationFailed("Provide at least one of shares, avgPrice or notes")
    asset = get_asset(db, user_id, asset_id)
    if payload.shares is not None:
        asset.shares = payload.shares
    if payload.avg_price is not None:
        asset.avg_price = payload.avg_price
    if "notes" in payload.model_fields_set:
        asset.notes = payload.notes
    _commit(db)
    db.refresh(asset)
    invalidate_user_caches(cache, user_id)
    return asset


def delete_asset(db: Session, cache: CacheManager, user_id: int, asset_id: int) -> Optional[int]:
    asset = get_asset(db, user_id, asset_id)
    # Explicit so SQLite without foreign-key enforcement still loses the rows
    db.query(Dividend).filter(Dividend.asset_id == asset.id).delete(synchronize_session=False)
    db.delete(asset)
    _commit(db)
    logger.info("asset deleted user_id=%s asset_id=%s", user_id, asset_id)
    invalidate_user_caches(cache, user_id)
    return asset_id
