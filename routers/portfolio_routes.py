from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_cache, get_enrichment_service, get_gateway
from models.user import User
from schemas.asset import AssetCreate, AssetUpdate
from schemas.general import ok
from services.asset_service import add_asset, delete_asset, update_asset
from services.auth import get_current_user
from services.cache.cache_manager import CacheManager
from services.enrichment_service import EnrichmentService
from services.market_data.gateway import MarketDataGateway

router = APIRouter()


@router.get("")
async def list_positions(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    enrichment: EnrichmentService = Depends(get_enrichment_service),
):
    return ok(await enrichment.enrich_holdings(db, user.id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_position(
    payload: AssetCreate,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: MarketDataGateway = Depends(get_gateway),
    cache: CacheManager = Depends(get_cache),
    enrichment: EnrichmentService = Depends(get_enrichment_service),
):
    asset, created = await add_asset(db, gateway, cache, user.id, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
    message = "Asset added successfully" if created else "Position merged with existing holding"
    return ok(await enrichment.enrich_one(asset), message=message)


@router.get("/summary")
async def portfolio_summary(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    enrichment: EnrichmentService = Depends(get_enrichment_service),
):
    return ok(await enrichment.get_summary(db, user.id))


@router.post("/summary/refresh")
async def refresh_portfolio_summary(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    enrichment: EnrichmentService = Depends(get_enrichment_service),
):
    return ok(await enrichment.refresh_summary(db, user.id), message="Portfolio summary refreshed")


@router.patch("/{asset_id}")
async def update_position(
    asset_id: int,
    payload: AssetUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheManager = Depends(get_cache),
    enrichment: EnrichmentService = Depends(get_enrichment_service),
):
    asset = update_asset(db, cache, user.id, asset_id, payload)
    return ok(await enrichment.enrich_one(asset), message="Asset updated successfully")


@router.delete("/{asset_id}")
def delete_position(
    asset_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheManager = Depends(get_cache),
):
    delete_asset(db, cache, user.id, asset_id)
    return ok({"id": asset_id}, message="Asset deleted successfully")
