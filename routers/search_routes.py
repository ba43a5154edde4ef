from fastapi import APIRouter, Depends, Query

from dependencies import get_gateway
from models.user import User
from schemas.general import ok
from services.auth import get_current_user
from services.market_data.gateway import MarketDataGateway

router = APIRouter()


@router.get("/tickers")
async def search_tickers(
    q: str = Query("", max_length=50),
    _user: User = Depends(get_current_user),
    gateway: MarketDataGateway = Depends(get_gateway),
):
    return ok(await gateway.search_tickers(q))
