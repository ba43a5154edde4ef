from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_screener_service
from models.user import User
from schemas.general import ok
from schemas.screener import ScreenerFilters
from services.auth import get_current_user
from services.screener_service import ScreenerService

router = APIRouter()


@router.post("/search")
def screen_stocks(
    filters: ScreenerFilters,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
    screener: ScreenerService = Depends(get_screener_service),
):
    return ok(screener.search(db, filters))


@router.get("/popular")
def popular_stocks(
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
    screener: ScreenerService = Depends(get_screener_service),
):
    return ok(screener.popular(db))


@router.get("/stock/{ticker}")
async def stock_detail(
    ticker: str,
    _user: User = Depends(get_current_user),
    screener: ScreenerService = Depends(get_screener_service),
):
    return ok(await screener.stock_detail(ticker))
