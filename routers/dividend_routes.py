from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_dividend_service
from models.user import User
from schemas.general import ok
from services.auth import get_current_user
from services.dividend_service import MAX_WINDOW_DAYS, DividendService

router = APIRouter()


@router.get("/upcoming")
async def upcoming_dividends(
    days: int = Query(30, ge=1, le=MAX_WINDOW_DAYS),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    dividends: DividendService = Depends(get_dividend_service),
):
    data, message = await dividends.upcoming(db, user.id, days)
    return ok(data, message=message)


@router.get("/annual")
async def annual_dividends(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    dividends: DividendService = Depends(get_dividend_service),
):
    return ok(await dividends.annual(db, user.id))
