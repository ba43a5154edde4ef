from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from config.settings import Settings
from database import get_db
from dependencies import get_settings
from middleware.rate_limit import limiter, register_limit
from models.user import User
from schemas.auth import LoginRequest, RegisterRequest, Token, UserOut
from schemas.general import ok
from services.auth import authenticate_user, get_current_user, issue_token, register_user

router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(register_limit)
def register(
    request: Request,
    payload: RegisterRequest,
    db: Session = Depends(get_db),
):
    user = register_user(db, name=payload.name, email=payload.email, password=payload.password)
    return ok(UserOut.model_validate(user).model_dump(mode="json"), message="User registered successfully")


@router.post("/login")
def login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = authenticate_user(db, payload.email, payload.password)
    return ok(Token(access_token=issue_token(settings, user)).model_dump())


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return ok(UserOut.model_validate(current_user).model_dump(mode="json"))
