# services/auth.py
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.settings import Settings
from database import get_db
from models.user import User
from services.errors import DuplicateError, UnauthorizedError, map_db_error

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# auto_error=False so a missing header goes through the same 401 path as a bad token
bearer_scheme = HTTPBearer(auto_error=False)

# ========================
# Password helpers
# ========================

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

# ========================
# JWT helpers
# ========================

def create_access_token(
    settings: Settings,
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"iat": int(now.timestamp()), "exp": int(expire.timestamp())})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

def decode_access_token(settings: Settings, token: str) -> Dict[str, Any]:
    """
    Decode & verify JWT. Raises UnauthorizedError on failure.
    """
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise UnauthorizedError()

# ========================
# Account operations
# ========================

def register_user(db: Session, *, name: str, email: str, password: str) -> User:
    if db.query(User).filter(User.email == email).first():
        raise DuplicateError("An account with this email already exists")

    user = User(name=name, email=email, hashed_password=get_password_hash(password))
    db.add(user)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise map_db_error(exc)
    db.refresh(user)
    logger.info("user registered user_id=%s", user.id)
    return user

def authenticate_user(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(password, user.hashed_password):
        raise UnauthorizedError("Invalid email or password")
    return user

def issue_token(settings: Settings, user: User) -> str:
    return create_access_token(settings, {"sub": str(user.id)})

# ========================
# User dependency
# ========================

def _get_user_by_sub(db: Session, sub: Any) -> User:
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise UnauthorizedError()
    user = db.get(User, user_id)
    if not user:
        raise UnauthorizedError()
    return user

def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise UnauthorizedError()
    payload = decode_access_token(request.app.state.settings, credentials.credentials)
    return _get_user_by_sub(db, payload.get("sub"))
