"""
FastAPI Dependencies

Database session and authentication dependencies shared by the routers.

SECURITY NOTES:
- JWT payloads and passwords are never logged
- Bearer token is the primary auth method; the session cookie is a fallback
- Refresh tokens are rejected where an access token is expected
"""

from typing import Annotated, Optional
from fastapi import Depends, Cookie
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from jose import JWTError, jwt
import bcrypt
from datetime import datetime, timedelta, timezone
import logging

from app.database import get_db
from app.config import settings
from app.exceptions import UnauthorizedError, ForbiddenError
from app.models.user import User
from app.schemas.auth import TokenData

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _encode(data: dict, token_type: str, expires_delta: timedelta) -> str:
    claims = data.copy()
    claims.update({"exp": datetime.now(timezone.utc) + expires_delta, "type": token_type})
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    return _encode(
        data,
        ACCESS_TOKEN_TYPE,
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(data: dict) -> str:
    """Create a longer-lived token that can only be exchanged for a new pair."""
    return _encode(data, REFRESH_TOKEN_TYPE, timedelta(minutes=settings.REFRESH_TOKEN_EXPIRE_MINUTES))


def decode_token(token: str, expected_type: str = ACCESS_TOKEN_TYPE) -> TokenData:
    """Validate a token and return its claims; raises UnauthorizedError."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        sub = payload.get("sub")
        if sub is None:
            raise UnauthorizedError("Could not validate credentials")
        data = TokenData(
            user_id=int(sub),
            email=payload.get("email"),
            token_type=payload.get("type", ACCESS_TOKEN_TYPE),
        )
    except (JWTError, ValueError):
        logger.warning("JWT validation failed")
        raise UnauthorizedError("Could not validate credentials")

    if data.token_type != expected_type:
        logger.warning(f"Rejected {data.token_type} token where {expected_type} was expected")
        raise UnauthorizedError("Could not validate credentials")
    return data


async def load_active_user(db: AsyncSession, user_id: Optional[int]) -> User:
    user = await db.get(User, user_id) if user_id is not None else None
    if user is None:
        raise UnauthorizedError("Could not validate credentials")
    if not user.is_active:
        raise ForbiddenError("User account is disabled")
    return user


async def get_current_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)] = None,
    session_token: Annotated[Optional[str], Cookie(alias="session")] = None,
) -> User:
    """Resolve the dashboard user from a bearer token or the session cookie."""
    if credentials:
        token, auth_method = credentials.credentials, "bearer"
    elif session_token:
        token, auth_method = session_token, "cookie"
    else:
        raise UnauthorizedError("Could not validate credentials")

    token_data = decode_token(token)
    user = await load_active_user(db, token_data.user_id)
    logger.debug("User authenticated", extra={"user_id": user.id, "auth_method": auth_method})
    return user


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
