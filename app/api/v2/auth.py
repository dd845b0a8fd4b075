from fastapi import APIRouter, Response, status
from sqlalchemy import select
import logging

from app.api.deps import (
    DbSession,
    CurrentUser,
    REFRESH_TOKEN_TYPE,
    verify_password,
    get_password_hash,
    create_access_token,
    create_refresh_token,
    decode_token,
    load_active_user,
)
from app.config import settings
from app.exceptions import ConflictError, UnauthorizedError
from app.models.user import User
from app.schemas.auth import (
    UserCreate,
    UserResponse,
    Token,
    LoginRequest,
    RefreshRequest,
    AuthMeResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _issue_tokens(response: Response, user: User) -> Token:
    claims = {"sub": str(user.id), "email": user.email}
    access_token = create_access_token(claims)

    response.set_cookie(
        key="session",
        value=access_token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return Token(
        access_token=access_token,
        refresh_token=create_refresh_token(claims),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/login", response_model=Token)
async def login(response: Response, login_data: LoginRequest, db: DbSession):
    """Authenticate a dashboard user and issue a token pair."""
    result = await db.execute(select(User).where(User.email == login_data.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.hashed_password):
        logger.info("Rejected login attempt")
        raise UnauthorizedError("Incorrect email or password")
    if not user.is_active:
        raise UnauthorizedError("User account is disabled")

    logger.info(f"User {user.id} logged in")
    return _issue_tokens(response, user)


@router.post("/refresh", response_model=Token)
async def refresh(response: Response, body: RefreshRequest, db: DbSession):
    """Exchange a refresh token for a new token pair."""
    token_data = decode_token(body.refresh_token, expected_type=REFRESH_TOKEN_TYPE)
    user = await load_active_user(db, token_data.user_id)
    return _issue_tokens(response, user)


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(key="session")
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=AuthMeResponse)
async def get_current_user_info(current_user: CurrentUser):
    return AuthMeResponse(user=UserResponse.from_db_user(current_user))


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, db: DbSession):
    """Register a dashboard user."""
    result = await db.execute(select(User).where(User.email == user_data.email))
    if result.scalar_one_or_none():
        raise ConflictError("Email already registered")

    user = User(
        email=user_data.email,
        hashed_password=get_password_hash(user_data.password),
        first_name=user_data.first_name,
        last_name=user_data.last_name,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    logger.info(f"Registered user {user.id}")
    return UserResponse.from_db_user(user)
