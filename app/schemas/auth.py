from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, Literal


RoleType = Literal["admin", "staff"]


class UserBase(BaseModel):
    """Base user schema."""

    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class UserCreate(UserBase):
    """Schema for creating a dashboard user."""

    password: str = Field(..., min_length=8)


class UserResponse(UserBase):
    """Schema for user response."""

    id: int
    is_active: bool
    is_superuser: bool
    created_at: Optional[datetime] = None
    role: RoleType = "staff"

    class Config:
        from_attributes = True

    @classmethod
    def from_db_user(cls, user) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            is_superuser=user.is_superuser,
            created_at=user.created_at,
            role="admin" if user.is_superuser else "staff",
        )


class AuthMeResponse(BaseModel):
    user: UserResponse


class Token(BaseModel):
    """JWT token pair."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until the access token expires


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenData(BaseModel):
    """Claims read back from a token."""

    user_id: Optional[int] = None
    email: Optional[str] = None
    token_type: str = "access"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
