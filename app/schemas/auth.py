"""Request/response schemas for auth endpoints."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.core.security import (
    EMAIL_MAX_LEN,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
)

Role = Literal["admin", "user"]


class RegisterRequest(BaseModel):
    """New account details. Role defaults to 'user' when omitted or empty."""

    username: str = Field(..., min_length=USERNAME_MIN_LEN, max_length=USERNAME_MAX_LEN)
    email: EmailStr = Field(..., max_length=EMAIL_MAX_LEN)
    password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)
    role: Role | Literal[""] | None = None


class LoginRequest(BaseModel):
    """Credentials for login."""

    username: str = Field(..., min_length=1, max_length=USERNAME_MAX_LEN, description="Username")
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN, description="Password")


class ProfileUpdate(BaseModel):
    """Partial profile update; empty or missing fields are left unchanged."""

    username: str | None = Field(default=None, max_length=USERNAME_MAX_LEN)
    email: str | None = Field(default=None, max_length=EMAIL_MAX_LEN)
    role: Role | Literal[""] | None = None
    is_active: bool | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN)
    new_password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)


class TokenPayload(BaseModel):
    """Claims carried by a session token, validated once at verification time."""

    model_config = ConfigDict(extra="ignore")

    user_id: int
    username: str
    role: Role
    exp: int
    iat: int
    jti: str


class CurrentUser(BaseModel):
    """Authenticated caller bound by the access gate (id, username, role)."""

    id: int
    username: str
    role: Role


class UserPublicView(BaseModel):
    """User as returned to clients. Never carries the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: Role
    is_active: bool
    created_at: datetime
    updated_at: datetime
    last_login: datetime | None = None


class LoginResult(BaseModel):
    """JWT issued after successful login, with its expiry and the user."""

    token: str
    expires_at: datetime
    user: UserPublicView


class UserListPage(BaseModel):
    """One page of users (admin only), newest first."""

    users: list[UserPublicView]
    total: int
    page: int
    per_page: int
    total_pages: int


class UserStats(BaseModel):
    """Aggregate user counts; new_users_today counts the current UTC calendar day."""

    total_users: int
    active_users: int
    admin_users: int
    regular_users: int
    new_users_today: int
