"""Pydantic request/response schemas."""

from app.schemas.auth import (
    ChangePasswordRequest,
    CurrentUser,
    LoginRequest,
    LoginResult,
    ProfileUpdate,
    RegisterRequest,
    TokenPayload,
    UserListPage,
    UserPublicView,
    UserStats,
)
from app.schemas.common import ApiResponse, ErrorResponse
from app.schemas.health import HealthResponse

__all__ = [
    "ApiResponse",
    "ChangePasswordRequest",
    "CurrentUser",
    "ErrorResponse",
    "HealthResponse",
    "LoginRequest",
    "LoginResult",
    "ProfileUpdate",
    "RegisterRequest",
    "TokenPayload",
    "UserListPage",
    "UserPublicView",
    "UserStats",
]
