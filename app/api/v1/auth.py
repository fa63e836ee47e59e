"""Auth endpoints: register, login, own profile, and admin user management."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from app.api.v1.deps import get_auth_service, require_admin, require_user
from app.core.errors import InsufficientPermissions
from app.core.security import ROLE_ADMIN
from app.schemas.auth import (
    ChangePasswordRequest,
    CurrentUser,
    LoginRequest,
    LoginResult,
    ProfileUpdate,
    RegisterRequest,
    Role,
    UserListPage,
    UserPublicView,
    UserStats,
)
from app.schemas.common import ApiResponse
from app.services.auth_service import DEFAULT_PER_PAGE, AuthService

logger = logging.getLogger(__name__)
router = APIRouter()

AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


@router.post(
    "/register",
    response_model=ApiResponse[UserPublicView],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def register(body: RegisterRequest, auth: AuthServiceDep) -> ApiResponse[UserPublicView]:
    """Create a new account. Role defaults to 'user'."""
    user = auth.register(body.username, body.email, body.password, body.role or None)
    return ApiResponse(data=user, message="User registered successfully")


@router.post("/login", response_model=ApiResponse[LoginResult], response_model_exclude_none=True)
def login(body: LoginRequest, auth: AuthServiceDep) -> ApiResponse[LoginResult]:
    """
    Authenticate with username and password; returns a JWT and its expiry.
    Include the token in the Authorization header as: Bearer <token>
    """
    result = auth.login(body.username, body.password)
    return ApiResponse(data=result, message="Login successful")


@router.get("/me", response_model=ApiResponse[UserPublicView], response_model_exclude_none=True)
def me(
    current_user: Annotated[CurrentUser, Depends(require_user)],
    auth: AuthServiceDep,
) -> ApiResponse[UserPublicView]:
    return ApiResponse(data=auth.get_user(current_user.id))


@router.put("/profile", response_model=ApiResponse[UserPublicView], response_model_exclude_none=True)
def update_profile(
    body: ProfileUpdate,
    current_user: Annotated[CurrentUser, Depends(require_user)],
    auth: AuthServiceDep,
) -> ApiResponse[UserPublicView]:
    """
    Partial update of the caller's profile. Changing role or is_active requires admin;
    resending the current values is allowed.
    """
    if current_user.role != ROLE_ADMIN and (body.role or body.is_active is not None):
        stored = auth.get_user(current_user.id)
        if (body.role and body.role != stored.role) or (
            body.is_active is not None and body.is_active != stored.is_active
        ):
            logger.warning(
                "Non-admin attempted role/status change",
                extra={"user_id": current_user.id},
            )
            raise InsufficientPermissions("Access denied - admin role required to change role or status")
    user = auth.update_profile(current_user.id, body)
    return ApiResponse(data=user, message="Profile updated successfully")


@router.post("/change-password", response_model=ApiResponse[None], response_model_exclude_none=True)
def change_password(
    body: ChangePasswordRequest,
    current_user: Annotated[CurrentUser, Depends(require_user)],
    auth: AuthServiceDep,
) -> ApiResponse[None]:
    auth.change_password(current_user.id, body.current_password, body.new_password)
    return ApiResponse(message="Password changed successfully")


@router.get("/users", response_model=ApiResponse[UserListPage], response_model_exclude_none=True)
def list_users(
    _admin: Annotated[CurrentUser, Depends(require_admin)],
    auth: AuthServiceDep,
    page: Annotated[int, Query()] = 1,
    per_page: Annotated[int, Query()] = DEFAULT_PER_PAGE,
    role: Annotated[Role | None, Query()] = None,
) -> ApiResponse[UserListPage]:
    """List users newest first (admin only)."""
    return ApiResponse(data=auth.list_users(page, per_page, role))


@router.get("/stats", response_model=ApiResponse[UserStats], response_model_exclude_none=True)
def stats(
    _admin: Annotated[CurrentUser, Depends(require_admin)],
    auth: AuthServiceDep,
) -> ApiResponse[UserStats]:
    """User counts (admin only); new_users_today uses the UTC calendar day."""
    return ApiResponse(data=auth.get_stats())


@router.delete("/users/{user_id}", response_model=ApiResponse[None], response_model_exclude_none=True)
def delete_user(
    user_id: int,
    _admin: Annotated[CurrentUser, Depends(require_admin)],
    auth: AuthServiceDep,
) -> ApiResponse[None]:
    """Permanently remove a user (admin only)."""
    auth.delete_user(user_id)
    return ApiResponse(message="User deleted successfully")
