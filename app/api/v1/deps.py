"""
Dependencies for auth routes: service wiring and the access gate.

The access gate runs before every protected handler. It extracts the bearer
token, has AuthService verify it, binds the caller onto request.state and
optionally enforces a role. It never reads the user directory itself.
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from app.core.config import AuthConfig, get_settings
from app.core.database import get_db
from app.core.deadline import Deadline
from app.core.errors import (
    InsufficientPermissions,
    MalformedAuthHeader,
    MissingAuthHeader,
    TokenError,
)
from app.core.security import ROLE_ADMIN, PasswordHasher
from app.core.tokens import TokenCodec
from app.schemas.auth import CurrentUser
from app.services.auth_service import AuthService, Clock, SystemClock
from app.services.user_directory import SqlUserDirectory

logger = logging.getLogger(__name__)


@lru_cache
def get_auth_config() -> AuthConfig:
    """Immutable auth configuration, built once from settings."""
    return AuthConfig.from_settings(get_settings())


def get_clock() -> Clock:
    return SystemClock()


def get_auth_service(
    db: Annotated[Session, Depends(get_db)],
    config: Annotated[AuthConfig, Depends(get_auth_config)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> AuthService:
    """Per-request AuthService over a directory bound to this request's session and deadline."""
    directory = SqlUserDirectory(db, Deadline.after(get_settings().DIRECTORY_TIMEOUT_SEC))
    return AuthService(
        directory=directory,
        codec=TokenCodec(config),
        hasher=PasswordHasher(config.bcrypt_rounds),
        clock=clock,
    )


def _bearer_token(authorization: str | None) -> str:
    if authorization is None or not authorization.strip():
        raise MissingAuthHeader()
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer":
        raise MalformedAuthHeader()
    token = token.strip()
    if not token:
        raise MalformedAuthHeader("Empty token")
    return token


class AccessGate:
    """
    Dependency guarding a protected route.

    With required_role set, the verified role must match it exactly.
    """

    def __init__(self, required_role: str | None = None) -> None:
        self.required_role = required_role

    def __call__(
        self,
        request: Request,
        auth: Annotated[AuthService, Depends(get_auth_service)],
        authorization: Annotated[str | None, Header()] = None,
    ) -> CurrentUser:
        log_extra = {"method": request.method, "path": request.url.path}
        try:
            token = _bearer_token(authorization)
        except (MissingAuthHeader, MalformedAuthHeader) as e:
            logger.warning("Rejected request: %s", e.message, extra=log_extra)
            raise

        try:
            payload = auth.validate_token(token)
        except TokenError as e:
            # Client only sees "Invalid token"; the exact kind stays in the log.
            logger.warning(
                "Rejected token: %s",
                type(e).__name__,
                extra={**log_extra, "reason": e.message},
            )
            raise

        if self.required_role is not None and payload.role != self.required_role:
            logger.warning(
                "Insufficient permissions",
                extra={
                    **log_extra,
                    "required_role": self.required_role,
                    "user_role": payload.role,
                    "user_id": payload.user_id,
                },
            )
            raise InsufficientPermissions(f"Access denied - {self.required_role} role required")

        request.state.user_id = payload.user_id
        request.state.username = payload.username
        request.state.user_role = payload.role
        logger.debug("Token validated", extra={**log_extra, "user_id": payload.user_id})
        return CurrentUser(id=payload.user_id, username=payload.username, role=payload.role)


require_user = AccessGate()
require_admin = AccessGate(required_role=ROLE_ADMIN)
