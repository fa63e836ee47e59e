"""Map auth error kinds to HTTP responses in the {success: false, error} envelope."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.errors import (
    AccountDisabled,
    AuthError,
    DirectoryConflict,
    DirectoryUnavailable,
    DuplicateEmail,
    DuplicateUsername,
    IncorrectCurrentPassword,
    InsufficientPermissions,
    InvalidCredentials,
    MalformedAuthHeader,
    MissingAuthHeader,
    TokenError,
    UserNotFound,
    ValidationFailed,
)
from app.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

GENERIC_CREDENTIALS_MESSAGE = InvalidCredentials.default_message
GENERIC_TOKEN_MESSAGE = "Invalid token"
GENERIC_SERVER_MESSAGE = "Internal server error"

# (status, client message or None to pass the error's own message through)
_ERROR_RESPONSES: list[tuple[type[AuthError], int, str | None]] = [
    (ValidationFailed, status.HTTP_400_BAD_REQUEST, None),
    (IncorrectCurrentPassword, status.HTTP_400_BAD_REQUEST, None),
    (DuplicateUsername, status.HTTP_409_CONFLICT, None),
    (DuplicateEmail, status.HTTP_409_CONFLICT, None),
    (InvalidCredentials, status.HTTP_401_UNAUTHORIZED, GENERIC_CREDENTIALS_MESSAGE),
    (AccountDisabled, status.HTTP_401_UNAUTHORIZED, GENERIC_CREDENTIALS_MESSAGE),
    (MissingAuthHeader, status.HTTP_401_UNAUTHORIZED, None),
    (MalformedAuthHeader, status.HTTP_401_UNAUTHORIZED, None),
    (TokenError, status.HTTP_401_UNAUTHORIZED, GENERIC_TOKEN_MESSAGE),
    (InsufficientPermissions, status.HTTP_403_FORBIDDEN, None),
    (UserNotFound, status.HTTP_404_NOT_FOUND, UserNotFound.default_message),
]


def error_response(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
        headers=headers,
    )


def resolve_auth_error(exc: AuthError) -> tuple[int, str]:
    """Status code and client-safe message for an error kind."""
    for kind, status_code, message in _ERROR_RESPONSES:
        if isinstance(exc, kind):
            return status_code, message or exc.message
    return status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_SERVER_MESSAGE


def register_error_handlers(app: FastAPI) -> None:
    """Register the error-envelope handlers on the app."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        status_code, message = resolve_auth_error(exc)
        if isinstance(exc, (DirectoryUnavailable, DirectoryConflict)) or status_code >= 500:
            logger.error(
                "Request failed: %s",
                exc.message,
                exc_info=exc,
                extra={"path": request.url.path, "kind": type(exc).__name__},
            )
        headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
        return error_response(status_code, message, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
        else:
            message = "Invalid request"
        logger.info("Validation failed", extra={"path": request.url.path, "error_count": len(errors)})
        return error_response(status.HTTP_400_BAD_REQUEST, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return error_response(exc.status_code, str(exc.detail), getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            extra={"path": request.url.path},
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_SERVER_MESSAGE)
