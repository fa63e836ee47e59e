"""
Error kinds raised by the auth core.

The core raises these and never picks HTTP status codes; app.api.errors maps
each kind to a response.
"""


class AuthError(Exception):
    """Base for every error kind the auth core raises."""

    default_message = "Authentication error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# Validation and conflicts


class ValidationFailed(AuthError):
    """Malformed or out-of-range input."""

    default_message = "Validation failed"


class DuplicateUsername(AuthError):
    default_message = "Username is already taken"


class DuplicateEmail(AuthError):
    default_message = "Email is already registered"


# Authentication


class InvalidCredentials(AuthError):
    """Unknown username or wrong password; both use the same message."""

    default_message = "Invalid username or password"


class AccountDisabled(AuthError):
    default_message = "Account is disabled"


class IncorrectCurrentPassword(AuthError):
    default_message = "Current password is incorrect"


class TokenError(AuthError):
    """Base for token verification failures."""

    default_message = "Invalid token"


class TokenMalformed(TokenError):
    default_message = "Token is malformed"


class TokenSignatureInvalid(TokenError):
    default_message = "Token signature is invalid"


class TokenExpired(TokenError):
    default_message = "Token has expired"


class MissingAuthHeader(AuthError):
    default_message = "Missing Authorization header"


class MalformedAuthHeader(AuthError):
    default_message = "Invalid Authorization header format"


# Authorization


class InsufficientPermissions(AuthError):
    default_message = "Insufficient permissions"


# Directory


class UserNotFound(AuthError):
    default_message = "User not found"


class DirectoryUnavailable(AuthError):
    """User directory failed or ran out of time; detail stays server-side."""

    default_message = "User directory unavailable"


class DirectoryConflict(AuthError):
    """Storage rejected a write on a unique column (username or email)."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"Duplicate value for {field}")
