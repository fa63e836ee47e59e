"""Signing and verification of stateless session tokens (JWT, HS256)."""

import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import jwt
from pydantic import ValidationError

from app.core.config import SUPPORTED_JWT_ALGORITHM, AuthConfig
from app.core.errors import TokenExpired, TokenMalformed, TokenSignatureInvalid
from app.schemas.auth import TokenPayload

# Claims every token must carry; the registered ones are also enforced by PyJWT.
REQUIRED_CLAIMS = ("user_id", "username", "role", "exp", "iat", "jti")
JTI_BYTES = 16


def _new_token_id() -> str:
    return secrets.token_hex(JTI_BYTES)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


class TokenCodec:
    """
    Issues and verifies compact HS256 tokens carrying user id, username and role.

    Verification is pure computation against the configured secret and the
    caller's clock; it never consults the user directory, so a token stays
    valid until it expires or the secret is rotated.
    """

    def __init__(
        self,
        config: AuthConfig,
        token_id_factory: Callable[[], str] | None = None,
    ) -> None:
        if not config.secret:
            raise ValueError("TokenCodec requires a non-empty secret")
        if config.algorithm != SUPPORTED_JWT_ALGORITHM:
            raise ValueError(f"Unsupported token algorithm: {config.algorithm}")
        self._secret = config.secret
        self._lifetime_seconds = config.expire_hours * 3600
        self._new_token_id = token_id_factory or _new_token_id

    def issue(self, user_id: int, username: str, role: str, now: datetime) -> IssuedToken:
        """Sign a token for the user; expiry is now plus the configured lifetime."""
        issued_at = int(now.timestamp())
        expires_at = issued_at + self._lifetime_seconds
        payload: dict[str, Any] = {
            "user_id": user_id,
            "username": username,
            "role": role,
            "exp": expires_at,
            "iat": issued_at,
            "jti": self._new_token_id(),
        }
        token = jwt.encode(payload, self._secret, algorithm=SUPPORTED_JWT_ALGORITHM)
        return IssuedToken(token=token, expires_at=datetime.fromtimestamp(expires_at, UTC))

    def verify(self, token: str, now: datetime) -> TokenPayload:
        """
        Verify signature and expiry and return the typed payload.

        Raises TokenMalformed, TokenSignatureInvalid or TokenExpired.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise TokenMalformed(f"Token is malformed: {e}") from e
        # Refuse anything but HS256 before touching the key (alg confusion, alg=none).
        if header.get("alg") != SUPPORTED_JWT_ALGORITHM:
            raise TokenSignatureInvalid(
                f"Unexpected signing algorithm: {header.get('alg')!r}"
            )

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[SUPPORTED_JWT_ALGORITHM],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["exp", "iat", "jti"],
                },
            )
        except jwt.InvalidSignatureError as e:
            raise TokenSignatureInvalid() from e
        except jwt.InvalidAlgorithmError as e:
            raise TokenSignatureInvalid(f"Unexpected signing algorithm: {e}") from e
        except jwt.InvalidTokenError as e:
            raise TokenMalformed(f"Token is malformed: {e}") from e

        missing = [name for name in REQUIRED_CLAIMS if name not in claims]
        if missing:
            raise TokenMalformed(f"Token is missing claims: {', '.join(missing)}")
        try:
            payload = TokenPayload.model_validate(claims, strict=True)
        except ValidationError as e:
            raise TokenMalformed(f"Token claims are invalid: {e.error_count()} error(s)") from e

        if int(now.timestamp()) >= payload.exp:
            raise TokenExpired()
        return payload
