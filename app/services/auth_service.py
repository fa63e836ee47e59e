"""
Auth service: registration, login, token validation, profile and password
changes, and the admin user directory views.

All collaborators (directory, token codec, password hasher, clock) are injected;
nothing here reads settings or talks to the network.
"""

import logging
import math
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from email_validator import EmailNotValidError, validate_email

from app.core.errors import (
    AccountDisabled,
    DirectoryConflict,
    DirectoryUnavailable,
    DuplicateEmail,
    DuplicateUsername,
    IncorrectCurrentPassword,
    InvalidCredentials,
    UserNotFound,
    ValidationFailed,
)
from app.core.security import (
    EMAIL_MAX_LEN,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    ROLE_ADMIN,
    ROLE_USER,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
    VALID_ROLES,
    PasswordHasher,
)
from app.core.tokens import TokenCodec
from app.models import User
from app.schemas.auth import (
    LoginResult,
    ProfileUpdate,
    TokenPayload,
    UserListPage,
    UserPublicView,
    UserStats,
)
from app.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 10
MAX_PER_PAGE = 100


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class MonotonicIdGenerator:
    """
    User ids from the nanosecond wall clock, strictly increasing within the process.

    Collisions across processes are possible but accepted as negligible.
    """

    def __init__(self, source: Callable[[], int] = time.time_ns) -> None:
        self._source = source
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            self._last = max(self._source(), self._last + 1)
            return self._last


new_user_id = MonotonicIdGenerator()


def _validate_username(username: str) -> str:
    username = username.strip()
    if not (USERNAME_MIN_LEN <= len(username) <= USERNAME_MAX_LEN):
        raise ValidationFailed(
            f"Username must be {USERNAME_MIN_LEN}-{USERNAME_MAX_LEN} characters."
        )
    return username


def _validate_email(email: str) -> str:
    if len(email) > EMAIL_MAX_LEN:
        raise ValidationFailed("Email is too long.")
    try:
        return validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationFailed(f"Invalid email: {e}") from e


def _validate_password(password: str, field: str = "Password") -> None:
    if not (PASSWORD_MIN_LEN <= len(password) <= PASSWORD_MAX_LEN):
        raise ValidationFailed(
            f"{field} must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters."
        )


def _validate_role(role: str) -> str:
    if role not in VALID_ROLES:
        raise ValidationFailed("Role must be 'admin' or 'user'.")
    return role


def _to_public(user: User) -> UserPublicView:
    return UserPublicView.model_validate(user)


def _duplicate_error(conflict: DirectoryConflict) -> DuplicateUsername | DuplicateEmail:
    if conflict.field == "email":
        return DuplicateEmail()
    return DuplicateUsername()


class AuthService:
    """Central auth business logic over the user directory."""

    def __init__(
        self,
        *,
        directory: UserDirectory,
        codec: TokenCodec,
        hasher: PasswordHasher,
        clock: Clock | None = None,
        id_factory: Callable[[], int] | None = None,
    ) -> None:
        self.directory = directory
        self.codec = codec
        self.hasher = hasher
        self.clock = clock or SystemClock()
        self._new_id = id_factory or new_user_id

    # --------- Registration and login ----------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        role: str | None = None,
    ) -> UserPublicView:
        """
        Create an active account. Role defaults to 'user' when None or empty.

        Raises ValidationFailed, DuplicateUsername or DuplicateEmail.
        """
        username = _validate_username(username)
        email = _validate_email(email)
        _validate_password(password)
        role = _validate_role(role or ROLE_USER)

        if self.directory.get_by_username(username) is not None:
            raise DuplicateUsername()
        if self.directory.get_by_email(email) is not None:
            raise DuplicateEmail()

        now = self.clock.now()
        user = User(
            id=self._new_id(),
            username=username,
            email=email,
            password_hash=self.hasher.hash(password),
            role=role,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        try:
            user = self.directory.insert(user)
        except DirectoryConflict as e:
            # Lost a race with a concurrent registration; storage uniqueness is the backstop.
            logger.info("Registration conflict at insert", extra={"field": e.field})
            raise _duplicate_error(e) from e

        logger.info("User registered", extra={"user_id": user.id, "username": username})
        return _to_public(user)

    def login(self, username: str, password: str) -> LoginResult:
        """
        Check credentials and issue a session token.

        Unknown user and wrong password both raise InvalidCredentials with the
        same message. AccountDisabled is raised only after the password matched.
        """
        user = self.directory.get_by_username(username)
        if user is None:
            self.hasher.verify_dummy(password)
            logger.info("Login failed: unknown user", extra={"username": username})
            raise InvalidCredentials()
        if not self.hasher.verify(password, user.password_hash):
            logger.info("Login failed: wrong password", extra={"user_id": user.id})
            raise InvalidCredentials()
        if not user.is_active:
            logger.info("Login refused: account disabled", extra={"user_id": user.id})
            raise AccountDisabled()

        now = self.clock.now()
        issued = self.codec.issue(user.id, user.username, user.role, now)
        view = _to_public(user)

        try:
            self.directory.update_last_login(user.id, now)
        except DirectoryUnavailable as e:
            logger.warning(
                "Failed to update last login: %s",
                e.message,
                extra={"user_id": user.id},
            )
        view.last_login = now

        logger.info("User logged in", extra={"user_id": user.id})
        return LoginResult(token=issued.token, expires_at=issued.expires_at, user=view)

    def validate_token(self, token: str, now: datetime | None = None) -> TokenPayload:
        """Verify a session token; token error kinds propagate unchanged."""
        return self.codec.verify(token, now or self.clock.now())

    # --------- Own account ----------

    def get_user(self, user_id: int) -> UserPublicView:
        user = self.directory.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return _to_public(user)

    def update_profile(self, user_id: int, fields: ProfileUpdate) -> UserPublicView:
        """
        Apply the non-empty fields of a partial update.

        Username and email must stay unique among the other users. updated_at is
        refreshed even when nothing else changes.
        """
        user = self.directory.get_by_id(user_id)
        if user is None:
            raise UserNotFound()

        changes: dict[str, object] = {}
        if fields.username:
            username = _validate_username(fields.username)
            other = self.directory.get_by_username(username)
            if other is not None and other.id != user_id:
                raise DuplicateUsername()
            changes["username"] = username
        if fields.email:
            email = _validate_email(fields.email)
            other = self.directory.get_by_email(email)
            if other is not None and other.id != user_id:
                raise DuplicateEmail()
            changes["email"] = email
        if fields.role:
            changes["role"] = _validate_role(fields.role)
        if fields.is_active is not None:
            changes["is_active"] = fields.is_active

        # Assign only after every check so a rejected update leaves the record untouched.
        for name, value in changes.items():
            setattr(user, name, value)
        user.updated_at = self.clock.now()

        try:
            user = self.directory.save(user)
        except DirectoryConflict as e:
            raise _duplicate_error(e) from e

        logger.info("User profile updated", extra={"user_id": user_id})
        return _to_public(user)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """
        Replace the password hash after checking the current password.

        Tokens issued before the change stay valid until they expire.
        """
        _validate_password(new_password, field="New password")
        user = self.directory.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        if not self.hasher.verify(current_password, user.password_hash):
            logger.info("Password change refused: wrong current password", extra={"user_id": user_id})
            raise IncorrectCurrentPassword()

        self.directory.update_password(user_id, self.hasher.hash(new_password), self.clock.now())
        logger.info("Password changed", extra={"user_id": user_id})

    # --------- Administration ----------

    def list_users(
        self,
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
        role: str | None = None,
    ) -> UserListPage:
        """Page through users, newest first. page < 1 becomes 1; per_page is clamped to [1, 100]."""
        page = max(page, 1)
        per_page = min(max(per_page, 1), MAX_PER_PAGE)
        if role:
            _validate_role(role)

        total = self.directory.count(role or None)
        users = self.directory.list_page((page - 1) * per_page, per_page, role or None)
        return UserListPage(
            users=[_to_public(u) for u in users],
            total=total,
            page=page,
            per_page=per_page,
            total_pages=math.ceil(total / per_page),
        )

    def get_stats(self) -> UserStats:
        """Aggregate counts; 'today' is the current UTC calendar day."""
        now = self.clock.now().astimezone(UTC)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.directory.stats(day_start)

    def delete_user(self, user_id: int) -> None:
        """Hard delete. UserNotFound comes from the directory when the id is unknown."""
        self.directory.delete(user_id)
        logger.info("User deleted", extra={"user_id": user_id})

    def bootstrap_admin(self, username: str, email: str, password: str) -> UserPublicView:
        """
        Create the first administrator.

        Not part of the normal registration flow; refuses once any admin exists.
        """
        if self.directory.count(ROLE_ADMIN) > 0:
            raise ValidationFailed("An admin account already exists.")
        return self.register(username, email, password, role=ROLE_ADMIN)
