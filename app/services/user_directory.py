"""
User directory: persistent store of user records behind a small capability interface.

AuthService depends only on the UserDirectory protocol; SqlUserDirectory is the
SQLAlchemy implementation used by the API and the CLI.
"""

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Protocol

from sqlalchemy import case, func, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.deadline import Deadline
from app.core.errors import DirectoryConflict, DirectoryUnavailable, UserNotFound
from app.core.security import ROLE_ADMIN, ROLE_USER
from app.models import User
from app.schemas.auth import UserStats

logger = logging.getLogger(__name__)

# Index name (Postgres constraint, migration), table.column (SQLite) or "Key (col)=" (Postgres detail).
_CONFLICT_COLUMN = re.compile(r"(?:ix_users_|users\.|Key \()(email|username)\b")


class UserDirectory(Protocol):
    """Lookup, insert, update, paginated list and aggregate counts over user records."""

    def get_by_id(self, user_id: int) -> User | None: ...
    def get_by_username(self, username: str) -> User | None: ...
    def get_by_email(self, email: str) -> User | None: ...
    def insert(self, user: User) -> User: ...
    def save(self, user: User) -> User: ...
    def update_password(self, user_id: int, password_hash: str, updated_at: datetime) -> None: ...
    def update_last_login(self, user_id: int, last_login: datetime) -> None: ...
    def list_page(self, offset: int, limit: int, role: str | None = None) -> list[User]: ...
    def count(self, role: str | None = None) -> int: ...
    def stats(self, day_start: datetime) -> UserStats: ...
    def delete(self, user_id: int) -> None: ...


def _conflict_field(error: IntegrityError) -> str | None:
    """Name the unique column a constraint violation refers to, if recognisable."""
    diag = getattr(error.orig, "diag", None)
    for source in (getattr(diag, "constraint_name", None), str(error.orig)):
        if not source:
            continue
        match = _CONFLICT_COLUMN.search(source)
        if match:
            return match.group(1)
    return None


class SqlUserDirectory:
    """UserDirectory backed by a SQLAlchemy session (one per request)."""

    # SQLite VM instructions between deadline checks while a statement runs.
    SQLITE_PROGRESS_STEPS = 1000

    def __init__(self, db: Session, deadline: Deadline | None = None) -> None:
        self._db = db
        self._deadline = deadline or Deadline.none()

    @contextmanager
    def _statement_deadline(self) -> Iterator[None]:
        """Make the database itself abort statements that outlive the deadline."""
        remaining = self._deadline.remaining()
        dialect = self._db.get_bind().dialect.name if remaining is not None else None
        if dialect == "postgresql":
            # Transaction-local; reset by the commit or rollback that ends the call.
            self._db.execute(
                text("SELECT set_config('statement_timeout', :timeout, true)"),
                {"timeout": str(max(1, int(remaining * 1000)))},
            )
            yield
        elif dialect == "sqlite":
            raw = self._db.connection().connection.driver_connection
            raw.set_progress_handler(lambda: int(self._deadline.expired()), self.SQLITE_PROGRESS_STEPS)
            try:
                yield
            finally:
                raw.set_progress_handler(None, 0)
        else:
            yield

    @contextmanager
    def _call(self, operation: str) -> Iterator[None]:
        """Guard one directory call: enforce the deadline and translate storage errors."""
        if self._deadline.expired():
            logger.error("Directory deadline elapsed", extra={"operation": operation})
            raise DirectoryUnavailable(f"Deadline elapsed before {operation}")
        try:
            with self._statement_deadline():
                yield
        except IntegrityError as e:
            self._db.rollback()
            field = _conflict_field(e)
            if field is None:
                logger.exception("Directory integrity error", extra={"operation": operation})
                raise DirectoryUnavailable(f"{operation} failed") from e
            raise DirectoryConflict(field) from e
        except SQLAlchemyError as e:
            self._db.rollback()
            if self._deadline.expired():
                logger.error("Directory deadline elapsed during call", extra={"operation": operation})
                raise DirectoryUnavailable(f"Deadline elapsed during {operation}") from e
            logger.exception("Directory call failed", extra={"operation": operation})
            raise DirectoryUnavailable(f"{operation} failed") from e

    def get_by_id(self, user_id: int) -> User | None:
        with self._call("get_by_id"):
            return self._db.query(User).filter(User.id == user_id).first()

    def get_by_username(self, username: str) -> User | None:
        with self._call("get_by_username"):
            return self._db.query(User).filter(User.username == username).first()

    def get_by_email(self, email: str) -> User | None:
        with self._call("get_by_email"):
            return self._db.query(User).filter(User.email == email).first()

    def insert(self, user: User) -> User:
        with self._call("insert"):
            self._db.add(user)
            self._db.commit()
            self._db.refresh(user)
        return user

    def save(self, user: User) -> User:
        """Persist field edits on a user previously loaded from this directory."""
        with self._call("save"):
            self._db.commit()
            self._db.refresh(user)
        return user

    def update_password(self, user_id: int, password_hash: str, updated_at: datetime) -> None:
        with self._call("update_password"):
            updated = (
                self._db.query(User)
                .filter(User.id == user_id)
                .update(
                    {User.password_hash: password_hash, User.updated_at: updated_at},
                    synchronize_session=False,
                )
            )
            self._db.commit()
        if updated == 0:
            raise UserNotFound()

    def update_last_login(self, user_id: int, last_login: datetime) -> None:
        with self._call("update_last_login"):
            self._db.query(User).filter(User.id == user_id).update(
                {User.last_login: last_login},
                synchronize_session=False,
            )
            self._db.commit()

    def list_page(self, offset: int, limit: int, role: str | None = None) -> list[User]:
        with self._call("list_page"):
            query = self._db.query(User)
            if role:
                query = query.filter(User.role == role)
            return (
                query.order_by(User.created_at.desc(), User.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )

    def count(self, role: str | None = None) -> int:
        with self._call("count"):
            query = self._db.query(func.count(User.id))
            if role:
                query = query.filter(User.role == role)
            return int(query.scalar() or 0)

    def stats(self, day_start: datetime) -> UserStats:
        def count_if(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        with self._call("stats"):
            row = self._db.query(
                func.count(User.id),
                count_if(User.is_active.is_(True)),
                count_if(User.role == ROLE_ADMIN),
                count_if(User.role == ROLE_USER),
                count_if(User.created_at >= day_start),
            ).one()
        total, active, admins, regular, new_today = (int(v or 0) for v in row)
        return UserStats(
            total_users=total,
            active_users=active,
            admin_users=admins,
            regular_users=regular,
            new_users_today=new_today,
        )

    def delete(self, user_id: int) -> None:
        with self._call("delete"):
            deleted = (
                self._db.query(User)
                .filter(User.id == user_id)
                .delete(synchronize_session=False)
            )
            self._db.commit()
        if deleted == 0:
            raise UserNotFound()
