"""Tests for app.services.auth_service against an in-memory SQLite user directory."""

import math
import unittest
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import bcrypt

from app.core.errors import (
    AccountDisabled,
    DirectoryConflict,
    DirectoryUnavailable,
    DuplicateEmail,
    DuplicateUsername,
    IncorrectCurrentPassword,
    InvalidCredentials,
    TokenExpired,
    UserNotFound,
    ValidationFailed,
)
from app.core.security import PasswordHasher
from app.core.tokens import TokenCodec
from app.schemas.auth import ProfileUpdate
from app.services.auth_service import AuthService, MonotonicIdGenerator

from auth_fixtures import TEST_CONFIG, FixedClock, make_auth_service, make_session_factory


class AuthServiceTestCase(unittest.TestCase):
    """Fresh database, fixed clock and service per test."""

    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.clock = FixedClock()
        self.auth = make_auth_service(self.db, self.clock)

    def tearDown(self) -> None:
        self.db.close()


class TestRegister(AuthServiceTestCase):
    def test_defaults_to_active_user(self) -> None:
        user = self.auth.register("alice", "alice@x.com", "secret1")
        self.assertEqual(user.username, "alice")
        self.assertEqual(user.email, "alice@x.com")
        self.assertEqual(user.role, "user")
        self.assertTrue(user.is_active)
        self.assertGreater(user.id, 0)
        self.assertEqual(user.created_at, self.clock.now())
        self.assertEqual(user.updated_at, self.clock.now())
        self.assertIsNone(user.last_login)

    def test_public_view_has_no_password_hash(self) -> None:
        user = self.auth.register("alice", "alice@x.com", "secret1")
        self.assertNotIn("password_hash", user.model_dump())
        self.assertNotIn("password", user.model_dump())

    def test_password_is_stored_hashed(self) -> None:
        user = self.auth.register("alice", "alice@x.com", "secret1")
        record = self.auth.directory.get_by_id(user.id)
        self.assertNotEqual(record.password_hash, "secret1")
        self.assertTrue(PasswordHasher(4).verify("secret1", record.password_hash))

    def test_explicit_and_empty_role(self) -> None:
        admin = self.auth.register("root", "root@x.com", "secret1", role="admin")
        plain = self.auth.register("bob", "bob@x.com", "secret1", role="")
        self.assertEqual(admin.role, "admin")
        self.assertEqual(plain.role, "user")

    def test_ids_are_unique(self) -> None:
        ids = {self.auth.register(f"user{i}", f"user{i}@x.com", "secret1").id for i in range(5)}
        self.assertEqual(len(ids), 5)

    def test_duplicate_username(self) -> None:
        self.auth.register("alice", "alice@x.com", "secret1")
        with self.assertRaises(DuplicateUsername):
            self.auth.register("alice", "bob@x.com", "pw2pw2")

    def test_duplicate_email(self) -> None:
        self.auth.register("alice", "alice@x.com", "secret1")
        with self.assertRaises(DuplicateEmail):
            self.auth.register("bob", "alice@x.com", "secret1")

    def test_duplicate_of_inactive_user(self) -> None:
        alice = self.auth.register("alice", "alice@x.com", "secret1")
        self.auth.update_profile(alice.id, ProfileUpdate(is_active=False))
        with self.assertRaises(DuplicateUsername):
            self.auth.register("alice", "other@x.com", "secret1")

    def test_validation(self) -> None:
        cases = [
            ("al", "al@x.com", "secret1", None),
            ("a" * 51, "long@x.com", "secret1", None),
            ("alice", "not-an-email", "secret1", None),
            ("alice", "alice@x.com", "12345", None),
            ("alice", "alice@x.com", "secret1", "root"),
        ]
        for username, email, password, role in cases:
            with self.subTest(username=username, email=email, role=role):
                with self.assertRaises(ValidationFailed):
                    self.auth.register(username, email, password, role)
        self.assertEqual(self.auth.directory.count(), 0)

    def test_late_conflict_from_storage_is_duplicate(self) -> None:
        directory = MagicMock()
        directory.get_by_username.return_value = None
        directory.get_by_email.return_value = None
        directory.insert.side_effect = DirectoryConflict("username")
        auth = AuthService(
            directory=directory,
            codec=TokenCodec(TEST_CONFIG),
            hasher=PasswordHasher(4),
            clock=self.clock,
        )
        with self.assertRaises(DuplicateUsername):
            auth.register("alice", "alice@x.com", "secret1")

        directory.insert.side_effect = DirectoryConflict("email")
        with self.assertRaises(DuplicateEmail):
            auth.register("alice", "alice@x.com", "secret1")


class TestLogin(AuthServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.alice = self.auth.register("alice", "alice@x.com", "secret1")

    def test_success_issues_token_for_user(self) -> None:
        result = self.auth.login("alice", "secret1")
        payload = self.auth.validate_token(result.token)
        self.assertEqual(payload.user_id, self.alice.id)
        self.assertEqual(payload.username, "alice")
        self.assertEqual(payload.role, "user")
        self.assertEqual(result.expires_at, self.clock.now() + timedelta(hours=24))
        self.assertEqual(result.user.id, self.alice.id)

    def test_records_last_login(self) -> None:
        result = self.auth.login("alice", "secret1")
        self.assertEqual(result.user.last_login, self.clock.now())
        self.assertEqual(self.auth.get_user(self.alice.id).last_login, self.clock.now())

    def test_unknown_user_and_wrong_password_look_identical(self) -> None:
        with self.assertRaises(InvalidCredentials) as ghost:
            self.auth.login("ghost", "x")
        with self.assertRaises(InvalidCredentials) as wrong:
            self.auth.login("alice", "wrongpw")
        self.assertIs(type(ghost.exception), type(wrong.exception))
        self.assertEqual(ghost.exception.message, wrong.exception.message)

    def test_unknown_user_costs_the_same_bcrypt_work_as_wrong_password(self) -> None:
        def bcrypt_calls(username: str) -> tuple[int, int]:
            # A fresh service per attempt, as each request gets one.
            auth = make_auth_service(self.db, self.clock)
            with patch("app.core.security.bcrypt.hashpw", wraps=bcrypt.hashpw) as hashpw, patch(
                "app.core.security.bcrypt.checkpw", wraps=bcrypt.checkpw
            ) as checkpw:
                with self.assertRaises(InvalidCredentials):
                    auth.login(username, "wrongpw")
            return hashpw.call_count, checkpw.call_count

        self.assertEqual(bcrypt_calls("ghost"), (0, 1))
        self.assertEqual(bcrypt_calls("alice"), (0, 1))
        self.assertEqual(bcrypt_calls("ghost"), bcrypt_calls("alice"))

    def test_disabled_account(self) -> None:
        self.auth.update_profile(self.alice.id, ProfileUpdate(is_active=False))
        with self.assertRaises(AccountDisabled):
            self.auth.login("alice", "secret1")
        # Wrong password on a disabled account reveals nothing about its state.
        with self.assertRaises(InvalidCredentials):
            self.auth.login("alice", "wrongpw")

    def test_last_login_failure_does_not_fail_login(self) -> None:
        with patch.object(
            self.auth.directory,
            "update_last_login",
            side_effect=DirectoryUnavailable("update_last_login failed"),
        ):
            with self.assertLogs("app.services.auth_service", level="WARNING") as logs:
                result = self.auth.login("alice", "secret1")
        self.assertTrue(result.token)
        self.assertTrue(any("last login" in line for line in logs.output))

    def test_token_expires_with_clock(self) -> None:
        result = self.auth.login("alice", "secret1")
        self.clock.advance(hours=24, seconds=1)
        with self.assertRaises(TokenExpired):
            self.auth.validate_token(result.token)

    def test_validate_token_with_explicit_time(self) -> None:
        result = self.auth.login("alice", "secret1")
        payload = self.auth.validate_token(result.token, now=self.clock.now() + timedelta(hours=1))
        self.assertEqual(payload.username, "alice")


class TestUpdateProfile(AuthServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.alice = self.auth.register("alice", "alice@x.com", "secret1")
        self.clock.advance(minutes=5)

    def test_empty_update_only_touches_updated_at(self) -> None:
        updated = self.auth.update_profile(self.alice.id, ProfileUpdate())
        self.assertEqual(updated.username, "alice")
        self.assertEqual(updated.email, "alice@x.com")
        self.assertEqual(updated.role, "user")
        self.assertTrue(updated.is_active)
        self.assertEqual(updated.updated_at, self.clock.now())
        self.assertEqual(updated.created_at, self.alice.created_at)

    def test_empty_strings_are_ignored(self) -> None:
        updated = self.auth.update_profile(
            self.alice.id, ProfileUpdate(username="", email="", role="")
        )
        self.assertEqual(updated.username, "alice")
        self.assertEqual(updated.email, "alice@x.com")

    def test_partial_update(self) -> None:
        updated = self.auth.update_profile(
            self.alice.id, ProfileUpdate(email="alice@corp.io", role="admin")
        )
        self.assertEqual(updated.username, "alice")
        self.assertEqual(updated.email, "alice@corp.io")
        self.assertEqual(updated.role, "admin")

    def test_keeping_own_username_is_not_a_conflict(self) -> None:
        updated = self.auth.update_profile(self.alice.id, ProfileUpdate(username="alice"))
        self.assertEqual(updated.username, "alice")

    def test_conflicts_with_other_users(self) -> None:
        self.auth.register("bob", "bob@x.com", "secret1")
        with self.assertRaises(DuplicateUsername):
            self.auth.update_profile(self.alice.id, ProfileUpdate(username="bob"))
        with self.assertRaises(DuplicateEmail):
            self.auth.update_profile(self.alice.id, ProfileUpdate(email="bob@x.com"))
        self.assertEqual(self.auth.get_user(self.alice.id).username, "alice")

    def test_rejected_update_changes_nothing(self) -> None:
        self.auth.register("bob", "bob@x.com", "secret1")
        with self.assertRaises(DuplicateEmail):
            self.auth.update_profile(
                self.alice.id, ProfileUpdate(username="alice2", email="bob@x.com")
            )
        self.assertEqual(self.auth.get_user(self.alice.id).username, "alice")

    def test_invalid_fields(self) -> None:
        with self.assertRaises(ValidationFailed):
            self.auth.update_profile(self.alice.id, ProfileUpdate(username="ab"))
        with self.assertRaises(ValidationFailed):
            self.auth.update_profile(self.alice.id, ProfileUpdate(email="nope"))

    def test_unknown_user(self) -> None:
        with self.assertRaises(UserNotFound):
            self.auth.update_profile(12345, ProfileUpdate(username="carol"))


class TestChangePassword(AuthServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.alice = self.auth.register("alice", "alice@x.com", "secret1")

    def test_wrong_current_password(self) -> None:
        with self.assertRaises(IncorrectCurrentPassword):
            self.auth.change_password(self.alice.id, "nope", "newsecret")
        self.auth.login("alice", "secret1")

    def test_new_password_too_short(self) -> None:
        with self.assertRaises(ValidationFailed):
            self.auth.change_password(self.alice.id, "secret1", "123")

    def test_change_replaces_credentials_but_keeps_tokens(self) -> None:
        old_token = self.auth.login("alice", "secret1").token
        self.clock.advance(minutes=1)
        self.auth.change_password(self.alice.id, "secret1", "newsecret")

        self.auth.login("alice", "newsecret")
        with self.assertRaises(InvalidCredentials):
            self.auth.login("alice", "secret1")
        self.assertEqual(self.auth.validate_token(old_token).user_id, self.alice.id)
        self.assertEqual(self.auth.get_user(self.alice.id).updated_at, self.clock.now())

    def test_unknown_user(self) -> None:
        with self.assertRaises(UserNotFound):
            self.auth.change_password(999, "secret1", "newsecret")


class TestListUsers(AuthServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.created = []
        for i in range(23):
            role = "admin" if i % 5 == 0 else "user"
            self.created.append(self.auth.register(f"user{i:02d}", f"user{i}@x.com", "secret1", role))
            self.clock.advance(minutes=1)

    def test_pages_cover_all_users_once_newest_first(self) -> None:
        per_page = 5
        first = self.auth.list_users(1, per_page)
        self.assertEqual(first.total, 23)
        self.assertEqual(first.total_pages, math.ceil(23 / per_page))

        seen = []
        for page in range(1, first.total_pages + 1):
            result = self.auth.list_users(page, per_page)
            self.assertEqual(result.page, page)
            self.assertEqual(result.per_page, per_page)
            seen.extend(u.id for u in result.users)

        self.assertEqual(len(seen), 23)
        self.assertEqual(len(set(seen)), 23)
        expected = [u.id for u in sorted(self.created, key=lambda u: u.created_at, reverse=True)]
        self.assertEqual(seen, expected)

    def test_total_pages_is_ceiling(self) -> None:
        for per_page in (1, 2, 7, 23, 24, 100):
            with self.subTest(per_page=per_page):
                result = self.auth.list_users(1, per_page)
                self.assertEqual(result.total_pages, math.ceil(23 / per_page))

    def test_bounds_are_clamped(self) -> None:
        result = self.auth.list_users(0, 0)
        self.assertEqual(result.page, 1)
        self.assertEqual(result.per_page, 1)
        self.assertEqual(len(result.users), 1)
        self.assertEqual(self.auth.list_users(1, 1000).per_page, 100)

    def test_page_past_end_is_empty(self) -> None:
        result = self.auth.list_users(10, 10)
        self.assertEqual(result.users, [])
        self.assertEqual(result.total, 23)

    def test_role_filter(self) -> None:
        admins = self.auth.list_users(1, 100, role="admin")
        self.assertEqual(admins.total, 5)
        self.assertTrue(all(u.role == "admin" for u in admins.users))
        with self.assertRaises(ValidationFailed):
            self.auth.list_users(1, 10, role="root")

    def test_empty_directory(self) -> None:
        empty = make_auth_service(make_session_factory()())
        result = empty.list_users()
        self.assertEqual(result.total, 0)
        self.assertEqual(result.total_pages, 0)
        self.assertEqual(result.users, [])


class TestStatsAndDelete(AuthServiceTestCase):
    def test_stats_counts_utc_day(self) -> None:
        self.clock.current = datetime(2025, 1, 14, 23, 59, tzinfo=UTC)
        self.auth.register("yesterday", "y@x.com", "secret1")
        self.clock.current = datetime(2025, 1, 15, 0, 0, tzinfo=UTC)
        self.auth.register("midnight", "m@x.com", "secret1", role="admin")
        self.clock.current = datetime(2025, 1, 15, 9, 30, tzinfo=UTC)
        late = self.auth.register("morning", "mo@x.com", "secret1")
        self.auth.update_profile(late.id, ProfileUpdate(is_active=False))

        stats = self.auth.get_stats()
        self.assertEqual(stats.total_users, 3)
        self.assertEqual(stats.active_users, 2)
        self.assertEqual(stats.admin_users, 1)
        self.assertEqual(stats.regular_users, 2)
        self.assertEqual(stats.new_users_today, 2)

    def test_stats_empty(self) -> None:
        stats = self.auth.get_stats()
        self.assertEqual(stats.model_dump(), {
            "total_users": 0,
            "active_users": 0,
            "admin_users": 0,
            "regular_users": 0,
            "new_users_today": 0,
        })

    def test_delete_user(self) -> None:
        alice = self.auth.register("alice", "alice@x.com", "secret1")
        self.auth.delete_user(alice.id)
        with self.assertRaises(UserNotFound):
            self.auth.get_user(alice.id)
        # Hard delete frees the username.
        self.auth.register("alice", "alice@x.com", "secret1")

    def test_delete_unknown_user(self) -> None:
        with self.assertRaises(UserNotFound):
            self.auth.delete_user(404)


class TestBootstrapAdmin(AuthServiceTestCase):
    def test_first_admin_only(self) -> None:
        admin = self.auth.bootstrap_admin("root", "root@x.com", "secret1")
        self.assertEqual(admin.role, "admin")
        with self.assertRaises(ValidationFailed):
            self.auth.bootstrap_admin("root2", "root2@x.com", "secret1")


class TestMonotonicIdGenerator(unittest.TestCase):
    def test_strictly_increasing_with_stalled_clock(self) -> None:
        generate = MonotonicIdGenerator(source=lambda: 1_000)
        self.assertEqual([generate() for _ in range(3)], [1_000, 1_001, 1_002])

    def test_follows_clock_when_it_moves_ahead(self) -> None:
        ticks = iter([10, 50, 20])
        generate = MonotonicIdGenerator(source=lambda: next(ticks))
        self.assertEqual([generate(), generate(), generate()], [10, 50, 51])


if __name__ == "__main__":
    unittest.main()
