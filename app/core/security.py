"""Password hashing and credential validation limits."""

from functools import lru_cache

import bcrypt

# Bcrypt cost (rounds) used when no explicit work factor is configured.
DEFAULT_BCRYPT_ROUNDS = 12
# bcrypt only looks at the first 72 bytes of the password.
BCRYPT_MAX_BYTES = 72

# Min/max lengths for username and password validation.
USERNAME_MIN_LEN = 3
USERNAME_MAX_LEN = 50
PASSWORD_MIN_LEN = 6
PASSWORD_MAX_LEN = 128
EMAIL_MAX_LEN = 255

ROLE_ADMIN = "admin"
ROLE_USER = "user"
VALID_ROLES = frozenset({ROLE_ADMIN, ROLE_USER})


@lru_cache
def _dummy_hash(rounds: int) -> str:
    """One throwaway hash per work factor, shared by every hasher in the process."""
    return bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=rounds)).decode("utf-8")


class PasswordHasher:
    """
    One-way salted password hashing (bcrypt).

    Stateless apart from the work factor, so one instance is shared by all
    requests.
    """

    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
        self.rounds = rounds
        # Built here so a failed login for an unknown user never pays for hashpw.
        self.dummy_hash = _dummy_hash(rounds)

    def hash(self, plain_password: str) -> str:
        """Hash a plain-text password for storage. A fresh salt is drawn on every call."""
        pw_bytes = plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]
        return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain_password: str, hashed: str) -> bool:
        """Verify a plain password against a stored hash; malformed hashes simply fail."""
        pw_bytes = plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]
        try:
            return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def verify_dummy(self, plain_password: str) -> None:
        """Spend one verify on a hash nobody owns, matching the cost of a real check."""
        self.verify(plain_password, self.dummy_hash)
