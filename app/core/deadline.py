"""Per-request time budget for calls into the user directory."""

import time


class Deadline:
    """A point on the monotonic clock after which directory calls must not start."""

    def __init__(self, expires_at: float | None) -> None:
        self._expires_at = expires_at

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(time.monotonic() + seconds)

    @classmethod
    def none(cls) -> "Deadline":
        """A deadline that never elapses (CLI and tests)."""
        return cls(None)

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at
