"""
Caller-driven deadlines.

Every engine operation accepts an optional Deadline. The store checks it
when a unit of work starts and again right before COMMIT, so an expired
deadline always results in a rollback rather than a partial write.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from .errors import DeadlineExceededError


@dataclass(frozen=True)
class Deadline:
    """Absolute point in time (time.monotonic) by which an operation must finish.

    Example:
        >>> deadline = Deadline.after(2.5)
        >>> deadline.check("upsert_entity")  # raises once 2.5s have passed
    """

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> Deadline:
        return cls(expires_at=time.monotonic() + seconds)

    @classmethod
    def after_ms(cls, milliseconds: int) -> Deadline:
        return cls.after(milliseconds / 1000.0)

    def remaining(self) -> float:
        return self.expires_at - time.monotonic()

    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, operation: str) -> None:
        """Raise DeadlineExceededError if the deadline has passed."""
        remaining = self.remaining()
        if remaining <= 0:
            raise DeadlineExceededError(operation, overrun_ms=int(-remaining * 1000))


def check_deadline(deadline: Deadline | None, operation: str) -> None:
    if deadline is not None:
        deadline.check(operation)
