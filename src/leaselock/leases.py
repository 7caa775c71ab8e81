"""
Lease record and lock lifecycle states.

A lease is the only thing leaselock persists: one row per resource
holding the absolute expiry of the current holder's claim. The row carries
no payload besides an owner token used to authenticate release and renewal.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from leaselock.exceptions import InvalidLeaseRequestError

Clock = Callable[[], int]
"""Callable returning the current wall-clock time as epoch milliseconds."""


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def new_owner_token(prefix: str | None = None) -> str:
    """Generate a fresh acquirer identifier, optionally prefixed with a holder name."""
    token = uuid4().hex
    return f"{prefix}:{token}" if prefix else token


class LockState(Enum):
    """
    Lifecycle of a single acquisition.

    Attributes:
        IDLE: Created, no attempt made yet
        POLLING: Issuing conditional writes until one wins
        HELD: The conditional write succeeded; the caller owns the lease
        RELEASED: The caller released the lease
        LOST: Renewal found the lease expired or owned by someone else
        FAILED: Acquisition stopped by an error, timeout, or cancellation
    """

    IDLE = "idle"
    POLLING = "polling"
    HELD = "held"
    RELEASED = "released"
    LOST = "lost"
    FAILED = "failed"


class Lease(BaseModel):
    """
    A time-bounded ownership record for a named resource.

    Expiry is advisory: the store does not delete expired rows, and an
    expired row is treated as absent by the next conditional write.

    Attributes:
        resource: Lock name, the store's partition key
        expires_at: Absolute expiry in epoch milliseconds
        owner: Token of the acquisition that wrote the row, if any

    Example:
        >>> lease = Lease(resource="job-42", expires_at=1_700_000_003_000, owner="a1")
        >>> lease.is_expired(1_700_000_004_000)
        True
    """

    model_config = ConfigDict(frozen=True)

    resource: str = Field(..., min_length=1)
    expires_at: int
    owner: str | None = None

    def is_expired(self, now: int) -> bool:
        """A lease is dead once its expiry is strictly in the past."""
        return self.expires_at < now

    def remaining_ms(self, now: int) -> int:
        """Milliseconds left before expiry, never negative."""
        return max(0, self.expires_at - now)


def validate_lease_request(resource: str, lease_duration_ms: int) -> None:
    """
    Reject malformed acquisition input before it reaches the store.

    Raises:
        InvalidLeaseRequestError: If resource is empty or not a string, or
            lease_duration_ms is not a positive integer
    """
    if not isinstance(resource, str) or not resource:
        raise InvalidLeaseRequestError(f"resource must be a non-empty string, got {resource!r}")
    if (
        isinstance(lease_duration_ms, bool)
        or not isinstance(lease_duration_ms, int)
        or lease_duration_ms <= 0
    ):
        raise InvalidLeaseRequestError(
            f"lease_duration_ms must be a positive integer, got {lease_duration_ms!r}"
        )


__all__ = [
    "Clock",
    "Lease",
    "LockState",
    "new_owner_token",
    "now_ms",
    "validate_lease_request",
]
