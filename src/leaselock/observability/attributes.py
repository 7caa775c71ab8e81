"""
Standard span attributes for leaselock.

Attribute names used by the coordinator and the lease stores so that
spans from different backends can be queried the same way. These follow
OpenTelemetry semantic conventions where applicable.

Example:
    >>> from leaselock.observability.attributes import ATTR_LOCK_RESOURCE
    >>>
    >>> with tracer.span(
    ...     "leaselock.lock.acquire",
    ...     {ATTR_LOCK_RESOURCE: "job-42"},
    ... ):
    ...     pass
"""

# =============================================================================
# Lock Attributes
# =============================================================================

ATTR_LOCK_RESOURCE = "leaselock.lock.resource"
"""Name of the locked resource (string)."""

ATTR_LOCK_OWNER = "leaselock.lock.owner"
"""Owner token of the acquisition (string)."""

ATTR_LOCK_HOLDER = "leaselock.lock.holder"
"""Optional holder identifier configured on the coordinator (string)."""

ATTR_LOCK_TIMEOUT = "leaselock.lock.timeout"
"""Acquisition timeout in seconds (-1 when waiting forever)."""

ATTR_LOCK_ACQUIRED = "leaselock.lock.acquired"
"""Whether the lease was acquired (boolean)."""

ATTR_LEASE_DURATION_MS = "leaselock.lease.duration_ms"
"""Requested lease duration in milliseconds (integer)."""

ATTR_LEASE_EXPIRES_AT = "leaselock.lease.expires_at"
"""Lease expiry as epoch milliseconds (integer)."""

ATTR_POLL_ATTEMPTS = "leaselock.poll.attempts"
"""Number of conditional-write attempts made (integer)."""

# =============================================================================
# Database Attributes (OpenTelemetry Semantic Conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'dynamodb', 'memory')."""

ATTR_DB_NAME = "db.name"
"""Table name being accessed."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation (e.g., 'PutItem', 'DeleteItem')."""

# =============================================================================
# Error Attributes
# =============================================================================

ATTR_ERROR_TYPE = "leaselock.error.type"
"""Type of error encountered (exception class name)."""

__all__ = [
    # Lock
    "ATTR_LOCK_RESOURCE",
    "ATTR_LOCK_OWNER",
    "ATTR_LOCK_HOLDER",
    "ATTR_LOCK_TIMEOUT",
    "ATTR_LOCK_ACQUIRED",
    "ATTR_LEASE_DURATION_MS",
    "ATTR_LEASE_EXPIRES_AT",
    "ATTR_POLL_ATTEMPTS",
    # Database
    "ATTR_DB_SYSTEM",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
    # Error
    "ATTR_ERROR_TYPE",
]
