"""
Observability utilities for leaselock.

Tracing is optional: install the ``telemetry`` extra to get OpenTelemetry
spans for lock acquisition, release, and renewal. Without it every
component falls back to :class:`NullTracer`.

Example:
    >>> from leaselock.observability import create_tracer
    >>>
    >>> class MyStore:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
"""

from leaselock.observability.attributes import (
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_LEASE_DURATION_MS,
    ATTR_LEASE_EXPIRES_AT,
    ATTR_LOCK_ACQUIRED,
    ATTR_LOCK_HOLDER,
    ATTR_LOCK_OWNER,
    ATTR_LOCK_RESOURCE,
    ATTR_LOCK_TIMEOUT,
    ATTR_POLL_ATTEMPTS,
)
from leaselock.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)
from leaselock.observability.tracing import OTEL_AVAILABLE

__all__ = [
    # Tracing utilities
    "OTEL_AVAILABLE",
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes - Lock
    "ATTR_LOCK_RESOURCE",
    "ATTR_LOCK_OWNER",
    "ATTR_LOCK_HOLDER",
    "ATTR_LOCK_TIMEOUT",
    "ATTR_LOCK_ACQUIRED",
    "ATTR_LEASE_DURATION_MS",
    "ATTR_LEASE_EXPIRES_AT",
    "ATTR_POLL_ATTEMPTS",
    # Attributes - Database
    "ATTR_DB_SYSTEM",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
    # Attributes - Error
    "ATTR_ERROR_TYPE",
]
