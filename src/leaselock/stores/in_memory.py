"""
In-memory lease store implementation.

Useful for testing and development. Leases live in a dictionary and are
lost when the process terminates, so this store only coordinates tasks
within a single process.
"""

import asyncio
from collections import defaultdict, deque

from leaselock.leases import Clock, Lease, now_ms, validate_lease_request
from leaselock.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_LEASE_DURATION_MS,
    ATTR_LOCK_RESOURCE,
    Tracer,
    create_tracer,
)
from leaselock.stores.interface import LeaseStore


class InMemoryLeaseStore(LeaseStore):
    """
    In-memory implementation of the lease store.

    The conditional check and the write happen while holding an
    ``asyncio.Lock``, which stands in for the atomic conditional write of
    a real store.

    Fault injection:
        ``fail_next(error, times=n, operation="try_acquire")`` makes the next
        ``n`` calls of that operation raise ``error`` instead of touching the
        table, which lets tests simulate throttling or access-denied
        responses.

    Example:
        >>> store = InMemoryLeaseStore()
        >>> lease = await store.try_acquire("job-42", 3000, owner="a")
        >>> await store.try_acquire("job-42", 3000, owner="b") is None
        True

    Attributes:
        _leases: Dictionary mapping resource to its current row
        _faults: Pending injected errors per operation name
    """

    def __init__(
        self,
        *,
        clock: Clock = now_ms,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize an empty in-memory lease store.

        Args:
            clock: Epoch-millisecond clock deciding expiry
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing.
                          Ignored if tracer is explicitly provided.
        """
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._leases: dict[str, Lease] = {}
        self._faults: defaultdict[str, deque[BaseException]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self.schema_ensured = False

    def fail_next(
        self,
        error: BaseException,
        *,
        times: int = 1,
        operation: str = "try_acquire",
    ) -> None:
        """Queue ``error`` to be raised by the next ``times`` calls of ``operation``."""
        self._faults[operation].extend([error] * times)

    def _raise_injected(self, operation: str) -> None:
        faults = self._faults[operation]
        if faults:
            raise faults.popleft()

    def _span(self, operation: str, resource: str, extra: dict[str, object] | None = None):
        attributes = {
            ATTR_DB_SYSTEM: "memory",
            ATTR_DB_OPERATION: operation,
            ATTR_LOCK_RESOURCE: resource,
        }
        attributes.update(extra or {})
        return self._tracer.span(f"leaselock.store.{operation}", attributes)

    async def ensure_schema(self) -> None:
        self._raise_injected("ensure_schema")
        self.schema_ensured = True

    async def try_acquire(
        self,
        resource: str,
        lease_duration_ms: int,
        owner: str | None = None,
    ) -> Lease | None:
        validate_lease_request(resource, lease_duration_ms)
        with self._span("try_acquire", resource, {ATTR_LEASE_DURATION_MS: lease_duration_ms}):
            async with self._lock:
                self._raise_injected("try_acquire")
                now = self._clock()
                existing = self._leases.get(resource)
                if (
                    existing is not None
                    and not existing.expires_at < now
                    and (owner is None or existing.owner != owner)
                ):
                    return None
                lease = Lease(resource=resource, expires_at=now + lease_duration_ms, owner=owner)
                self._leases[resource] = lease
                return lease

    async def release(self, resource: str, owner: str | None = None) -> bool:
        with self._span("release", resource):
            async with self._lock:
                self._raise_injected("release")
                existing = self._leases.get(resource)
                if existing is None:
                    return True
                if owner is not None and existing.owner != owner:
                    return False
                del self._leases[resource]
                return True

    async def renew(
        self,
        resource: str,
        owner: str,
        lease_duration_ms: int,
    ) -> Lease | None:
        validate_lease_request(resource, lease_duration_ms)
        with self._span("renew", resource, {ATTR_LEASE_DURATION_MS: lease_duration_ms}):
            async with self._lock:
                self._raise_injected("renew")
                now = self._clock()
                existing = self._leases.get(resource)
                if existing is None or existing.owner != owner or existing.expires_at < now:
                    return None
                lease = existing.model_copy(update={"expires_at": now + lease_duration_ms})
                self._leases[resource] = lease
                return lease

    async def get(self, resource: str) -> Lease | None:
        async with self._lock:
            self._raise_injected("get")
            return self._leases.get(resource)

    def put_raw(self, lease: Lease) -> None:
        """Write a row unconditionally, bypassing the protocol. Test setup only."""
        self._leases[lease.resource] = lease

    @property
    def lease_count(self) -> int:
        """Number of rows currently stored, expired ones included."""
        return len(self._leases)

    async def clear(self) -> None:
        """Drop every row and pending fault."""
        async with self._lock:
            self._leases.clear()
            self._faults.clear()
