"""
Lease store interface.

A lease store is a thin adapter over a key-value store that supports
conditional writes. It performs exactly one conditional operation per call
and never reads a row to decide whether to write it: the check and the
write must be one atomic step inside the store. All coordination logic
(polling, backoff, deadlines) lives in :class:`leaselock.LockCoordinator`.

This module provides:
- LeaseStore: Abstract base class for lease store implementations
"""

from abc import ABC, abstractmethod

from leaselock.leases import Lease


class LeaseStore(ABC):
    """
    Abstract base class for lease stores.

    Contract shared by every implementation:

    - ``try_acquire`` succeeds iff no row exists for the resource or the
      existing row's ``expires_at`` is earlier than the store's current time.
      A row already written by the same ``owner`` also counts as free, so a
      retried write cannot lock its own author out.
      Contention is reported as ``None``, never as an exception.
    - Failures other than contention raise
      :class:`~leaselock.exceptions.TransientStoreError` or
      :class:`~leaselock.exceptions.PermanentStoreError`.
    - ``release`` is idempotent.

    Implementations:
    - InMemoryLeaseStore: process-local, for tests and development
    - DynamoDBLeaseStore: Amazon DynamoDB conditional writes
    """

    @abstractmethod
    async def ensure_schema(self) -> None:
        """
        Make sure the backing table exists with the expected key layout.

        Idempotent; intended to be called once at startup.

        Raises:
            SchemaProvisioningError: If the table cannot be created or its
                key layout is incompatible
        """
        pass

    @abstractmethod
    async def try_acquire(
        self,
        resource: str,
        lease_duration_ms: int,
        owner: str | None = None,
    ) -> Lease | None:
        """
        Attempt one conditional write of a new lease.

        Args:
            resource: Non-empty lock name
            lease_duration_ms: Positive lease length in milliseconds
            owner: Token identifying this acquisition

        Returns:
            The written Lease, or None if a live lease holds the resource

        Raises:
            InvalidLeaseRequestError: If resource or duration is malformed
            TransientStoreError: For throttling and connectivity failures
            PermanentStoreError: For every other store failure
        """
        pass

    @abstractmethod
    async def release(self, resource: str, owner: str | None = None) -> bool:
        """
        Delete the lease row for a resource.

        Deleting a row that does not exist is not an error.

        Args:
            resource: Lock name
            owner: When given, only delete a row written by this owner

        Returns:
            False if the row exists and belongs to a different owner (it is
            left untouched), True otherwise
        """
        pass

    @abstractmethod
    async def renew(
        self,
        resource: str,
        owner: str,
        lease_duration_ms: int,
    ) -> Lease | None:
        """
        Extend a live lease held by ``owner`` to ``now + lease_duration_ms``.

        Returns:
            The updated Lease, or None if the lease expired, was released,
            or now belongs to someone else
        """
        pass

    @abstractmethod
    async def get(self, resource: str) -> Lease | None:
        """
        Read the current row for a resource, expired or not.

        For diagnostics only. Acquisition never reads before writing.
        """
        pass
