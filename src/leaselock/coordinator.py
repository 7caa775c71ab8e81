"""
Lease-based lock coordination over a conditional-write store.

The coordinator turns the store's single conditional write into a blocking
acquire: it keeps issuing writes, backing off while another live lease
holds the resource, until one wins or the caller's deadline passes.

Leases are never renewed behind the caller's back. Once ``expires_at``
passes, a competitor may take the lease even if the holder is still in its
critical section, so the lease duration must comfortably exceed the work
it protects. Long-running holders call :meth:`LockCoordinator.renew`.

Usage:
    >>> coordinator = await LockCoordinator.create(store)
    >>> async with coordinator.acquire("job-42", lease_duration_ms=30_000):
    ...     # Critical section - only one holder at a time
    ...     await run_job()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from leaselock.config import PollingConfig
from leaselock.exceptions import (
    LockLostError,
    LockNotHeldError,
    LockTimeoutError,
    RetryError,
    StoreError,
    TransientStoreError,
)
from leaselock.leases import (
    Clock,
    Lease,
    LockState,
    new_owner_token,
    now_ms,
    validate_lease_request,
)
from leaselock.observability import (
    ATTR_ERROR_TYPE,
    ATTR_LEASE_DURATION_MS,
    ATTR_LEASE_EXPIRES_AT,
    ATTR_LOCK_ACQUIRED,
    ATTR_LOCK_HOLDER,
    ATTR_LOCK_OWNER,
    ATTR_LOCK_RESOURCE,
    ATTR_LOCK_TIMEOUT,
    ATTR_POLL_ATTEMPTS,
    Tracer,
    create_tracer,
)
from leaselock.retry import Sleep, contention_delay, retry_async, transient_delay
from leaselock.stores.interface import LeaseStore

logger = logging.getLogger(__name__)

OnAcquired = Callable[["LeaseHandle"], Awaitable[None] | None]
OnError = Callable[[BaseException], None]


class LeaseHandle:
    """
    Ownership handle for one acquisition.

    A handle is created per ``acquire`` call and walks
    ``IDLE -> POLLING -> HELD -> RELEASED`` (or ``FAILED`` / ``LOST``).
    It is also an async context manager that releases on exit.

    Attributes:
        resource: Lock name
        owner: Token written into the lease row by this acquisition
        lease_duration_ms: Duration requested on the last acquire or renew
        expires_at: Lease expiry in epoch milliseconds, once held
        acquired_at: When the conditional write succeeded
        attempts: Conditional writes issued while polling
        state: Current LockState
    """

    def __init__(
        self,
        coordinator: LockCoordinator,
        resource: str,
        lease_duration_ms: int,
        owner: str,
    ) -> None:
        self._coordinator = coordinator
        self.resource = resource
        self.owner = owner
        self.lease_duration_ms = lease_duration_ms
        self.expires_at: int | None = None
        self.acquired_at: datetime | None = None
        self.attempts = 0
        self.state = LockState.IDLE

    def _mark_held(self, lease: Lease) -> None:
        self.expires_at = lease.expires_at
        self.acquired_at = datetime.now(UTC)
        self.state = LockState.HELD

    @property
    def held(self) -> bool:
        return self.state is LockState.HELD

    def remaining_ms(self) -> int:
        """Milliseconds until the lease expires; 0 if not held or already expired."""
        if self.expires_at is None or not self.held:
            return 0
        return max(0, self.expires_at - self._coordinator.clock())

    def is_expired(self) -> bool:
        return self.expires_at is None or self.expires_at < self._coordinator.clock()

    async def release(self) -> bool:
        return await self._coordinator.release(self)

    async def renew(self, lease_duration_ms: int | None = None) -> LeaseHandle:
        return await self._coordinator.renew(self, lease_duration_ms)

    async def __aenter__(self) -> LeaseHandle:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.release()

    def __repr__(self) -> str:
        return (
            f"LeaseHandle(resource={self.resource!r}, owner={self.owner!r}, "
            f"state={self.state.value}, expires_at={self.expires_at})"
        )


class LockCoordinator:
    """
    Acquires, renews, and releases leases held in a LeaseStore.

    Every acquisition runs its own polling loop inside the awaiting task,
    so concurrent acquisitions (same or different resources) never share
    timer state. Cancelling the awaiting task stops the polling.

    Error handling:
        - Contention is retried with exponential backoff and jitter
        - TransientStoreError is retried ``config.transient_retries`` times,
          then RetryError is raised
        - Any other error (PermanentStoreError included) stops polling and
          propagates immediately
        - A passed deadline or exhausted ``max_attempts`` raises LockTimeoutError

    Example:
        >>> coordinator = LockCoordinator(store)
        >>>
        >>> # Scoped acquisition
        >>> async with coordinator.acquire("job-42", 30_000, timeout=60.0):
        ...     await run_job()
        >>>
        >>> # Explicit handle
        >>> handle = await coordinator.acquire_lease("job-42", 30_000)
        >>> try:
        ...     await run_job()
        ... finally:
        ...     await handle.release()
    """

    def __init__(
        self,
        store: LeaseStore,
        *,
        config: PollingConfig | None = None,
        clock: Clock = now_ms,
        sleep: Sleep = asyncio.sleep,
        holder_id: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Lease store performing the conditional writes
            config: Polling and retry settings (defaults if None)
            clock: Epoch-millisecond clock used for deadlines and expiry checks
            sleep: Awaitable sleep used between attempts
            holder_id: Optional name prefixed to owner tokens (for debugging)
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing.
                          Ignored if tracer is explicitly provided.
        """
        self._store = store
        self._config = config or PollingConfig()
        self._clock = clock
        self._sleep = sleep
        self._holder_id = holder_id
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._held_locks: dict[str, LeaseHandle] = {}
        self._tasks: set[asyncio.Task[LeaseHandle]] = set()
        self.schema_error: StoreError | None = None

    @classmethod
    async def create(
        cls,
        store: LeaseStore,
        *,
        strict_schema: bool = False,
        **kwargs: Any,
    ) -> LockCoordinator:
        """
        Build a coordinator and make sure the store's table exists.

        A provisioning failure is logged and kept on ``schema_error``; later
        operations then fail with their own store errors. Pass
        ``strict_schema=True`` to raise it instead.
        """
        coordinator = cls(store, **kwargs)
        await coordinator.ensure_schema(strict=strict_schema)
        return coordinator

    @property
    def config(self) -> PollingConfig:
        return self._config

    def clock(self) -> int:
        return self._clock()

    async def ensure_schema(self, *, strict: bool = False) -> StoreError | None:
        """
        Provision the lease table.

        Returns:
            The provisioning error, or None on success

        Raises:
            StoreError: If provisioning fails and ``strict`` is set
        """
        try:
            await self._store.ensure_schema()
        except StoreError as e:
            self.schema_error = e
            if strict:
                raise
            logger.warning("Lease table provisioning failed: %s", e)
            return e
        self.schema_error = None
        return None

    def _new_handle(self, resource: str, lease_duration_ms: int) -> LeaseHandle:
        validate_lease_request(resource, lease_duration_ms)
        return LeaseHandle(
            self,
            resource,
            lease_duration_ms,
            new_owner_token(self._holder_id),
        )

    async def acquire_lease(
        self,
        resource: str,
        lease_duration_ms: int,
        *,
        timeout: float | None = None,
    ) -> LeaseHandle:
        """
        Poll until the lease on ``resource`` is held, then return its handle.

        The caller owns the lease until it releases it or ``lease_duration_ms``
        passes, whichever comes first.

        Args:
            resource: Lock name
            lease_duration_ms: Lease length in milliseconds
            timeout: Maximum seconds to wait (None = ``config.timeout``,
                which defaults to waiting forever)

        Returns:
            LeaseHandle in HELD state

        Raises:
            InvalidLeaseRequestError: If resource or duration is malformed
            LockTimeoutError: If the deadline or attempt budget runs out
            RetryError: If transient store errors outlast the retry budget
            PermanentStoreError: If the store rejects the request outright
        """
        handle = self._new_handle(resource, lease_duration_ms)
        if timeout is None:
            timeout = self._config.timeout

        with self._tracer.span(
            "leaselock.lock.acquire",
            {
                ATTR_LOCK_RESOURCE: resource,
                ATTR_LOCK_OWNER: handle.owner,
                ATTR_LOCK_HOLDER: self._holder_id or "",
                ATTR_LOCK_TIMEOUT: timeout if timeout is not None else -1,
                ATTR_LEASE_DURATION_MS: lease_duration_ms,
            },
        ) as span:
            try:
                await self._poll(handle, timeout)
            except BaseException as e:
                handle.state = LockState.FAILED
                if span:
                    span.set_attribute(ATTR_LOCK_ACQUIRED, False)
                    span.set_attribute(ATTR_POLL_ATTEMPTS, handle.attempts)
                    span.set_attribute(ATTR_ERROR_TYPE, type(e).__name__)
                raise

            if span:
                span.set_attribute(ATTR_LOCK_ACQUIRED, True)
                span.set_attribute(ATTR_POLL_ATTEMPTS, handle.attempts)
                span.set_attribute(ATTR_LEASE_EXPIRES_AT, handle.expires_at)

        self._held_locks[resource] = handle
        logger.debug(
            "Acquired lease: resource=%s, owner=%s, expires_at=%d",
            resource,
            handle.owner,
            handle.expires_at,
        )
        return handle

    async def _poll(self, handle: LeaseHandle, timeout: float | None) -> None:
        handle.state = LockState.POLLING
        deadline = None if timeout is None else self._clock() + int(timeout * 1000)
        contended = 0
        transient_failures = 0

        while True:
            handle.attempts += 1
            try:
                lease = await self._store.try_acquire(
                    handle.resource, handle.lease_duration_ms, handle.owner
                )
            except TransientStoreError as e:
                if transient_failures >= self._config.transient_retries:
                    raise RetryError(
                        f"try_acquire on '{handle.resource}' failed after "
                        f"{transient_failures + 1} transient errors: {e}",
                        attempts=transient_failures + 1,
                        last_error=e,
                    ) from e
                delay = transient_delay(transient_failures, self._config)
                transient_failures += 1
                logger.warning(
                    "Transient store error acquiring %s, retrying in %.3fs: %s",
                    handle.resource,
                    delay,
                    e,
                )
            else:
                transient_failures = 0
                if lease is not None:
                    handle._mark_held(lease)
                    if contended:
                        logger.info(
                            "Acquired lease on %s after %d contended attempts",
                            handle.resource,
                            contended,
                        )
                    return

                contended += 1
                max_attempts = self._config.max_attempts
                if max_attempts is not None and contended >= max_attempts:
                    raise LockTimeoutError(
                        key=handle.resource,
                        reason=f"Still held elsewhere after {contended} attempts",
                        timeout=timeout,
                        attempts=handle.attempts,
                    )
                delay = contention_delay(contended - 1, self._config)
                logger.debug(
                    "Lease on %s is held elsewhere, retrying in %.3fs",
                    handle.resource,
                    delay,
                )

            if deadline is not None:
                remaining = (deadline - self._clock()) / 1000
                if remaining <= 0:
                    raise LockTimeoutError(
                        key=handle.resource,
                        reason=f"Timeout after {timeout}s",
                        timeout=timeout,
                        attempts=handle.attempts,
                    )
                delay = min(delay, remaining)

            await self._sleep(delay)

    @asynccontextmanager
    async def acquire(
        self,
        resource: str,
        lease_duration_ms: int,
        *,
        timeout: float | None = None,
    ) -> AsyncIterator[LeaseHandle]:
        """
        Acquire a lease as a context manager.

        The lease is released when the context exits, whether normally or
        due to an exception.

        Example:
            >>> async with coordinator.acquire("job-42", 30_000, timeout=5.0) as lease:
            ...     await run_job()
        """
        handle = await self.acquire_lease(resource, lease_duration_ms, timeout=timeout)
        try:
            yield handle
        finally:
            await self.release(handle)

    def acquire_lock(
        self,
        resource: str,
        lease_duration_ms: int,
        on_acquired: OnAcquired,
        *,
        timeout: float | None = None,
        on_error: OnError | None = None,
    ) -> asyncio.Task[LeaseHandle]:
        """
        Start acquiring in the background and call ``on_acquired`` once held.

        The lease stays held after the callback returns; release it through
        the handle passed to the callback. If the callback raises, the lease
        is released, ``on_error`` (when given) receives the exception, and the
        task fails with it.

        Must be called from a running event loop.

        Args:
            resource: Lock name
            lease_duration_ms: Lease length in milliseconds
            on_acquired: Sync or async callable receiving the LeaseHandle
            timeout: Maximum seconds to wait (None = ``config.timeout``)
            on_error: Called with the exception if acquisition or
                ``on_acquired`` fails

        Returns:
            Task resolving to the LeaseHandle; cancel it to stop polling

        Example:
            >>> async def work(lease):
            ...     try:
            ...         await run_job()
            ...     finally:
            ...         await lease.release()
            >>> task = coordinator.acquire_lock("job-42", 30_000, work)
        """

        reported: list[BaseException] = []

        def report(error: Exception) -> None:
            if on_error is not None:
                reported.append(error)
                on_error(error)

        async def run() -> LeaseHandle:
            try:
                handle = await self.acquire_lease(resource, lease_duration_ms, timeout=timeout)
            except Exception as e:
                report(e)
                raise

            try:
                result = on_acquired(handle)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                await self.release(handle)
                report(e)
                raise
            except BaseException:
                await self.release(handle)
                raise
            return handle

        def consume_reported(task: asyncio.Task[LeaseHandle]) -> None:
            # Only errors already handed to on_error count as retrieved
            if reported and not task.cancelled():
                task.exception()

        task = asyncio.get_running_loop().create_task(run(), name=f"leaselock.acquire:{resource}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        task.add_done_callback(consume_reported)
        return task

    def _on_task_done(self, task: asyncio.Task[LeaseHandle]) -> None:
        self._tasks.discard(task)

    async def try_acquire(self, resource: str, lease_duration_ms: int) -> LeaseHandle | None:
        """
        Make a single acquisition attempt without polling.

        Transient store errors are still retried with backoff.

        Returns:
            LeaseHandle if acquired, None if a live lease holds the resource

        Example:
            >>> lease = await coordinator.try_acquire("job-42", 30_000)
            >>> if lease:
            ...     try:
            ...         await run_job()
            ...     finally:
            ...         await lease.release()
            ... else:
            ...     print("Lock already held")
        """
        handle = self._new_handle(resource, lease_duration_ms)
        handle.state = LockState.POLLING
        handle.attempts = 1
        try:
            lease = await retry_async(
                lambda: self._store.try_acquire(resource, lease_duration_ms, handle.owner),
                self._config,
                operation_name=f"try_acquire({resource})",
                sleep=self._sleep,
            )
        except BaseException:
            handle.state = LockState.FAILED
            raise

        if lease is None:
            handle.state = LockState.FAILED
            return None

        handle._mark_held(lease)
        self._held_locks[resource] = handle
        logger.debug("Acquired lease (try): resource=%s, owner=%s", resource, handle.owner)
        return handle

    async def release(self, lease: LeaseHandle | str) -> bool:
        """
        Release a lease acquired through this coordinator.

        Idempotent: releasing twice, releasing an expired lease, or releasing
        a resource this coordinator does not hold returns False and does not
        raise. The store delete only removes a row still owned by this
        acquisition.

        Args:
            lease: The LeaseHandle, or the resource name of a lease held here

        Returns:
            True if this call released our row (or found it already gone),
            False otherwise
        """
        if isinstance(lease, str):
            handle = self._held_locks.get(lease)
            if handle is None:
                logger.debug("Release of %s ignored: not held by this coordinator", lease)
                return False
        else:
            handle = lease

        if handle.state is not LockState.HELD:
            return False

        handle.state = LockState.RELEASED
        self._forget(handle)
        with self._tracer.span(
            "leaselock.lock.release",
            {
                ATTR_LOCK_RESOURCE: handle.resource,
                ATTR_LOCK_OWNER: handle.owner,
            },
        ):
            try:
                released = await retry_async(
                    lambda: self._store.release(handle.resource, handle.owner),
                    self._config,
                    operation_name=f"release({handle.resource})",
                    sleep=self._sleep,
                )
            except BaseException:
                handle.state = LockState.HELD
                self._held_locks.setdefault(handle.resource, handle)
                raise

        if released:
            logger.debug("Released lease: resource=%s, owner=%s", handle.resource, handle.owner)
        else:
            logger.warning(
                "Lease on %s expired and was taken over before release (owner=%s)",
                handle.resource,
                handle.owner,
            )
        return released

    async def force_release(self, resource: str) -> None:
        """
        Delete the lease row for ``resource`` regardless of who owns it.

        For operators clearing a stuck lock. This bypasses the owner check
        and can break mutual exclusion for a live holder.
        """
        logger.warning("Force-releasing lease on %s", resource)
        await retry_async(
            lambda: self._store.release(resource),
            self._config,
            operation_name=f"force_release({resource})",
            sleep=self._sleep,
        )
        handle = self._held_locks.pop(resource, None)
        if handle is not None:
            handle.state = LockState.RELEASED

    async def renew(self, handle: LeaseHandle, lease_duration_ms: int | None = None) -> LeaseHandle:
        """
        Extend a held lease to ``now + lease_duration_ms``.

        Args:
            handle: A HELD LeaseHandle
            lease_duration_ms: New duration (defaults to the handle's current one)

        Returns:
            The same handle with an updated ``expires_at``

        Raises:
            LockNotHeldError: If the handle is not in HELD state
            LockLostError: If the lease expired or was taken over
        """
        if handle.state is not LockState.HELD:
            raise LockNotHeldError(handle.resource)
        duration = lease_duration_ms if lease_duration_ms is not None else handle.lease_duration_ms

        with self._tracer.span(
            "leaselock.lock.renew",
            {
                ATTR_LOCK_RESOURCE: handle.resource,
                ATTR_LOCK_OWNER: handle.owner,
                ATTR_LEASE_DURATION_MS: duration,
            },
        ):
            lease = await retry_async(
                lambda: self._store.renew(handle.resource, handle.owner, duration),
                self._config,
                operation_name=f"renew({handle.resource})",
                sleep=self._sleep,
            )

        if lease is None:
            handle.state = LockState.LOST
            self._forget(handle)
            raise LockLostError(handle.resource, handle.owner)

        handle.expires_at = lease.expires_at
        handle.lease_duration_ms = duration
        logger.debug("Renewed lease: resource=%s, expires_at=%d", handle.resource, lease.expires_at)
        return handle

    def _forget(self, handle: LeaseHandle) -> None:
        if self._held_locks.get(handle.resource) is handle:
            del self._held_locks[handle.resource]

    def is_held(self, resource: str) -> bool:
        """True if this coordinator holds an unexpired lease on ``resource``."""
        handle = self._held_locks.get(resource)
        return handle is not None and handle.held and not handle.is_expired()

    async def release_all(self) -> int:
        """
        Release all leases held by this coordinator.

        Useful for cleanup on shutdown or error recovery.

        Returns:
            Number of leases released
        """
        released = 0
        for handle in list(self._held_locks.values()):
            try:
                if await self.release(handle):
                    released += 1
            except (StoreError, RetryError) as e:
                logger.warning(
                    "Error releasing lease during release_all: resource=%s, error=%s",
                    handle.resource,
                    e,
                )
        return released

    @property
    def held_lock_count(self) -> int:
        """Number of leases this coordinator currently tracks as held."""
        return len(self._held_locks)


__all__ = [
    "LeaseHandle",
    "LockCoordinator",
    "OnAcquired",
    "OnError",
]
