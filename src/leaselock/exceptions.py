"""Library exceptions for the leaselock package.

Contention is not an exception: a conditional write rejected by a live
lease is reported as ``None`` by the store and absorbed by the
coordinator's polling loop. Everything below reaches the caller.
"""


class LeaseLockError(Exception):
    """Base exception for leaselock library."""

    pass


class StoreError(LeaseLockError):
    """Raised when the backing store fails for a reason other than contention.

    Attributes:
        operation: Store operation that failed (e.g. "try_acquire")
        code: Backend error code, when the backend reports one
    """

    def __init__(self, message: str, *, operation: str | None = None, code: str | None = None):
        self.operation = operation
        self.code = code
        super().__init__(message)


class TransientStoreError(StoreError):
    """Raised for throttling, timeouts and network failures.

    These are worth retrying with backoff, but only a bounded number of times.
    """

    pass


class PermanentStoreError(StoreError):
    """Raised for failures that retrying cannot fix.

    Bad credentials, access denied, a missing table, malformed input.
    """

    pass


class InvalidLeaseRequestError(PermanentStoreError, ValueError):
    """Raised when a resource name or lease duration is malformed."""

    def __init__(self, message: str):
        super().__init__(message, operation="validate")


class SchemaProvisioningError(StoreError):
    """Raised when the backing table cannot be created or has the wrong key layout."""

    def __init__(self, table_name: str, reason: str):
        self.table_name = table_name
        self.reason = reason
        super().__init__(
            f"Cannot provision lease table '{table_name}': {reason}",
            operation="ensure_schema",
        )


class LockAcquisitionError(LeaseLockError):
    """
    Raised when a lock cannot be acquired.

    Attributes:
        key: The resource that could not be acquired
        reason: Description of why acquisition failed
        timeout: The timeout value if timeout was the cause
    """

    def __init__(
        self,
        key: str,
        reason: str,
        timeout: float | None = None,
    ):
        self.key = key
        self.reason = reason
        self.timeout = timeout
        super().__init__(f"Failed to acquire lock '{key}': {reason}")


class LockTimeoutError(LockAcquisitionError):
    """
    Raised when the acquisition deadline or attempt budget runs out under contention.

    Attributes:
        attempts: Number of conditional writes made before giving up
    """

    def __init__(
        self,
        key: str,
        reason: str,
        timeout: float | None = None,
        attempts: int = 0,
    ):
        self.attempts = attempts
        super().__init__(key, reason, timeout)


class LockNotHeldError(LeaseLockError):
    """
    Raised when an operation needs a lease this coordinator does not hold.

    Attributes:
        key: The resource that was not held
    """

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Lock '{key}' is not held by this coordinator")


class LockLostError(LeaseLockError):
    """
    Raised when a held lease expired or was taken over before renewal.

    Attributes:
        key: The resource whose lease was lost
        owner: Owner token of the lost lease
    """

    def __init__(self, key: str, owner: str):
        self.key = key
        self.owner = owner
        super().__init__(f"Lease on '{key}' is no longer held by owner {owner}")


class RetryError(LeaseLockError):
    """
    Raised when all retry attempts for a transient failure fail.

    Attributes:
        attempts: Number of attempts made
        last_error: The last exception that was raised
    """

    def __init__(self, message: str, attempts: int, last_error: Exception) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


__all__ = [
    "LeaseLockError",
    "StoreError",
    "TransientStoreError",
    "PermanentStoreError",
    "InvalidLeaseRequestError",
    "SchemaProvisioningError",
    "LockAcquisitionError",
    "LockTimeoutError",
    "LockNotHeldError",
    "LockLostError",
    "RetryError",
]
