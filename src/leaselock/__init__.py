"""
leaselock - Distributed mutual exclusion over conditional-write stores.

This library provides:
- Lease records with absolute expiry, written by a single conditional put
- Lease stores for DynamoDB and in-memory use
- A lock coordinator that polls with backoff until a lease is won
- Explicit lease renewal and owner-checked release
- Optional OpenTelemetry tracing
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("leaselock")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from leaselock.config import DynamoDBConfig, PollingConfig
from leaselock.coordinator import LeaseHandle, LockCoordinator
from leaselock.exceptions import (
    InvalidLeaseRequestError,
    LeaseLockError,
    LockAcquisitionError,
    LockLostError,
    LockNotHeldError,
    LockTimeoutError,
    PermanentStoreError,
    RetryError,
    SchemaProvisioningError,
    StoreError,
    TransientStoreError,
)
from leaselock.leases import Lease, LockState, new_owner_token, now_ms
from leaselock.stores import (
    DynamoDBLeaseStore,
    InMemoryLeaseStore,
    LeaseStore,
)

__all__ = [
    "__version__",
    # Coordinator
    "LockCoordinator",
    "LeaseHandle",
    # Leases
    "Lease",
    "LockState",
    "new_owner_token",
    "now_ms",
    # Stores
    "LeaseStore",
    "InMemoryLeaseStore",
    "DynamoDBLeaseStore",
    # Configuration
    "PollingConfig",
    "DynamoDBConfig",
    # Exceptions
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
