"""Lease store implementations for the leaselock library."""

from leaselock.stores.dynamodb import DynamoDBLeaseStore, classify_error
from leaselock.stores.in_memory import InMemoryLeaseStore
from leaselock.stores.interface import LeaseStore

__all__ = [
    # Abstract base classes
    "LeaseStore",
    # Concrete implementations
    "InMemoryLeaseStore",
    "DynamoDBLeaseStore",
    # Error mapping
    "classify_error",
]
