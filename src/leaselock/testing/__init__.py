"""
Test utilities for leaselock.

Components:
    FakeClock: Virtual epoch-millisecond clock with a matching async sleep
    LeaseStoreConformanceSuite: Base test class for LeaseStore backends

Example:
    >>> from leaselock.testing import FakeClock
    >>>
    >>> clock = FakeClock()
    >>> coordinator = LockCoordinator(InMemoryLeaseStore(clock=clock), clock=clock, sleep=clock.sleep)

Note:
    This module is intended for test code only. It should not be imported
    in production code paths.
"""

from leaselock.testing.clock import FakeClock
from leaselock.testing.conformance import LeaseStoreConformanceSuite

__all__ = [
    "FakeClock",
    "LeaseStoreConformanceSuite",
]
