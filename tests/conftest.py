"""
Shared pytest fixtures for the leaselock library tests.

This module provides:
- Virtual time (clock)
- Lease store fixtures (store)
- Coordinator fixtures (coordinator, fixed_polling)
- Tracing fixtures (mock_tracer)

Coordinator fixtures use fixed one-second polling without jitter so tests
can step through attempts with ``clock.advance``.
"""

from __future__ import annotations

import pytest

from leaselock.config import PollingConfig
from leaselock.coordinator import LockCoordinator
from leaselock.observability import MockTracer
from leaselock.stores.in_memory import InMemoryLeaseStore
from leaselock.testing import FakeClock

# ============================================================================
# OpenTelemetry SDK Availability Check
# ============================================================================

OTEL_SDK_AVAILABLE = False
try:
    from opentelemetry.sdk.trace import TracerProvider  # noqa: F401

    OTEL_SDK_AVAILABLE = True
except ImportError:
    pass

skip_if_no_otel_sdk = pytest.mark.skipif(
    not OTEL_SDK_AVAILABLE, reason="opentelemetry-sdk not installed"
)


# ============================================================================
# Time and Store Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Provide a virtual epoch-millisecond clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryLeaseStore:
    """
    Provide an empty in-memory lease store on the virtual clock.

    Returns:
        InMemoryLeaseStore with tracing disabled.
    """
    return InMemoryLeaseStore(clock=clock, enable_tracing=False)


@pytest.fixture
def fixed_polling() -> PollingConfig:
    """
    Provide polling with a fixed one-second interval and no jitter.

    Transient retries use a fixed 0.5s delay.
    """
    return PollingConfig(
        interval=1.0,
        backoff_multiplier=1.0,
        max_interval=1.0,
        jitter=0.0,
        transient_retries=2,
        transient_initial_delay=0.5,
        transient_max_delay=0.5,
    )


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Provide a tracer that records spans."""
    return MockTracer()


# ============================================================================
# Coordinator Fixtures
# ============================================================================


@pytest.fixture
def coordinator(
    store: InMemoryLeaseStore,
    clock: FakeClock,
    fixed_polling: PollingConfig,
) -> LockCoordinator:
    """
    Provide a coordinator wired to the virtual clock and in-memory store.

    Returns:
        LockCoordinator whose sleeps only finish on ``clock.advance``.
    """
    return LockCoordinator(
        store,
        config=fixed_polling,
        clock=clock,
        sleep=clock.sleep,
        enable_tracing=False,
    )


@pytest.fixture
def other_coordinator(
    store: InMemoryLeaseStore,
    clock: FakeClock,
    fixed_polling: PollingConfig,
) -> LockCoordinator:
    """Provide a second coordinator sharing the store, standing in for another process."""
    return LockCoordinator(
        store,
        config=fixed_polling,
        clock=clock,
        sleep=clock.sleep,
        holder_id="other",
        enable_tracing=False,
    )
