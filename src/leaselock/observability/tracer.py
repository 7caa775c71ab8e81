"""
Tracers used by the coordinator and the lease stores.

Components never import OpenTelemetry themselves. They receive a
``Tracer`` (or build one with :func:`create_tracer`) and open spans
through it, which keeps tracing optional and lets tests record spans with
:class:`MockTracer`.

Example:
    >>> store = InMemoryLeaseStore(tracer=MockTracer())
    >>> await store.try_acquire("job-42", 3000, owner="a")
    >>> store._tracer.span_names
    ['leaselock.store.try_acquire']
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

from leaselock.observability.tracing import OTEL_AVAILABLE

SpanAttributes = dict[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """
    Anything that can open a span around a block of code.

    Implementations:
    - NullTracer: tracing off
    - OpenTelemetryTracer: spans on the global OpenTelemetry provider
    - MockTracer: in-memory record for assertions
    """

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Open a span named ``name`` for the duration of a ``with`` block.

        The context manager yields the live Span, or None when nothing is
        recorded. Callers must check before calling ``set_attribute``.
        """
        ...

    @property
    def enabled(self) -> bool:
        """Whether spans opened by this tracer are actually exported."""
        ...


class NullTracer:
    """Tracer that records nothing. Used when tracing is disabled or unavailable."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer backed by ``opentelemetry.trace.get_tracer``.

    Spans go to whatever TracerProvider the application configured; with no
    provider configured OpenTelemetry hands out non-recording spans.

    Raises:
        ImportError: If the ``telemetry`` extra is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        from opentelemetry import trace

        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Tracer that keeps every span it is asked to open.

    Attributes:
        spans: ``(name, attributes)`` pairs in the order the spans were opened

    Example:
        >>> tracer = MockTracer()
        >>> coordinator = LockCoordinator(store, tracer=tracer)
        >>> async with coordinator.acquire("job-42", 3000):
        ...     pass
        >>> tracer.span_names
        ['leaselock.lock.acquire', 'leaselock.lock.release']
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, SpanAttributes | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        # Recorded on entry, so spans whose body raises are kept too
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(
    name: str,
    enable_tracing: bool = True,
) -> Tracer:
    """
    Pick the tracer a component should use.

    Args:
        name: Instrumentation name, usually the calling module's ``__name__``
        enable_tracing: The component's own on/off switch

    Returns:
        OpenTelemetryTracer when tracing is on and OpenTelemetry is
        importable, NullTracer otherwise
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanAttributes",
    "Tracer",
    "create_tracer",
]
