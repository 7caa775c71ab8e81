"""
Detection of the optional OpenTelemetry dependency.

``opentelemetry-api`` ships with the ``telemetry`` extra. leaselock checks
``OTEL_AVAILABLE`` here and goes through
:func:`leaselock.observability.create_tracer` everywhere else.
"""

try:
    import opentelemetry.trace  # noqa: F401

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False


__all__ = [
    "OTEL_AVAILABLE",
]
