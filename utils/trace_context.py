"""W3C trace-context propagation over HTTP and broker headers.

Spans are created with the OpenTelemetry SDK so every hop gets a fresh span id
under the caller's trace id. No exporter is installed here; a deployment that
wants spans shipped adds a span processor to the provider returned by
``configure_tracing``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator, Mapping, Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import SpanKind
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

TRACEPARENT_HEADER = "traceparent"
TRACESTATE_HEADER = "tracestate"

propagator = TraceContextTextMapPropagator()

_tracer_provider: Optional[TracerProvider] = None


def configure_tracing(service_name: str) -> TracerProvider:
    """Install the tracer provider used for every span this process starts."""
    global _tracer_provider
    _tracer_provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
    return _tracer_provider


def get_tracer() -> trace.Tracer:
    if _tracer_provider is None:
        configure_tracing("crawl-gateway")
    return _tracer_provider.get_tracer(__name__)


def extract_context(headers: Mapping[str, str]) -> Optional[Context]:
    """Read the caller's trace from HTTP or broker headers.

    Returns None when no valid ``traceparent`` is present, so the next span
    starts a new trace.
    """
    carrier = {key.lower(): value for key, value in headers.items() if value is not None}
    ctx = propagator.extract(carrier)
    if not trace.get_current_span(ctx).get_span_context().is_valid:
        return None
    return ctx


@contextmanager
def producer_span(
    name: str,
    parent: Optional[Context] = None,
    attributes: Optional[Dict[str, str]] = None,
) -> Iterator[Dict[str, str]]:
    """
    Start a PRODUCER span and yield the trace headers to attach to the message.

    Exceptions raised inside the block are recorded on the span and re-raised.

    Example:
        >>> with producer_span("crawl_request publish", extract_context(headers)) as trace_headers:
        ...     await broker.publish(topic, key, {**headers, **trace_headers}, body)
    """
    with get_tracer().start_as_current_span(
        name, context=parent, kind=SpanKind.PRODUCER, attributes=attributes
    ) as span:
        carrier: Dict[str, str] = {}
        propagator.inject(carrier, context=trace.set_span_in_context(span))
        yield carrier


def trace_id_of(headers: Mapping[str, str]) -> Optional[str]:
    """Hex trace id carried by ``headers``, if any."""
    ctx = extract_context(headers)
    if ctx is None:
        return None
    return format(trace.get_current_span(ctx).get_span_context().trace_id, "032x")
