"""
OpenTelemetry Tracing

Spans around submissions, publisher runs, broker sends and stage
handling. Trace context rides in broker message headers, so a stage
span joins the trace of the request that submitted the application.
"""

import logging
from contextlib import contextmanager
from functools import wraps
from typing import Any, Dict, Mapping, Optional, Tuple

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.propagate import extract, inject, set_global_textmap
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

logger = logging.getLogger(__name__)

TRACER_NAME = "creditflow"


def init_tracing(service_name: str, otlp_endpoint: Optional[str] = None) -> None:
    """
    Install a tracer provider for this process.

    Without an OTLP endpoint spans are still created, so trace ids reach
    the logs and broker headers, but nothing is exported.
    """
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
    trace.set_tracer_provider(provider)
    set_global_textmap(TraceContextTextMapPropagator())
    logger.info(f"Tracing initialized for {service_name} (export: {otlp_endpoint or 'off'})")


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME)


def current_trace_ids() -> Tuple[Optional[str], Optional[str]]:
    """(trace_id, span_id) of the active span as hex, or (None, None)."""
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None, None
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


@contextmanager
def create_span(
    name: str,
    attributes: Optional[Dict[str, Any]] = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
    context: Optional[Context] = None
):
    """
    Run a block inside a span; an escaping exception marks it as failed.

    Usage:
        with create_span("outbox.publish", {"outbox.id": record.id}) as span:
            span.set_attribute("broker.message_id", message_id)
    """
    with get_tracer().start_as_current_span(
        name, context=context, kind=kind, attributes=attributes or {}
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def traced(name: str):
    """Wrap a coroutine method in a span called `name`."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            with create_span(name, {"code.function": func.__qualname__}):
                return await func(*args, **kwargs)
        return wrapper
    return decorator


def tag_application(application_id: str) -> None:
    trace.get_current_span().set_attribute("application.id", application_id)


def span_event(name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
    trace.get_current_span().add_event(name, attributes or {})


def inject_trace_context(headers: Dict[str, str]) -> Dict[str, str]:
    """Write the active trace context into outgoing message headers."""
    inject(headers)
    return headers


def extract_trace_context(headers: Mapping[str, str]) -> Context:
    return extract(headers)
