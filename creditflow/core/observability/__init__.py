"""
Observability Module

Tracing, metrics and structured logging for the API, the outbox
publisher and the stage consumers.
"""

from .logging import configure_logging
from .metrics import init_metrics, record_counter, record_histogram
from .tracing import (
    create_span,
    current_trace_ids,
    extract_trace_context,
    init_tracing,
    inject_trace_context,
    span_event,
    tag_application,
    traced,
)

__all__ = [
    "configure_logging",
    "init_metrics",
    "record_counter",
    "record_histogram",
    "create_span",
    "current_trace_ids",
    "extract_trace_context",
    "init_tracing",
    "inject_trace_context",
    "span_event",
    "tag_application",
    "traced",
]
