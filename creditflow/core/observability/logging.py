"""
Structured Logging

One JSON object per line with the active trace_id/span_id and every
`extra=` field the call site passed (event_id, stage, outcome, ...).
"""

import json
import logging
import sys
from datetime import datetime, timezone

from .tracing import current_trace_ids

# Attributes every LogRecord carries; anything else came from `extra=`
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "trace_id", "span_id"}

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "opentelemetry", "aiosqlite")


class TraceIdFilter(logging.Filter):
    """Stamps trace_id and span_id on each record for either format."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id, record.span_id = current_trace_ids()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": getattr(record, "trace_id", None),
            "span_id": getattr(record, "span_id", None),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        for key, value in vars(record).items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                entry[key] = value
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", structured: bool = True, service_name: str = "creditflow"):
    """Route the root logger to stdout, as JSON unless `structured` is off."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(TraceIdFilter())
    if structured:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s %(name)s [%(trace_id)s] %(message)s"
        ))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured for {service_name}: level={level.upper()} structured={structured}"
    )
