"""
Request Trace IDs

Every request gets a trace id, taken from `X-Trace-ID` when the caller
sends one. Response bodies and error bodies carry it, and it is echoed
back in the response header.
"""

import contextvars
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

TRACE_HEADER = "X-Trace-ID"

trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("trace_id", default="")


def get_trace_id() -> str:
    """Trace ID of the current request, or a fresh one outside a request."""
    return trace_id_var.get() or str(uuid4())


class TraceMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get(TRACE_HEADER) or str(uuid4())
        # Left set after the request so the catch-all 500 handler sees it
        trace_id_var.set(trace_id)
        response = await call_next(request)
        response.headers[TRACE_HEADER] = trace_id
        return response
