"""
Shared API Middleware

- Error handling with standardized responses
- Trace ID propagation for log correlation
"""

from .error_handler import register_error_handlers
from .trace import TraceMiddleware, get_trace_id

__all__ = [
    "register_error_handlers",
    "TraceMiddleware",
    "get_trace_id",
]
