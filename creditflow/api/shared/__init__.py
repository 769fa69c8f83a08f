"""
Shared API Utilities

Common responses, errors, and middleware for all API endpoints.
"""

from .responses import (
    ResponseMeta,
    SuccessResponse,
    ListMeta,
    ListResponse,
    ErrorDetail,
    ErrorBody,
)

from .error_codes import (
    ErrorCode,
    get_status_code,
)

from .exceptions import (
    APIException,
    NotFoundError,
    ServiceUnavailableError,
)

from .middleware import (
    register_error_handlers,
    TraceMiddleware,
    get_trace_id,
)

__all__ = [
    # Responses
    "ResponseMeta",
    "SuccessResponse",
    "ListMeta",
    "ListResponse",
    "ErrorDetail",
    "ErrorBody",
    # Error codes
    "ErrorCode",
    "get_status_code",
    # Exceptions
    "APIException",
    "NotFoundError",
    "ServiceUnavailableError",
    # Middleware
    "register_error_handlers",
    "TraceMiddleware",
    "get_trace_id",
]
