"""
API Exception Classes

Custom exceptions that map to standard error responses.
"""

from typing import List, Optional

from .error_codes import ErrorCode, get_status_code
from .responses import ErrorDetail


class APIException(Exception):
    """
    Base exception for API errors.

    The error handler catches these and returns standardized error
    responses.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[List[ErrorDetail]] = None,
        trace_id: Optional[str] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        self.trace_id = trace_id
        self.status_code = get_status_code(code)
        super().__init__(message)


class NotFoundError(APIException):
    """
    Resource not found error.

    HTTP Status: 404
    """

    def __init__(
        self,
        resource: str,
        resource_id: Optional[str] = None,
        trace_id: Optional[str] = None
    ):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"

        code_map = {
            "Application": ErrorCode.APPLICATION_NOT_FOUND,
            "Risk assessment": ErrorCode.ASSESSMENT_NOT_FOUND,
            "Outbox record": ErrorCode.OUTBOX_RECORD_NOT_FOUND,
        }
        code = code_map.get(resource, ErrorCode.NOT_FOUND)

        super().__init__(code=code, message=message, trace_id=trace_id)
        self.resource = resource
        self.resource_id = resource_id


class ServiceUnavailableError(APIException):
    """
    A dependency (store, broker, dedup store) is unreachable.

    HTTP Status: 503
    """

    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        trace_id: Optional[str] = None
    ):
        super().__init__(
            code=ErrorCode.SERVICE_UNAVAILABLE,
            message=message,
            trace_id=trace_id
        )
