"""
Global Error Handler Middleware

Catches exceptions and returns standardized error responses.

Pipeline errors raised by the service layer map onto HTTP statuses:
- ValidationError -> 400
- ConflictError -> 409
- PersistenceError / TransientInfraError -> 503
"""

import logging
import traceback
from typing import List, Optional

from fastapi import Request, FastAPI
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from ....core.errors import (
    ConflictError as PipelineConflictError,
    PersistenceError,
    TransientInfraError,
    ValidationError as PipelineValidationError,
)
from ..exceptions import APIException
from ..responses import ErrorBody, ErrorDetail
from ..error_codes import ErrorCode, get_status_code
from .trace import get_trace_id

logger = logging.getLogger(__name__)


def _error_response(
    code: ErrorCode,
    message: str,
    trace_id: str,
    details: Optional[List[ErrorDetail]] = None,
    status_code: Optional[int] = None,
) -> JSONResponse:
    error_body = ErrorBody(
        code=code.value,
        message=message,
        details=details,
        trace_id=trace_id
    )
    return JSONResponse(
        status_code=status_code or get_status_code(code),
        content={"error": error_body.model_dump(mode="json")}
    )


def register_error_handlers(app: FastAPI):
    """
    Register all error handlers on the FastAPI app.

    This function sets up exception handlers for:
    - APIException (custom API errors)
    - Pipeline errors from the service layer
    - RequestValidationError (FastAPI validation)
    - Generic Exception (catch-all for unexpected errors)
    """

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        """Handle custom API exceptions."""
        trace_id = exc.trace_id or get_trace_id()

        logger.warning(
            f"API Error: {exc.code} - {exc.message}",
            extra={
                "trace_id": trace_id,
                "error_code": str(exc.code),
                "path": request.url.path
            }
        )

        return _error_response(
            exc.code, exc.message, trace_id,
            details=exc.details, status_code=exc.status_code
        )

    @app.exception_handler(PipelineValidationError)
    async def pipeline_validation_handler(request: Request, exc: PipelineValidationError):
        trace_id = get_trace_id()
        details = [ErrorDetail(field=exc.field, message=exc.message)] if exc.field else None

        logger.warning(
            f"Rejected request: {exc.message}",
            extra={"trace_id": trace_id, "path": request.url.path, "field": exc.field}
        )
        return _error_response(ErrorCode.VALIDATION_ERROR, exc.message, trace_id, details=details)

    @app.exception_handler(PipelineConflictError)
    async def pipeline_conflict_handler(request: Request, exc: PipelineConflictError):
        trace_id = get_trace_id()
        logger.warning(
            f"Conflict: {exc.message}",
            extra={"trace_id": trace_id, "path": request.url.path, "entity_id": exc.entity_id}
        )
        return _error_response(ErrorCode.INVALID_STATE, exc.message, trace_id)

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        trace_id = get_trace_id()
        logger.error(
            f"Store failure: {exc.message}",
            extra={"trace_id": trace_id, "path": request.url.path, "transient": exc.transient}
        )
        return _error_response(
            ErrorCode.SERVICE_UNAVAILABLE, "Storage temporarily unavailable", trace_id
        )

    @app.exception_handler(TransientInfraError)
    async def transient_infra_handler(request: Request, exc: TransientInfraError):
        trace_id = get_trace_id()
        logger.error(
            f"Dependency unavailable: {exc.message}",
            extra={"trace_id": trace_id, "path": request.url.path, "backend": exc.backend}
        )
        return _error_response(
            ErrorCode.SERVICE_UNAVAILABLE, "Service temporarily unavailable", trace_id
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle FastAPI validation errors."""
        trace_id = get_trace_id()

        details = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            details.append(ErrorDetail(
                field=field,
                message=error["msg"],
                code=error["type"]
            ))

        logger.warning(
            f"Validation Error: {len(details)} field(s)",
            extra={
                "trace_id": trace_id,
                "path": request.url.path,
                "errors": [d.model_dump() for d in details]
            }
        )

        return _error_response(
            ErrorCode.VALIDATION_ERROR, "Request validation failed", trace_id, details=details
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        trace_id = get_trace_id()

        logger.error(
            f"Unhandled Exception: {type(exc).__name__}: {exc}",
            extra={
                "trace_id": trace_id,
                "path": request.url.path,
                "traceback": traceback.format_exc()
            }
        )

        # Don't expose internal details
        return _error_response(ErrorCode.INTERNAL_ERROR, "An internal error occurred", trace_id)
