"""
API Response Envelopes

Success bodies are `{"data": ..., "meta": {...}}`; errors are
`{"error": {...}}` built from ErrorBody by the error handlers. Both
carry the request's trace id.
"""

from datetime import datetime, timezone
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResponseMeta(BaseModel):
    trace_id: str
    # Application the response is about, when there is one
    correlation_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class ListMeta(ResponseMeta):
    total: int
    limit: int


class SuccessResponse(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta

    @classmethod
    def create(cls, data: T, trace_id: str, correlation_id: Optional[str] = None) -> "SuccessResponse[T]":
        return cls(data=data, meta=ResponseMeta(trace_id=trace_id, correlation_id=correlation_id))


class ListResponse(BaseModel, Generic[T]):
    data: List[T]
    meta: ListMeta

    @classmethod
    def create(cls, data: List[T], total: int, limit: int, trace_id: str) -> "ListResponse[T]":
        return cls(data=data, meta=ListMeta(trace_id=trace_id, total=total, limit=limit))


class ErrorDetail(BaseModel):
    """One offending field of a rejected request."""

    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[List[ErrorDetail]] = None
    trace_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
