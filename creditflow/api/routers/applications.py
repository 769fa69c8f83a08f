"""
Credit Application Endpoints

Submission returns as soon as the application and its submitted event are
committed. Assessment and decision arrive asynchronously; clients poll the
application's status.
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from ...core.pipeline import Pipeline
from ..shared.exceptions import NotFoundError
from ..shared.middleware.trace import get_trace_id
from ..shared.responses import SuccessResponse
from .dependencies import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/applications", tags=["applications"])


class ApplicationRequest(BaseModel):
    """Submission payload."""
    customer_id: str = Field(..., min_length=1, max_length=64)
    requested_amount: Decimal = Field(..., gt=0)
    credit_score: Optional[int] = Field(None, ge=0, le=850)
    annual_income: Optional[Decimal] = Field(None, ge=0)


@router.post("", status_code=202)
async def submit_application(
    body: ApplicationRequest,
    request: Request,
    pipeline: Pipeline = Depends(get_pipeline)
):
    """Record a credit application; processing continues in the background."""
    application_id = await pipeline.applications.submit(
        customer_id=body.customer_id,
        requested_amount=body.requested_amount,
        credit_score=body.credit_score,
        annual_income=body.annual_income,
    )
    return SuccessResponse.create(
        {
            "application_id": application_id,
            "message": "Application submitted successfully",
        },
        correlation_id=application_id,
        trace_id=get_trace_id(),
    )


@router.get("/{application_id}")
async def get_application(
    application_id: str,
    pipeline: Pipeline = Depends(get_pipeline)
):
    application = await pipeline.applications.get_application(application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    return SuccessResponse.create(
        application.model_dump(mode="json"),
        correlation_id=application_id,
        trace_id=get_trace_id(),
    )


@router.get("/{application_id}/assessment")
async def get_assessment(
    application_id: str,
    pipeline: Pipeline = Depends(get_pipeline)
):
    assessment = await pipeline.applications.get_assessment(application_id)
    if assessment is None:
        raise NotFoundError("Risk assessment", application_id)
    return SuccessResponse.create(
        assessment.model_dump(mode="json"),
        correlation_id=application_id,
        trace_id=get_trace_id(),
    )
