"""
Operator Endpoints

Outbox health: counts, stale records, repeatedly failing records, and an
acknowledgement that silences a failing record's alert. Nothing here
deletes or skips an outbox record or lowers its retry count.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...core.pipeline import Pipeline
from ..shared.exceptions import NotFoundError
from ..shared.middleware.trace import get_trace_id
from ..shared.responses import ListResponse, SuccessResponse
from .dependencies import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/outbox", tags=["outbox"])


@router.get("/stats")
async def outbox_stats(pipeline: Pipeline = Depends(get_pipeline)):
    stats = await pipeline.dlq.get_stats()
    stats["publisher_running"] = pipeline.publisher.is_running
    if pipeline.publisher.last_report is not None:
        stats["last_run"] = pipeline.publisher.last_report.to_dict()
    stats["cache"] = pipeline.applications.cache_stats()
    return SuccessResponse.create(stats, trace_id=get_trace_id())


@router.get("/stuck")
async def stuck_records(
    limit: int = Query(100, ge=1, le=1000),
    pipeline: Pipeline = Depends(get_pipeline)
):
    """Unpublished records older than the stale threshold."""
    report = await pipeline.publisher.check_stuck(limit=limit)
    return SuccessResponse.create(report.to_dict(), trace_id=get_trace_id())


@router.get("/failing")
async def failing_records(
    min_retries: Optional[int] = Query(None, ge=1),
    include_acknowledged: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    pipeline: Pipeline = Depends(get_pipeline)
):
    entries = await pipeline.dlq.get_failing(
        min_retries=min_retries, limit=limit, include_acknowledged=include_acknowledged
    )
    return ListResponse.create(
        [entry.to_dict() for entry in entries],
        total=len(entries),
        limit=limit,
        trace_id=get_trace_id(),
    )


@router.post("/{record_id}/acknowledge")
async def acknowledge_record(
    record_id: int,
    operator_id: Optional[str] = Query(None),
    pipeline: Pipeline = Depends(get_pipeline)
):
    """Silence the retry alert of a failing record; publishing retries continue."""
    if not await pipeline.dlq.acknowledge(record_id, operator_id=operator_id):
        raise NotFoundError("Outbox record", str(record_id))
    return SuccessResponse.create(
        {"id": record_id, "acknowledged_by": operator_id},
        trace_id=get_trace_id(),
    )


@router.post("/publish")
async def publish_now(pipeline: Pipeline = Depends(get_pipeline)):
    """Run one publisher pass immediately."""
    report = await pipeline.publisher.run_once()
    return SuccessResponse.create(report.to_dict(), trace_id=get_trace_id())


@router.get("/claims/{event_type}/{event_id}")
async def claim_info(
    event_type: str,
    event_id: str,
    pipeline: Pipeline = Depends(get_pipeline)
):
    """Who holds the dedup claim for an event, if anyone."""
    claimant = await pipeline.idempotency.get_claim_info(event_type, event_id)
    if claimant is None:
        raise NotFoundError("Claim", f"{event_type}:{event_id}")
    return SuccessResponse.create(
        {"event_type": event_type, "event_id": event_id, "claimant": claimant},
        trace_id=get_trace_id(),
    )
