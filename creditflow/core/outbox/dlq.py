"""
Outbox Failure Report

Records that keep failing stay in the outbox and keep being retried.
This manager is the operator's view of them: which records have crossed
the retry threshold, summary statistics, and an acknowledgement that
silences a record's alert. It never deletes or skips a record and never
lowers its retry telemetry.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..database.adapter import DatabaseAdapter
from .repository import OutboxRepository

logger = logging.getLogger(__name__)


@dataclass
class FailingEntry:
    """An unpublished outbox record with repeated failures."""
    id: int
    event_id: str
    event_type: str
    destination: str
    retry_count: int
    last_error: Optional[str]
    created_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "destination": self.destination,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledged_by": self.acknowledged_by,
        }


class OutboxDLQManager:
    """
    Retry-threshold report layered on top of the outbox.

    Responsibilities:
    - List records whose retry_count crossed the alert threshold
    - Summarise the outbox (published / unpublished / worst retry count)
    - Acknowledge a failing record so it stops alerting
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        retry_threshold: int = 10,
        repository: Optional[OutboxRepository] = None
    ):
        self.db = db
        self.retry_threshold = retry_threshold
        self.repository = repository or OutboxRepository()

    async def get_failing(
        self,
        min_retries: Optional[int] = None,
        limit: int = 100,
        include_acknowledged: bool = False
    ) -> List[FailingEntry]:
        """Unpublished records with at least `min_retries` failures."""
        threshold = self.retry_threshold if min_retries is None else min_retries
        async with self.db.transaction() as conn:
            records = await self.repository.find_failing(
                conn, threshold, limit, include_acknowledged=include_acknowledged
            )

        return [
            FailingEntry(
                id=r.id,
                event_id=r.event_id,
                event_type=r.event_type,
                destination=r.destination,
                retry_count=r.retry_count,
                last_error=r.last_error,
                created_at=r.created_at,
                acknowledged_at=r.acknowledged_at,
                acknowledged_by=r.acknowledged_by,
            )
            for r in records
        ]

    async def get_stats(self) -> Dict[str, Any]:
        """Outbox statistics plus the count over the retry threshold."""
        async with self.db.transaction() as conn:
            stats = await self.repository.get_stats(conn)
            over_threshold = await self.repository.count_failing(
                conn, self.retry_threshold, include_acknowledged=True
            )
            unacknowledged = await self.repository.count_failing(conn, self.retry_threshold)

        stats["retry_threshold"] = self.retry_threshold
        stats["over_threshold"] = over_threshold
        stats["over_threshold_unacknowledged"] = unacknowledged
        return stats

    async def acknowledge(self, record_id: int, operator_id: Optional[str] = None) -> bool:
        """
        Silence the retry alert of an unpublished record.

        Returns:
            False if the record does not exist or is already published
        """
        async with self.db.transaction() as conn:
            acknowledged = await self.repository.acknowledge(conn, record_id, operator_id)

        if acknowledged:
            logger.info(
                f"Outbox record {record_id} acknowledged by {operator_id}",
                extra={"outbox_id": record_id}
            )
        return acknowledged
