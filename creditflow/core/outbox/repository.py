"""
Outbox Repository

SQL for the outbox table. The request path and the stage consumers only
insert; the publisher only updates status fields. Nothing here deletes,
and retry_count only ever goes up.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..database.adapter import Connection
from .models import OutboxRecord

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


def _unacknowledged(include_acknowledged: bool) -> str:
    return "" if include_acknowledged else "AND acknowledged_at IS NULL"


class OutboxRepository:
    """Queries against `outbox_events`."""

    async def insert(self, conn: Connection, record: OutboxRecord) -> OutboxRecord:
        """Insert an unpublished record and return it with its store id."""
        record_id = await conn.fetchval(
            """
            INSERT INTO outbox_events (
                event_id, event_type, schema_version, payload, destination,
                partition_key, published, created_at, retry_count
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING id
            """,
            record.event_id,
            record.event_type,
            record.schema_version,
            record.payload,
            record.destination,
            record.partition_key,
            False,
            record.created_at,
            0
        )
        return record.model_copy(update={"id": record_id, "published": False})

    async def query_unpublished(self, conn: Connection, limit: int) -> List[OutboxRecord]:
        """Oldest unpublished records first; id breaks created_at ties."""
        rows = await conn.fetch(
            """
            SELECT * FROM outbox_events
            WHERE published = $1
            ORDER BY created_at ASC, id ASC
            LIMIT $2
            """,
            False,
            limit
        )
        return [OutboxRecord.from_row(row) for row in rows]

    async def mark_published(
        self,
        conn: Connection,
        record_id: int,
        published_at: Optional[datetime] = None
    ) -> bool:
        """
        Flip a record to published.

        Returns:
            False if the record was already published (another publisher
            instance got there first)
        """
        updated = await conn.execute(
            """
            UPDATE outbox_events
            SET published = $1, published_at = $2
            WHERE id = $3 AND published = $4
            """,
            True,
            published_at or datetime.now(timezone.utc),
            record_id,
            False
        )
        return updated == 1

    async def record_failure(self, conn: Connection, record_id: int, error: str) -> int:
        """Increment retry_count and store the error. Returns the new count."""
        await conn.execute(
            """
            UPDATE outbox_events
            SET retry_count = retry_count + 1, last_error = $1
            WHERE id = $2 AND published = $3
            """,
            error[:MAX_ERROR_LENGTH],
            record_id,
            False
        )
        count = await conn.fetchval(
            "SELECT retry_count FROM outbox_events WHERE id = $1",
            record_id
        )
        return int(count or 0)

    async def get(self, conn: Connection, record_id: int) -> Optional[OutboxRecord]:
        row = await conn.fetchrow("SELECT * FROM outbox_events WHERE id = $1", record_id)
        return OutboxRecord.from_row(row) if row else None

    async def find_stale(
        self,
        conn: Connection,
        older_than_seconds: float,
        limit: int = 100
    ) -> List[OutboxRecord]:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        rows = await conn.fetch(
            """
            SELECT * FROM outbox_events
            WHERE published = $1 AND created_at < $2
            ORDER BY created_at ASC, id ASC
            LIMIT $3
            """,
            False,
            cutoff,
            limit
        )
        return [OutboxRecord.from_row(row) for row in rows]

    async def count_unpublished(self, conn: Connection) -> int:
        count = await conn.fetchval(
            "SELECT COUNT(*) AS count FROM outbox_events WHERE published = $1",
            False
        )
        return int(count or 0)

    async def find_failing(
        self,
        conn: Connection,
        min_retries: int,
        limit: int = 100,
        include_acknowledged: bool = False
    ) -> List[OutboxRecord]:
        rows = await conn.fetch(
            f"""
            SELECT * FROM outbox_events
            WHERE published = $1 AND retry_count >= $2 {_unacknowledged(include_acknowledged)}
            ORDER BY retry_count DESC, created_at ASC
            LIMIT $3
            """,
            False,
            min_retries,
            limit
        )
        return [OutboxRecord.from_row(row) for row in rows]

    async def count_failing(
        self,
        conn: Connection,
        min_retries: int,
        include_acknowledged: bool = False
    ) -> int:
        count = await conn.fetchval(
            f"""
            SELECT COUNT(*) AS count FROM outbox_events
            WHERE published = $1 AND retry_count >= $2 {_unacknowledged(include_acknowledged)}
            """,
            False,
            min_retries
        )
        return int(count or 0)

    async def acknowledge(
        self,
        conn: Connection,
        record_id: int,
        operator_id: Optional[str] = None,
        acknowledged_at: Optional[datetime] = None
    ) -> bool:
        """
        Mark an unpublished record as seen by an operator.

        Retry telemetry is left untouched and the publisher keeps retrying.
        """
        updated = await conn.execute(
            """
            UPDATE outbox_events
            SET acknowledged_at = $1, acknowledged_by = $2
            WHERE id = $3 AND published = $4
            """,
            acknowledged_at or datetime.now(timezone.utc),
            operator_id,
            record_id,
            False
        )
        return updated == 1

    async def get_stats(self, conn: Connection) -> Dict[str, Any]:
        rows = await conn.fetch(
            """
            SELECT published, event_type, COUNT(*) AS count,
                   MAX(retry_count) AS max_retries
            FROM outbox_events
            GROUP BY published, event_type
            """
        )
        stats: Dict[str, Any] = {
            "published": 0,
            "unpublished": 0,
            "max_retry_count": 0,
            "unpublished_by_type": {},
        }
        for row in rows:
            if bool(row["published"]):
                stats["published"] += row["count"]
                continue
            stats["unpublished"] += row["count"]
            stats["unpublished_by_type"][row["event_type"]] = row["count"]
            stats["max_retry_count"] = max(stats["max_retry_count"], row["max_retries"] or 0)

        oldest = await conn.fetchval(
            "SELECT MIN(created_at) AS oldest FROM outbox_events WHERE published = $1",
            False
        )
        stats["oldest_unpublished_at"] = str(oldest) if oldest is not None else None
        return stats
