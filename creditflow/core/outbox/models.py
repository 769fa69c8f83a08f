"""
Outbox Models

A row of `outbox_events`: one event announced by a committed business
mutation, waiting to be forwarded to the broker.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class OutboxRecord(BaseModel):
    """An entry in the outbox table."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None  # assigned by the store on insert
    event_id: str
    event_type: str
    schema_version: int = 1
    payload: str
    destination: str
    partition_key: str

    published: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    published_at: Optional[datetime] = None

    retry_count: int = 0
    last_error: Optional[str] = None

    # Set by an operator to silence the retry alert; retries continue
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OutboxRecord":
        return cls(**{**row, "published": bool(row["published"])})

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or _utcnow()
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return (now - created).total_seconds()
