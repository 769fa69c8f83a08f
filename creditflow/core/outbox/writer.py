"""
Outbox Writer

Writes events to the outbox table within the same transaction
as your business logic for guaranteed delivery. No broker call
happens on this path.
"""

import logging
from typing import Optional

from ..database.adapter import Connection
from ..events.models import PipelineEvent
from ..events.registry import EventRegistry, default_registry
from .models import OutboxRecord
from .repository import OutboxRepository

logger = logging.getLogger(__name__)


class OutboxWriter:
    """
    Writes events to the outbox for reliable delivery.

    Usage:
        async with db.transaction() as conn:
            await applications.insert(conn, application)
            await writer.write(conn, CreditApplicationSubmitted.create(...))
        # Both rows commit together or neither does
    """

    def __init__(
        self,
        registry: Optional[EventRegistry] = None,
        repository: Optional[OutboxRepository] = None
    ):
        self.registry = registry or default_registry()
        self.repository = repository or OutboxRepository()

    async def write(self, conn: Connection, event: PipelineEvent) -> OutboxRecord:
        """
        Append an event to the outbox inside the caller's transaction.

        Raises:
            UnknownEventTypeError: the event's model is not registered
        """
        definition = self.registry.for_event(event)
        record = OutboxRecord(
            event_id=event.event_id,
            event_type=definition.event_type,
            schema_version=event.schema_version,
            payload=self.registry.encode(event),
            destination=definition.destination,
            partition_key=event.partition_key,
        )
        record = await self.repository.insert(conn, record)

        logger.debug(
            "Wrote event to outbox: id=%s type=%s event_id=%s",
            record.id, record.event_type, record.event_id
        )
        return record
