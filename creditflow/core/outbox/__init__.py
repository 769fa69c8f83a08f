"""
Outbox Pattern Implementation

Transactional event publishing with guaranteed delivery.

Usage:
    from creditflow.core.outbox import transactional_publish

    async with transactional_publish(db) as txn:
        # Atomic with your business transaction
        await applications.insert(txn.conn, application)
        await txn.emit(CreditApplicationSubmitted.create(...))
"""

from .dlq import FailingEntry, OutboxDLQManager
from .lifecycle import outbox_lifespan
from .models import OutboxRecord
from .processor import OutboxPublisher, PublishReport, StuckReport
from .repository import OutboxRepository
from .transactional import TransactionalPublisher, transactional_publish
from .writer import OutboxWriter

__all__ = [
    "FailingEntry",
    "OutboxDLQManager",
    "outbox_lifespan",
    "OutboxRecord",
    "OutboxPublisher",
    "PublishReport",
    "StuckReport",
    "OutboxRepository",
    "TransactionalPublisher",
    "transactional_publish",
    "OutboxWriter",
]
