"""
Transactional Event Publisher

Combines business operations with event publishing in a single transaction
to guarantee atomicity: either both succeed or both fail.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from ..database.adapter import Connection, DatabaseAdapter, get_database
from ..events.models import PipelineEvent
from .models import OutboxRecord
from .writer import OutboxWriter


class TransactionalPublisher:
    """
    Publishes events transactionally with business operations.

    Usage:
        async with TransactionalPublisher(db, writer) as txn:
            await applications.insert(txn.conn, application)
            await txn.emit(CreditApplicationSubmitted.create(...))
        # Both commit together or both rollback

    Store failures surface as PersistenceError from the `async with`.
    """

    def __init__(
        self,
        db: Optional[DatabaseAdapter] = None,
        writer: Optional[OutboxWriter] = None
    ):
        self.db = db
        self._writer = writer or OutboxWriter()
        self._events: List[OutboxRecord] = []
        self._tx = None
        self.conn: Optional[Connection] = None

    async def __aenter__(self) -> "TransactionalPublisher":
        if self.db is None:
            self.db = await get_database()
        self._events = []
        self._tx = self.db.transaction()
        self.conn = await self._tx.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        tx, self._tx = self._tx, None
        self.conn = None
        try:
            return await tx.__aexit__(exc_type, exc_val, exc_tb)
        finally:
            if exc_type is not None:
                # Rolled back, nothing was emitted
                self._events = []

    async def emit(self, event: PipelineEvent) -> OutboxRecord:
        """Emit an event (writes to outbox in current transaction)."""
        if self.conn is None:
            raise RuntimeError("emit() called outside an open transaction")
        record = await self._writer.write(self.conn, event)
        self._events.append(record)
        return record

    @property
    def emitted_events(self) -> List[OutboxRecord]:
        """Get list of events emitted in this transaction."""
        return self._events.copy()


@asynccontextmanager
async def transactional_publish(
    db: Optional[DatabaseAdapter] = None,
    writer: Optional[OutboxWriter] = None
) -> AsyncIterator[TransactionalPublisher]:
    """
    Context manager for transactional event publishing.

    Usage:
        async with transactional_publish(db) as txn:
            await txn.conn.execute("INSERT INTO credit_applications ...")
            await txn.emit(event)
    """
    publisher = TransactionalPublisher(db, writer)
    async with publisher:
        yield publisher
