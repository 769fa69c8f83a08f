"""
Outbox Publisher

Background worker that drains the outbox to the broker.

Each run fetches up to `batch_size` unpublished records (oldest first)
and publishes them one at a time. A record is marked published only
after the broker acknowledges it; a failed record gets its retry_count
incremented and is picked up again by the next run, forever. Repeated
failure never removes a record from consideration.

Within a run, once a record fails, later records with the same
partition key are deferred to the next run so one application's chain
is never published out of order.

A second, slower loop reports unpublished records older than
`stale_after` seconds. It only alerts; it changes nothing.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..broker.base import Broker
from ..database.adapter import DatabaseAdapter
from ..errors import PersistenceError
from ..events.registry import EventRegistry, default_registry
from ..events.taxonomy import EventType
from ..observability import (
    create_span,
    inject_trace_context,
    record_counter,
    record_histogram,
)
from .models import OutboxRecord
from .repository import OutboxRepository

logger = logging.getLogger(__name__)


@dataclass
class PublishReport:
    """Outcome of one publisher run."""
    attempted: int = 0
    published: int = 0
    failed: int = 0
    deferred: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "published": self.published,
            "failed": self.failed,
            "deferred": self.deferred,
            "duration_seconds": round(self.duration_seconds, 4),
        }


@dataclass
class StuckReport:
    """Outcome of one stuck-event scan."""
    unpublished: int = 0
    stale: List[OutboxRecord] = field(default_factory=list)
    backlog_warning: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unpublished": self.unpublished,
            "stale_count": len(self.stale),
            "backlog_warning": self.backlog_warning,
            "stale": [
                {
                    "id": r.id,
                    "event_id": r.event_id,
                    "event_type": r.event_type,
                    "created_at": r.created_at.isoformat(),
                    "retry_count": r.retry_count,
                    "last_error": r.last_error,
                }
                for r in self.stale
            ],
        }


class OutboxPublisher:
    """
    Publishes outbox records to the broker.

    Usage:
        publisher = OutboxPublisher(db, broker)
        report = await publisher.run_once()     # one batch, e.g. in tests
        await publisher.start()                 # poll + monitor loops
        await publisher.stop()
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        broker: Broker,
        registry: Optional[EventRegistry] = None,
        repository: Optional[OutboxRepository] = None,
        batch_size: int = 100,
        poll_interval: float = 0.1,
        retry_alert_threshold: int = 10,
        monitor_interval: float = 60.0,
        stale_after: float = 300.0,
        queue_warn_size: int = 1000
    ):
        self.db = db
        self.broker = broker
        self.registry = registry or default_registry()
        self.repository = repository or OutboxRepository()
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.retry_alert_threshold = retry_alert_threshold
        self.monitor_interval = monitor_interval
        self.stale_after = stale_after
        self.queue_warn_size = queue_warn_size

        # Unknown types fail here, not per record at runtime
        self.registry.validate(required=list(EventType))

        self._run_lock = asyncio.Lock()
        self._running = False
        self._tasks: List[asyncio.Task] = []
        self.last_report: Optional[PublishReport] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start the poll and monitor loops."""
        if self._running:
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._poll_loop(), name="outbox-publisher"),
            asyncio.create_task(self._monitor_loop(), name="outbox-monitor"),
        ]
        logger.info(
            f"OutboxPublisher started (batch_size={self.batch_size}, "
            f"poll_interval={self.poll_interval}s)"
        )

    async def stop(self):
        """Stop both loops. The publisher can be started again afterwards."""
        self._running = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("OutboxPublisher stopped")

    async def _poll_loop(self):
        while self._running:
            try:
                report = await self.run_once()
                if report.attempted + report.deferred >= self.batch_size and report.failed == 0:
                    # Full batch: keep draining
                    continue
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"OutboxPublisher run failed: {e}", exc_info=True)
            await asyncio.sleep(self.poll_interval)

    async def _monitor_loop(self):
        while self._running:
            await asyncio.sleep(self.monitor_interval)
            try:
                await self.check_stuck()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Outbox monitor failed: {e}", exc_info=True)

    async def run_once(self) -> PublishReport:
        """
        Publish one batch.

        Per-record failures are recorded on the record and never raised.
        A store failure while fetching the batch raises PersistenceError.
        """
        async with self._run_lock:
            started = time.monotonic()
            report = PublishReport()

            with create_span("outbox.publish_batch", {"outbox.batch_size": self.batch_size}) as span:
                async with self.db.transaction() as conn:
                    records = await self.repository.query_unpublished(conn, self.batch_size)

                blocked_keys: Set[str] = set()
                for record in records:
                    if record.partition_key in blocked_keys:
                        report.deferred += 1
                        continue

                    report.attempted += 1
                    if await self._publish_record(record):
                        report.published += 1
                    else:
                        report.failed += 1
                        blocked_keys.add(record.partition_key)

                span.set_attribute("outbox.attempted", report.attempted)
                span.set_attribute("outbox.published", report.published)
                span.set_attribute("outbox.failed", report.failed)

            report.duration_seconds = time.monotonic() - started
            record_histogram("outbox_processing_duration_seconds", report.duration_seconds)
            if records:
                logger.debug(f"Outbox run: {report.to_dict()}")
            self.last_report = report
            return report

    async def _publish_record(self, record: OutboxRecord) -> bool:
        attributes = {"event_type": record.event_type, "destination": record.destination}
        try:
            # Decode first: a payload that no longer validates is a failure, not a send
            self.registry.decode(record.event_type, record.payload)
            headers = {
                "event_type": record.event_type,
                "event_id": record.event_id,
                "schema_version": str(record.schema_version),
                "outbox_id": str(record.id),
            }
            inject_trace_context(headers)
            message_id = await self.broker.publish(
                record.destination, record.partition_key, record.payload, headers
            )
        except Exception as e:
            await self._record_failure(record, e)
            return False

        try:
            async with self.db.transaction() as conn:
                marked = await self.repository.mark_published(conn, record.id)
        except PersistenceError as e:
            # Broker has it; the next run re-sends and consumers dedup
            logger.error(
                f"Outbox record {record.id} published as {message_id} but not marked: {e}",
                extra={"outbox_id": record.id, "event_id": record.event_id}
            )
            return False

        if not marked:
            logger.info(f"Outbox record {record.id} was already marked published")
        record_counter("outbox_published_total", 1, attributes)
        logger.info(
            f"Published outbox record {record.id} ({record.event_type}) to {record.destination}",
            extra={
                "outbox_id": record.id,
                "event_id": record.event_id,
                "event_type": record.event_type,
                "message_id": message_id,
            }
        )
        return True

    async def _record_failure(self, record: OutboxRecord, error: Exception) -> None:
        record_counter(
            "outbox_publish_failures_total", 1,
            {"event_type": record.event_type, "error": type(error).__name__}
        )
        message = f"{type(error).__name__}: {error}"
        try:
            async with self.db.transaction() as conn:
                retry_count = await self.repository.record_failure(conn, record.id, message)
        except PersistenceError as e:
            logger.error(f"Could not record failure for outbox record {record.id}: {e}")
            return

        extra = {
            "outbox_id": record.id,
            "event_id": record.event_id,
            "event_type": record.event_type,
            "retry_count": retry_count,
        }
        if retry_count >= self.retry_alert_threshold and record.acknowledged_at is None:
            logger.error(
                f"Outbox record {record.id} has failed {retry_count} times and needs "
                f"manual intervention: {message}",
                extra=extra
            )
        else:
            logger.warning(
                f"Failed to publish outbox record {record.id} (retry {retry_count}): {message}",
                extra=extra
            )

    async def check_stuck(self, limit: int = 100) -> StuckReport:
        """Report unpublished records older than `stale_after`. Alert only."""
        async with self.db.transaction() as conn:
            stale = await self.repository.find_stale(conn, self.stale_after, limit)
            unpublished = await self.repository.count_unpublished(conn)

        report = StuckReport(
            unpublished=unpublished,
            stale=stale,
            backlog_warning=unpublished > self.queue_warn_size,
        )

        for record in stale:
            logger.error(
                f"Stuck outbox event: id={record.id} type={record.event_type} "
                f"event_id={record.event_id} age={record.age_seconds():.0f}s "
                f"retries={record.retry_count} last_error={record.last_error}",
                extra={"outbox_id": record.id, "event_id": record.event_id}
            )
        if stale:
            record_counter("outbox_stuck_events_total", len(stale))
        if report.backlog_warning:
            logger.warning(
                f"Outbox backlog is {unpublished} unpublished records "
                f"(warn above {self.queue_warn_size})"
            )
        return report
