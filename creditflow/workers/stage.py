"""
Stage Consumer

Shared shape of every pipeline stage:

    RECEIVED -> CLAIMED -> PROCESSING -> COMMITTED
    RECEIVED -> (already claimed) -> SKIPPED
    RECEIVED -> CLAIMED -> PROCESSING -> FAILED        (nack, redelivered)
    RECEIVED -> DEAD_LETTERED                          (invalid payload, or
                                                        too many deliveries)

The claim is taken before any durable side effect. The stage's state
change and its next outbox record commit in one transaction, and the
inbound message is acknowledged only after that commit.
"""

import logging
import os
import socket
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from opentelemetry.trace import SpanKind

from ..core.broker.base import Broker, Delivery
from ..core.credit.service import ApplicationService
from ..core.database.adapter import DatabaseAdapter
from ..core.errors import ConflictError, TransientInfraError, ValidationError
from ..core.events.models import PipelineEvent
from ..core.events.registry import EventRegistry
from ..core.events.taxonomy import EventType, Topics
from ..core.inbox.guard import IdempotencyService
from ..core.observability import (
    create_span,
    extract_trace_context,
    record_counter,
    record_histogram,
    span_event,
)
from ..core.outbox.transactional import TransactionalPublisher, transactional_publish
from ..core.outbox.writer import OutboxWriter

logger = logging.getLogger(__name__)

INSTANCE_ID = f"{socket.gethostname()}-{os.getpid()}"


class StageOutcome(str, Enum):
    """Terminal state of one delivery."""
    COMMITTED = "committed"
    SKIPPED = "skipped"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class StageResult:
    """What `process` did inside the stage transaction."""
    applied: bool
    detail: str = ""

    @classmethod
    def committed(cls, detail: str = "") -> "StageResult":
        return cls(applied=True, detail=detail)

    @classmethod
    def already_done(cls, detail: str) -> "StageResult":
        """Authoritative state shows this stage already ran."""
        return cls(applied=False, detail=detail)


class DeadLetterRouter:
    """
    Publishes a delivery to `{topic}.dlq` with the failure in its headers.

    Raises TransientInfraError if the broker is down; the caller then
    leaves the original message pending instead of acknowledging it.
    """

    def __init__(self, broker: Broker):
        self.broker = broker

    async def route(self, delivery: Delivery, reason: str, error: Optional[Exception] = None) -> str:
        topic = Topics.dead_letter(delivery.topic)
        headers = {
            **delivery.headers,
            "dlq_reason": reason,
            "dlq_error": f"{type(error).__name__}: {error}" if error else "",
            "original_topic": delivery.topic,
            "original_message_id": delivery.message_id,
            "consumer_group": delivery.group,
            "delivery_count": str(delivery.delivery_count),
        }
        message_id = await self.broker.publish(topic, delivery.key, delivery.payload, headers)
        record_counter("dlq_entries_total", 1, {"topic": delivery.topic, "reason": reason})
        logger.error(
            f"Dead-lettered {delivery.topic} message {delivery.message_id} to {topic}: {reason}",
            extra={
                "topic": delivery.topic,
                "message_id": delivery.message_id,
                "dlq_message_id": message_id,
                "reason": reason,
                "error": headers["dlq_error"],
            }
        )
        return message_id


class StageConsumer(ABC):
    """
    Base class for the stage consumers.

    Subclasses set `name`, `topic`, `group` and `event_type`, and
    implement `process`, which runs inside the stage transaction and may
    `txn.emit()` the next event.
    """

    name: str
    topic: str
    group: str
    event_type: EventType

    def __init__(
        self,
        db: DatabaseAdapter,
        idempotency: IdempotencyService,
        registry: EventRegistry,
        writer: OutboxWriter,
        dead_letters: DeadLetterRouter,
        applications: Optional[ApplicationService] = None,
        max_deliveries: int = 5
    ):
        self.db = db
        self.idempotency = idempotency
        self.registry = registry
        self.writer = writer
        self.dead_letters = dead_letters
        self.applications = applications
        self.max_deliveries = max_deliveries

    @abstractmethod
    async def process(self, txn: TransactionalPublisher, event: PipelineEvent) -> StageResult:
        """Stage computation and state change, inside one store transaction."""

    def claimant(self, delivery: Delivery) -> str:
        return f"{self.group}/{delivery.consumer}/{INSTANCE_ID}"

    async def handle(self, delivery: Delivery) -> StageOutcome:
        """Drive one delivery to a terminal outcome. Never raises."""
        started = time.monotonic()
        attributes = {
            "stage": self.name,
            "messaging.destination": delivery.topic,
            "messaging.message_id": delivery.message_id,
            "messaging.delivery_count": delivery.delivery_count,
        }
        with create_span(
            f"stage.{self.name}",
            attributes,
            kind=SpanKind.CONSUMER,
            context=extract_trace_context(delivery.headers)
        ) as span:
            outcome = await self._handle(delivery)
            span.set_attribute("stage.outcome", outcome.value)

        record_histogram(
            "stage_processing_duration_seconds",
            time.monotonic() - started,
            {"stage": self.name, "outcome": outcome.value}
        )
        return outcome

    async def _handle(self, delivery: Delivery) -> StageOutcome:
        try:
            event = self.registry.decode(self.event_type.value, delivery.payload)
        except ValidationError as e:
            # Redelivery cannot fix a malformed payload
            return await self._dead_letter(delivery, "invalid payload", e)

        log_extra = {
            "stage": self.name,
            "event_type": self.event_type.value,
            "event_id": event.event_id,
            "message_id": delivery.message_id,
            "delivery_count": delivery.delivery_count,
        }
        claimant = self.claimant(delivery)
        result: Optional[StageResult] = None

        try:
            async with self.idempotency.guard(self.event_type.value, event.event_id, claimant) as guard:
                if guard.should_process:
                    span_event("claimed", {"claimant": claimant})
                    async with transactional_publish(self.db, self.writer) as txn:
                        result = await self.process(txn, event)
        except Exception as e:
            return await self._on_failure(delivery, e, log_extra)

        if result is None:
            logger.warning(
                f"{self.name}: duplicate delivery of {self.event_type.value} "
                f"{event.event_id} skipped",
                extra={**log_extra, "outcome": StageOutcome.SKIPPED.value}
            )
            record_counter("events_skipped_total", 1, {"stage": self.name, "reason": "claimed"})
            await self._ack(delivery)
            return StageOutcome.SKIPPED

        application_id = getattr(event, "application_id", None)
        if self.applications and application_id:
            try:
                await self.applications.evict(application_id)
            except TransientInfraError as e:
                # Committed already; readers see the old status until the TTL expires
                logger.error(
                    f"{self.name}: cache eviction for {application_id} failed: {e}",
                    extra=log_extra
                )
        await self._ack(delivery)

        if not result.applied:
            logger.warning(
                f"{self.name}: {self.event_type.value} {event.event_id} skipped: {result.detail}",
                extra={**log_extra, "outcome": StageOutcome.SKIPPED.value}
            )
            record_counter("events_skipped_total", 1, {"stage": self.name, "reason": "state"})
            return StageOutcome.SKIPPED

        logger.info(
            f"{self.name}: committed {self.event_type.value} {event.event_id}: {result.detail}",
            extra={**log_extra, "outcome": StageOutcome.COMMITTED.value}
        )
        record_counter("events_processed_total", 1, {"stage": self.name})
        return StageOutcome.COMMITTED

    async def _on_failure(self, delivery: Delivery, error: Exception, log_extra: dict) -> StageOutcome:
        message = (
            f"{self.name}: processing {log_extra['event_id']} failed "
            f"(delivery {delivery.delivery_count}/{self.max_deliveries}): "
            f"{type(error).__name__}: {error}"
        )
        if isinstance(error, ConflictError):
            logger.error(message, extra={**log_extra, "outcome": StageOutcome.FAILED.value})
        elif isinstance(error, TransientInfraError):
            logger.warning(message, extra={**log_extra, "outcome": StageOutcome.FAILED.value})
        else:
            logger.error(message, exc_info=error, extra={**log_extra, "outcome": StageOutcome.FAILED.value})

        if delivery.delivery_count >= self.max_deliveries:
            return await self._dead_letter(delivery, "max deliveries exceeded", error)

        await self._nack(delivery)
        return StageOutcome.FAILED

    async def _dead_letter(
        self,
        delivery: Delivery,
        reason: str,
        error: Optional[Exception]
    ) -> StageOutcome:
        try:
            await self.dead_letters.route(delivery, reason, error)
        except TransientInfraError as e:
            logger.error(f"{self.name}: could not dead-letter {delivery.message_id}: {e}")
            await self._nack(delivery)
            return StageOutcome.FAILED
        await self._ack(delivery)
        return StageOutcome.DEAD_LETTERED

    async def _ack(self, delivery: Delivery) -> None:
        try:
            await delivery.ack()
        except TransientInfraError as e:
            # Redelivered later and skipped by the claim
            logger.warning(f"{self.name}: ack of {delivery.message_id} failed: {e}")

    async def _nack(self, delivery: Delivery) -> None:
        try:
            await delivery.nack()
        except TransientInfraError as e:
            logger.warning(f"{self.name}: nack of {delivery.message_id} failed: {e}")
