"""
In-Memory Broker

Same contract as the Redis Streams broker for local runs and tests:
per-topic logs, per-group cursors and pending sets, delivery counts and
idle-timeout redelivery. `set_available(False)` simulates an outage.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import TransientInfraError
from .base import Broker, Delivery, DEFAULT_BATCH

logger = logging.getLogger(__name__)


@dataclass
class StoredMessage:
    message_id: str
    key: Optional[str]
    payload: str
    headers: Dict[str, str]


@dataclass
class PendingEntry:
    consumer: str
    delivered_at: float
    delivery_count: int


@dataclass
class GroupState:
    cursor: int = 0
    pending: Dict[str, PendingEntry] = field(default_factory=dict)


class InMemoryBroker(Broker):
    """
    Process-local broker.

    Usage:
        broker = InMemoryBroker(redelivery_timeout=30)
        await broker.publish("credit.application.submitted", app_id, payload)
        broker.set_available(False)   # next publish/poll raises TransientInfraError
    """

    def __init__(
        self,
        redelivery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.redelivery_timeout = redelivery_timeout
        self._clock = clock
        self._topics: Dict[str, List[StoredMessage]] = {}
        self._groups: Dict[Tuple[str, str], GroupState] = {}
        self._ids = itertools.count(1)
        self._available = True
        self._arrival = asyncio.Condition()

    def set_available(self, available: bool) -> None:
        self._available = available

    def _check_available(self, operation: str) -> None:
        if not self._available:
            raise TransientInfraError(f"Broker unavailable during {operation}", backend="memory")

    def messages(self, topic: str) -> List[StoredMessage]:
        """Everything ever published to a topic, in order."""
        return list(self._topics.get(topic, []))

    def pending_count(self, topic: str, group: str) -> int:
        state = self._groups.get((topic, group))
        return len(state.pending) if state else 0

    async def publish(
        self,
        topic: str,
        key: Optional[str],
        payload: str,
        headers: Optional[Dict[str, str]] = None
    ) -> str:
        self._check_available("publish")
        message_id = f"{next(self._ids)}-0"
        self._topics.setdefault(topic, []).append(
            StoredMessage(message_id, key, payload, dict(headers or {}))
        )
        async with self._arrival:
            self._arrival.notify_all()
        return message_id

    async def ensure_group(self, topic: str, group: str) -> None:
        self._check_available("ensure_group")
        self._topics.setdefault(topic, [])
        self._groups.setdefault((topic, group), GroupState())

    async def poll(
        self,
        topic: str,
        group: str,
        consumer: str,
        max_messages: int = DEFAULT_BATCH,
        block_ms: int = 0
    ) -> List[Delivery]:
        self._check_available("poll")
        await self.ensure_group(topic, group)

        deliveries = self._take(topic, group, consumer, max_messages)
        if deliveries or block_ms <= 0:
            return deliveries

        try:
            async with self._arrival:
                await asyncio.wait_for(self._arrival.wait(), timeout=block_ms / 1000)
        except asyncio.TimeoutError:
            pass
        self._check_available("poll")
        return self._take(topic, group, consumer, max_messages)

    def _take(self, topic: str, group: str, consumer: str, max_messages: int) -> List[Delivery]:
        state = self._groups[(topic, group)]
        log = self._topics[topic]
        by_id = {m.message_id: m for m in log}
        now = self._clock()
        deliveries: List[Delivery] = []

        # Reclaim idle pending entries first
        for message_id, entry in list(state.pending.items()):
            if len(deliveries) >= max_messages:
                break
            if now - entry.delivered_at < self.redelivery_timeout:
                continue
            entry.consumer = consumer
            entry.delivered_at = now
            entry.delivery_count += 1
            deliveries.append(self._delivery(topic, group, consumer, by_id[message_id], entry))

        while len(deliveries) < max_messages and state.cursor < len(log):
            message = log[state.cursor]
            state.cursor += 1
            entry = PendingEntry(consumer=consumer, delivered_at=now, delivery_count=1)
            state.pending[message.message_id] = entry
            deliveries.append(self._delivery(topic, group, consumer, message, entry))

        return deliveries

    def _delivery(
        self,
        topic: str,
        group: str,
        consumer: str,
        message: StoredMessage,
        entry: PendingEntry
    ) -> Delivery:
        return Delivery(
            message_id=message.message_id,
            topic=topic,
            group=group,
            consumer=consumer,
            key=message.key,
            payload=message.payload,
            headers=dict(message.headers),
            delivery_count=entry.delivery_count,
            broker=self,
        )

    async def ack(self, delivery: Delivery) -> None:
        self._check_available("ack")
        state = self._groups.get((delivery.topic, delivery.group))
        if state:
            state.pending.pop(delivery.message_id, None)

    async def nack(self, delivery: Delivery) -> None:
        state = self._groups.get((delivery.topic, delivery.group))
        entry = state.pending.get(delivery.message_id) if state else None
        if entry:
            # Eligible on the next poll
            entry.delivered_at = self._clock() - self.redelivery_timeout
