"""
Broker Boundary

At-least-once pub/sub with consumer groups. A message stays pending for
its group until acknowledged; unacknowledged messages are delivered
again, to the same or another group member.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional

from ..errors import TransientInfraError

logger = logging.getLogger(__name__)

DEFAULT_BATCH = 10
POLL_BACKOFF_SECONDS = 1.0


@dataclass
class Delivery:
    """One delivery of a message to a consumer group member."""
    message_id: str
    topic: str
    group: str
    consumer: str
    key: Optional[str]
    payload: str
    headers: Dict[str, str] = field(default_factory=dict)
    delivery_count: int = 1
    broker: Optional["Broker"] = field(default=None, repr=False, compare=False)

    async def ack(self) -> None:
        """Remove the message from the group's pending set."""
        await self.broker.ack(self)

    async def nack(self) -> None:
        """Leave the message pending so it is delivered again."""
        await self.broker.nack(self)


class Broker(ABC):
    """
    Message broker interface.

    Usage:
        message_id = await broker.publish(topic, key, payload, headers)

        await broker.ensure_group(topic, "risk-assessment-group")
        async for delivery in broker.subscribe(topic, "risk-assessment-group", "worker-0"):
            ...
            await delivery.ack()

    `publish` returns only after the broker has durably accepted the
    message and raises TransientInfraError when it cannot be reached.
    """

    @abstractmethod
    async def publish(
        self,
        topic: str,
        key: Optional[str],
        payload: str,
        headers: Optional[Dict[str, str]] = None
    ) -> str:
        """Publish a message and return its broker-assigned id."""

    @abstractmethod
    async def ensure_group(self, topic: str, group: str) -> None:
        """Create a consumer group on a topic if it does not exist."""

    @abstractmethod
    async def poll(
        self,
        topic: str,
        group: str,
        consumer: str,
        max_messages: int = DEFAULT_BATCH,
        block_ms: int = 0
    ) -> List[Delivery]:
        """
        Fetch up to `max_messages` deliveries for a group member.

        Messages left pending past the redelivery timeout (or nacked) are
        returned before new ones.
        """

    @abstractmethod
    async def ack(self, delivery: Delivery) -> None:
        """Acknowledge a delivery."""

    @abstractmethod
    async def nack(self, delivery: Delivery) -> None:
        """Make a delivery eligible for redelivery."""

    async def close(self) -> None:
        """Release broker connections."""

    async def subscribe(
        self,
        topic: str,
        group: str,
        consumer: str,
        max_messages: int = DEFAULT_BATCH,
        block_ms: int = 1000
    ) -> AsyncIterator[Delivery]:
        """
        Endless stream of deliveries for a group member.

        A broker outage is logged and polled again after a pause; the
        iterator only ends when the consuming task is cancelled.
        """
        await self._ensure_group_with_retry(topic, group)
        while True:
            try:
                deliveries = await self.poll(topic, group, consumer, max_messages, block_ms)
            except TransientInfraError as e:
                logger.warning(
                    f"Broker unavailable while polling {topic}/{group}: {e}",
                    extra={"topic": topic, "group": group, "consumer": consumer}
                )
                await asyncio.sleep(POLL_BACKOFF_SECONDS)
                continue

            for delivery in deliveries:
                yield delivery

    async def _ensure_group_with_retry(self, topic: str, group: str) -> None:
        while True:
            try:
                await self.ensure_group(topic, group)
                return
            except TransientInfraError as e:
                logger.warning(f"Could not create group {group} on {topic}: {e}")
                await asyncio.sleep(POLL_BACKOFF_SECONDS)
