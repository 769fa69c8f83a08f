"""
Redis Streams Broker

One stream per topic, one Redis consumer group per consumer group.

- publish: XADD (the returned entry id is the broker's acknowledgment)
- poll: XAUTOCLAIM entries idle past the redelivery timeout, then
  XREADGROUP new entries
- ack: XACK
- nack: reset the entry's idle time so the next XAUTOCLAIM takes it
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..errors import TransientInfraError
from .base import Broker, Delivery, DEFAULT_BATCH

logger = logging.getLogger(__name__)

_TRANSIENT = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisStreamBroker(Broker):
    """
    Broker backed by Redis Streams.

    Usage:
        client = aioredis.from_url(redis_url, decode_responses=True)
        broker = RedisStreamBroker(client, redelivery_timeout=30)
    """

    def __init__(
        self,
        client: aioredis.Redis,
        redelivery_timeout: float = 30.0,
        maxlen: Optional[int] = None
    ):
        self._client = client
        self._redelivery_ms = int(redelivery_timeout * 1000)
        self._maxlen = maxlen
        self._groups: set = set()

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisStreamBroker":
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    async def publish(
        self,
        topic: str,
        key: Optional[str],
        payload: str,
        headers: Optional[Dict[str, str]] = None
    ) -> str:
        fields = {
            "key": key or "",
            "payload": payload,
            "headers": json.dumps(headers or {}),
        }
        try:
            message_id = await self._client.xadd(
                topic, fields, maxlen=self._maxlen, approximate=True
            )
        except _TRANSIENT as e:
            raise TransientInfraError(f"XADD to {topic} failed: {e}", backend="redis") from e

        logger.debug("Published to Redis stream", extra={"topic": topic, "message_id": message_id})
        return message_id

    async def ensure_group(self, topic: str, group: str) -> None:
        if (topic, group) in self._groups:
            return
        try:
            # Start at 0 so entries written before the group existed are consumed
            await self._client.xgroup_create(topic, group, id="0", mkstream=True)
            logger.info(f"Created consumer group {group} on {topic}")
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
        except _TRANSIENT as e:
            raise TransientInfraError(f"XGROUP CREATE on {topic} failed: {e}", backend="redis") from e
        self._groups.add((topic, group))

    async def poll(
        self,
        topic: str,
        group: str,
        consumer: str,
        max_messages: int = DEFAULT_BATCH,
        block_ms: int = 0
    ) -> List[Delivery]:
        await self.ensure_group(topic, group)
        try:
            deliveries = await self._reclaim(topic, group, consumer, max_messages)
            remaining = max_messages - len(deliveries)
            if remaining > 0:
                response = await self._client.xreadgroup(
                    group,
                    consumer,
                    streams={topic: ">"},
                    count=remaining,
                    block=None if deliveries or block_ms <= 0 else block_ms,
                )
                for message_id, fields in _stream_entries(response, topic):
                    deliveries.append(self._delivery(topic, group, consumer, message_id, fields, 1))
        except _TRANSIENT as e:
            raise TransientInfraError(f"Polling {topic}/{group} failed: {e}", backend="redis") from e
        return deliveries

    async def _reclaim(
        self,
        topic: str,
        group: str,
        consumer: str,
        max_messages: int
    ) -> List[Delivery]:
        response = await self._client.xautoclaim(
            topic, group, consumer,
            min_idle_time=self._redelivery_ms,
            start_id="0-0",
            count=max_messages,
        )
        claimed = response[1] if response and len(response) > 1 else []

        deliveries = []
        for entry in claimed:
            if not entry or entry[1] is None:
                # Trimmed from the stream while pending
                continue
            message_id, fields = entry
            count = await self._delivery_count(topic, group, message_id)
            deliveries.append(self._delivery(topic, group, consumer, message_id, fields, count))
        return deliveries

    async def _delivery_count(self, topic: str, group: str, message_id: str) -> int:
        pending = await self._client.xpending_range(
            topic, group, min=message_id, max=message_id, count=1
        )
        if pending:
            return int(pending[0]["times_delivered"])
        return 1

    def _delivery(
        self,
        topic: str,
        group: str,
        consumer: str,
        message_id: str,
        fields: Dict[str, Any],
        delivery_count: int
    ) -> Delivery:
        try:
            headers = json.loads(fields.get("headers") or "{}")
        except json.JSONDecodeError:
            logger.warning(f"Unreadable headers on {topic} entry {message_id}")
            headers = {}
        return Delivery(
            message_id=message_id,
            topic=topic,
            group=group,
            consumer=consumer,
            key=fields.get("key") or None,
            payload=fields.get("payload", ""),
            headers=headers,
            delivery_count=delivery_count,
            broker=self,
        )

    async def ack(self, delivery: Delivery) -> None:
        try:
            await self._client.xack(delivery.topic, delivery.group, delivery.message_id)
        except _TRANSIENT as e:
            raise TransientInfraError(
                f"XACK {delivery.message_id} on {delivery.topic} failed: {e}", backend="redis"
            ) from e

    async def nack(self, delivery: Delivery) -> None:
        try:
            await self._client.xclaim(
                delivery.topic,
                delivery.group,
                delivery.consumer,
                min_idle_time=0,
                message_ids=[delivery.message_id],
                idle=self._redelivery_ms,
                justid=True,
            )
        except _TRANSIENT as e:
            # Still pending; the idle timeout redelivers it anyway
            logger.warning(f"Could not nack {delivery.message_id} on {delivery.topic}: {e}")

    async def close(self) -> None:
        await self._client.aclose()


def _stream_entries(response: Any, topic: str) -> List[Tuple[str, Dict[str, Any]]]:
    """Entries for one stream from an XREADGROUP reply."""
    for stream_name, entries in response or []:
        if stream_name == topic:
            return [tuple(e) for e in entries if e and e[1] is not None]
    return []
