"""
Broker Boundary

At-least-once pub/sub with consumer groups: Redis Streams in production,
an in-memory implementation for local runs and tests.
"""

from .base import Broker, Delivery
from .memory import InMemoryBroker
from .redis_streams import RedisStreamBroker

__all__ = [
    "Broker",
    "Delivery",
    "InMemoryBroker",
    "RedisStreamBroker",
]
