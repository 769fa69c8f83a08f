"""
Inbox / Dedup

Consumer-side deduplication: atomic claims on a TTL key-value store.

Usage:
    from creditflow.core.inbox import IdempotencyService, RedisDedupStore

    idempotency = IdempotencyService(RedisDedupStore.from_url(redis_url))
    async with idempotency.guard(event_type, event_id, claimant) as guard:
        if guard.should_process:
            await do_something(event)
"""

from .guard import ClaimGuard, IdempotencyService, KEY_PREFIX
from .stores import DedupStore, InMemoryDedupStore, RedisDedupStore

__all__ = [
    "ClaimGuard",
    "IdempotencyService",
    "KEY_PREFIX",
    "DedupStore",
    "InMemoryDedupStore",
    "RedisDedupStore",
]
