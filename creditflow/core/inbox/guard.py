"""
Idempotency Guard

Turns at-least-once delivery into at-most-once effect per
(event type, event id).

Fail-open policy: when the dedup store is unreachable, `is_claimed`
answers False and `try_claim` answers True. Processing an event twice is
absorbed by the stages' authoritative-state checks; dropping an event
would be silent data loss. Every fail-open decision is logged and
counted in `dedup_fail_open_total`.
"""

import logging
import time
from typing import Optional

from ..errors import TransientInfraError
from ..observability import record_counter
from .stores import DedupStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "idempotency:"
DEFAULT_TTL_SECONDS = 7 * 24 * 3600
DEFAULT_PROCESSING_TTL_SECONDS = 300


class IdempotencyService:
    """
    Claims on the dedup store.

    A fresh claim lives for `processing_ttl` seconds. After the stage's
    commit, `confirm` extends it to the full retention window `ttl`; on a
    failure before commit, `release` deletes it so redelivery can retry.
    A worker that crashes between claim and commit blocks redelivery for
    at most `processing_ttl` seconds.
    """

    def __init__(
        self,
        store: DedupStore,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        processing_ttl_seconds: int = DEFAULT_PROCESSING_TTL_SECONDS
    ):
        if processing_ttl_seconds > ttl_seconds:
            raise ValueError("processing_ttl_seconds cannot exceed ttl_seconds")
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.processing_ttl_seconds = processing_ttl_seconds

    @staticmethod
    def key(event_type: str, event_id: str) -> str:
        return f"{KEY_PREFIX}{event_type}:{event_id}"

    async def is_claimed(self, event_type: str, event_id: str) -> bool:
        """Non-blocking existence check. False when the store is unreachable."""
        try:
            return await self.store.exists(self.key(event_type, event_id))
        except TransientInfraError as e:
            self._fail_open("is_claimed", event_type, event_id, e)
            return False

    async def try_claim(self, event_type: str, event_id: str, claimant: str) -> bool:
        """
        Atomic check-and-set. True only for the first caller within the
        claim's validity window; True when the store is unreachable.
        """
        value = f"{claimant}:{int(time.time() * 1000)}"
        try:
            claimed = await self.store.set_if_absent(
                self.key(event_type, event_id), value, self.processing_ttl_seconds
            )
        except TransientInfraError as e:
            self._fail_open("try_claim", event_type, event_id, e)
            return True

        if claimed:
            logger.debug(f"Claimed {event_type}:{event_id} for {claimant}")
        return claimed

    async def acquire(self, event_type: str, event_id: str, claimant: str) -> bool:
        """Entry point for consumers: short-circuit on an existing claim, else claim."""
        if await self.is_claimed(event_type, event_id):
            return False
        return await self.try_claim(event_type, event_id, claimant)

    async def confirm(self, event_type: str, event_id: str, claimant: str) -> bool:
        """Extend the claimant's claim to the full retention window."""
        key = self.key(event_type, event_id)
        try:
            confirmed = await self.store.expire_if_owned(key, claimant, self.ttl_seconds)
        except TransientInfraError as e:
            logger.warning(f"Could not confirm claim {key}: {e}")
            return False
        if not confirmed:
            # Expired mid-flight or never taken (fail-open); state checks cover a redelivery
            logger.warning(f"Claim {key} not held by {claimant} at confirm")
        return confirmed

    async def release(self, event_type: str, event_id: str, claimant: str) -> bool:
        """Drop the claimant's claim so a redelivery can retry."""
        key = self.key(event_type, event_id)
        try:
            released = await self.store.delete_if_owned(key, claimant)
        except TransientInfraError as e:
            logger.error(
                f"Could not release claim {key}: {e}; redelivery blocked until it expires"
            )
            return False
        if released:
            logger.info(f"Released claim {key} after failed processing")
        return released

    async def get_claim_info(self, event_type: str, event_id: str) -> Optional[str]:
        """Claim value (`claimant:epoch_millis`) for diagnostics, or None."""
        try:
            return await self.store.get(self.key(event_type, event_id))
        except TransientInfraError as e:
            logger.warning(f"Could not read claim info for {event_type}:{event_id}: {e}")
            return None

    def guard(self, event_type: str, event_id: str, claimant: str) -> "ClaimGuard":
        return ClaimGuard(self, event_type, event_id, claimant)

    def _fail_open(
        self,
        operation: str,
        event_type: str,
        event_id: str,
        error: Exception
    ) -> None:
        logger.warning(
            f"Dedup store unavailable during {operation} for {event_type}:{event_id}; "
            f"failing open: {error}",
            extra={"event_type": event_type, "event_id": event_id, "operation": operation}
        )
        record_counter("dedup_fail_open_total", 1, {"operation": operation})


class ClaimGuard:
    """
    Guards a block of processing with a claim.

    Usage:
        async with idempotency.guard(event_type, event_id, claimant) as guard:
            if guard.should_process:
                async with db.transaction() as conn:
                    ...
            else:
                logger.info("Event already processed, skipping")

    If the block raises, the claim is released to allow retry. If it
    completes, the claim is confirmed for the full retention window.
    """

    def __init__(
        self,
        service: IdempotencyService,
        event_type: str,
        event_id: str,
        claimant: str
    ):
        self.service = service
        self.event_type = event_type
        self.event_id = event_id
        self.claimant = claimant
        self.should_process = False

    async def __aenter__(self) -> "ClaimGuard":
        self.should_process = await self.service.acquire(
            self.event_type, self.event_id, self.claimant
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if not self.should_process:
            return False
        if exc_type is not None:
            await self.service.release(self.event_type, self.event_id, self.claimant)
        else:
            await self.service.confirm(self.event_type, self.event_id, self.claimant)
        return False
