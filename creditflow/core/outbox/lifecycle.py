"""
Outbox Lifecycle Management

Integrates the outbox publisher with the FastAPI application lifecycle.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from ..config import PipelineConfig
from .processor import OutboxPublisher

logger = logging.getLogger(__name__)


def is_outbox_processor_enabled(config: Optional[PipelineConfig] = None) -> bool:
    """
    Check if this instance should run the outbox publisher.

    Several instances may publish concurrently without breaking
    correctness (consumers dedup), but one publisher avoids wasted sends.
    """
    return (config or PipelineConfig()).outbox_processor_enabled


@asynccontextmanager
async def outbox_lifespan(
    publisher: OutboxPublisher,
    config: Optional[PipelineConfig] = None
) -> AsyncIterator[Optional[OutboxPublisher]]:
    """
    Lifespan context manager for the outbox publisher.

    Usage in FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with outbox_lifespan(pipeline.publisher):
                yield

        app = FastAPI(lifespan=lifespan)
    """
    if not is_outbox_processor_enabled(config):
        logger.info("Outbox publisher disabled: OUTBOX_PROCESSOR_ENABLED=false")
        yield None
        return

    logger.info("Starting outbox publisher...")
    await publisher.start()
    try:
        yield publisher
    finally:
        logger.info("Stopping outbox publisher...")
        await publisher.stop()
