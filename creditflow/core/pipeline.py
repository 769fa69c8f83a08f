"""
Pipeline Wiring

Builds the collaborators shared by the API, the outbox publisher and the
stage consumers from one PipelineConfig.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .broker import Broker, InMemoryBroker, RedisStreamBroker
from .config import PipelineConfig
from .credit.cache import InMemoryCache, ReadThroughCache, RedisCache
from .credit.models import CreditApplication, RiskAssessment
from .credit.service import APPLICATION_CACHE, ASSESSMENT_CACHE, ApplicationService
from .database import DatabaseAdapter, ensure_schema
from .events.registry import EventRegistry, default_registry
from .inbox import DedupStore, IdempotencyService, InMemoryDedupStore, RedisDedupStore
from .outbox import OutboxDLQManager, OutboxPublisher, OutboxWriter

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Every long-lived collaborator of one process."""
    config: PipelineConfig
    db: DatabaseAdapter
    broker: Broker
    dedup_store: DedupStore
    registry: EventRegistry
    writer: OutboxWriter
    publisher: OutboxPublisher
    idempotency: IdempotencyService
    applications: ApplicationService
    dlq: OutboxDLQManager
    cache: ReadThroughCache

    async def close(self) -> None:
        """Stop the publisher and release connections."""
        if self.publisher.is_running:
            await self.publisher.stop()
        await self.broker.close()
        await self.dedup_store.close()
        await self.cache.close()
        await self.db.disconnect()


def build_broker(config: PipelineConfig) -> Broker:
    if config.broker_backend == "memory":
        return InMemoryBroker(redelivery_timeout=config.broker_redelivery_timeout)
    if config.broker_backend == "redis":
        return RedisStreamBroker.from_url(
            config.redis_url, redelivery_timeout=config.broker_redelivery_timeout
        )
    raise ValueError(f"Unknown BROKER_BACKEND: {config.broker_backend}")


def build_dedup_store(config: PipelineConfig) -> DedupStore:
    if config.dedup_backend == "memory":
        return InMemoryDedupStore()
    if config.dedup_backend == "redis":
        return RedisDedupStore.from_url(config.redis_url)
    raise ValueError(f"Unknown DEDUP_BACKEND: {config.dedup_backend}")


def build_cache(config: PipelineConfig) -> ReadThroughCache:
    ttls = {
        APPLICATION_CACHE: config.cache_application_ttl,
        ASSESSMENT_CACHE: config.cache_assessment_ttl,
    }
    if config.cache_backend == "memory":
        return InMemoryCache(ttls, max_entries=config.cache_max_entries)
    if config.cache_backend == "redis":
        return RedisCache.from_url(
            config.redis_url,
            ttls,
            {APPLICATION_CACHE: CreditApplication, ASSESSMENT_CACHE: RiskAssessment},
        )
    raise ValueError(f"Unknown CACHE_BACKEND: {config.cache_backend}")


async def build_pipeline(
    config: Optional[PipelineConfig] = None,
    db: Optional[DatabaseAdapter] = None,
    broker: Optional[Broker] = None,
    dedup_store: Optional[DedupStore] = None,
    registry: Optional[EventRegistry] = None,
    cache: Optional[ReadThroughCache] = None
) -> Pipeline:
    """
    Connect the store, apply the schema and wire everything together.

    Any collaborator passed in is used as-is (tests pass in-memory ones).
    Processes that share a broker, dedup store and cache see each other's
    claims and evictions.
    """
    config = config or PipelineConfig()
    db = db or DatabaseAdapter()
    await db.connect()
    await ensure_schema(db)

    broker = broker or build_broker(config)
    dedup_store = dedup_store or build_dedup_store(config)
    registry = registry or default_registry()
    writer = OutboxWriter(registry)

    publisher = OutboxPublisher(
        db,
        broker,
        registry,
        batch_size=config.outbox_batch_size,
        poll_interval=config.outbox_poll_interval,
        retry_alert_threshold=config.outbox_retry_alert_threshold,
        monitor_interval=config.outbox_monitor_interval,
        stale_after=config.outbox_stale_after,
        queue_warn_size=config.outbox_queue_warn_size,
    )
    idempotency = IdempotencyService(
        dedup_store,
        ttl_seconds=config.dedup_ttl,
        processing_ttl_seconds=config.dedup_processing_ttl,
    )
    cache = cache or build_cache(config)
    applications = ApplicationService(db, writer, cache)
    dlq = OutboxDLQManager(db, retry_threshold=config.outbox_retry_alert_threshold)

    logger.info(f"Pipeline built: {config}")
    return Pipeline(
        config=config,
        db=db,
        broker=broker,
        dedup_store=dedup_store,
        registry=registry,
        writer=writer,
        publisher=publisher,
        idempotency=idempotency,
        applications=applications,
        dlq=dlq,
        cache=cache,
    )
