"""
Stage Consumer Runner

`ConsumerGroupRunner` runs N worker tasks for one stage, each a member
of the stage's consumer group. `PipelineWorker` is the standalone
process: both stages plus, optionally, the outbox publisher.

Usage:
    python -m creditflow.workers.runner

Environment Variables:
    DATABASE_BACKEND / DATABASE_URL / SQLITE_PATH: durable store
    REDIS_URL: broker and dedup store
    CONSUMER_CONCURRENCY: workers per consumer group (default: 3)
    CONSUMER_MAX_DELIVERIES: deliveries before dead-letter (default: 5)
    OUTBOX_PROCESSOR_ENABLED: also run the outbox publisher (default: true)
    LOG_LEVEL: Logging level (default: INFO)
"""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

from ..core.broker.base import Broker
from ..core.config import PipelineConfig
from ..core.observability import configure_logging, init_metrics, init_tracing
from ..core.pipeline import Pipeline, build_pipeline
from .decision import DecisionConsumer
from .risk_assessment import RiskAssessmentConsumer
from .stage import DeadLetterRouter, StageConsumer, StageOutcome

logger = logging.getLogger(__name__)


class ConsumerGroupRunner:
    """
    Worker pool for one stage consumer.

    Members are named `{group}-{i}`; the broker spreads deliveries across
    them and redelivers whatever a crashed member left unacknowledged.
    """

    def __init__(
        self,
        broker: Broker,
        consumer: StageConsumer,
        concurrency: int = 3,
        block_ms: int = 1000,
        batch_size: int = 10
    ):
        self.broker = broker
        self.consumer = consumer
        self.concurrency = concurrency
        self.block_ms = block_ms
        self.batch_size = batch_size
        self._tasks: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def member(self, index: int) -> str:
        return f"{self.consumer.group}-{index}"

    async def start(self):
        if self.is_running:
            return
        self._tasks = [
            asyncio.create_task(self._work(self.member(i)), name=self.member(i))
            for i in range(self.concurrency)
        ]
        logger.info(
            f"Started {self.concurrency} workers for {self.consumer.name} "
            f"on {self.consumer.topic}"
        )

    async def stop(self):
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(f"Stopped workers for {self.consumer.name}")

    async def _work(self, member: str):
        async for delivery in self.broker.subscribe(
            self.consumer.topic,
            self.consumer.group,
            member,
            max_messages=self.batch_size,
            block_ms=self.block_ms
        ):
            await self.consumer.handle(delivery)

    async def drain(self, member: Optional[str] = None, max_rounds: int = 100) -> List[StageOutcome]:
        """
        Handle everything currently deliverable, without blocking.

        Used by tests and one-shot tooling in place of the worker tasks.
        """
        member = member or self.member(0)
        await self.broker.ensure_group(self.consumer.topic, self.consumer.group)
        outcomes: List[StageOutcome] = []
        for _ in range(max_rounds):
            deliveries = await self.broker.poll(
                self.consumer.topic, self.consumer.group, member, self.batch_size, block_ms=0
            )
            if not deliveries:
                break
            for delivery in deliveries:
                outcomes.append(await self.consumer.handle(delivery))
        return outcomes


def build_consumers(pipeline: Pipeline) -> List[StageConsumer]:
    """Both stage consumers wired to a pipeline's collaborators."""
    dead_letters = DeadLetterRouter(pipeline.broker)
    common = dict(
        db=pipeline.db,
        idempotency=pipeline.idempotency,
        registry=pipeline.registry,
        writer=pipeline.writer,
        dead_letters=dead_letters,
        applications=pipeline.applications,
        max_deliveries=pipeline.config.consumer_max_deliveries,
    )
    return [RiskAssessmentConsumer(**common), DecisionConsumer(**common)]


def build_runners(pipeline: Pipeline) -> List[ConsumerGroupRunner]:
    return [
        ConsumerGroupRunner(
            pipeline.broker,
            consumer,
            concurrency=pipeline.config.consumer_concurrency,
            block_ms=pipeline.config.broker_block_ms,
        )
        for consumer in build_consumers(pipeline)
    ]


class PipelineWorker:
    """
    Runs the stage consumers (and the outbox publisher) with graceful shutdown.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.pipeline: Optional[Pipeline] = None
        self.runners: List[ConsumerGroupRunner] = []
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        if self._shutdown_requested:
            logger.warning(f"Received {sig.name} again, forcing exit")
            sys.exit(1)

        logger.info(f"Received {sig.name}, initiating graceful shutdown")
        self._shutdown_requested = True
        self._shutdown_event.set()

    def request_shutdown(self):
        self._shutdown_requested = True
        self._shutdown_event.set()

    async def run(self):
        """Run until a shutdown signal arrives."""
        self._setup_signal_handlers()
        self.pipeline = await build_pipeline(self.config)
        self.runners = build_runners(self.pipeline)

        try:
            if self.config.outbox_processor_enabled:
                await self.pipeline.publisher.start()
            for runner in self.runners:
                await runner.start()
            logger.info("Pipeline worker is running")

            await self._shutdown_event.wait()
        finally:
            logger.info("Stopping pipeline worker")
            for runner in self.runners:
                await runner.stop()
            await self.pipeline.close()
            logger.info("Pipeline worker stopped")

    async def health_check(self) -> dict:
        publisher = self.pipeline.publisher if self.pipeline else None
        return {
            "status": "healthy" if self.runners and all(r.is_running for r in self.runners) else "unhealthy",
            "consumers": {r.consumer.name: r.is_running for r in self.runners},
            "outbox_publisher": publisher.is_running if publisher else False,
            "shutdown_requested": self._shutdown_requested,
        }


async def main():
    config = PipelineConfig()
    configure_logging(config.log_level, config.log_structured, f"{config.service_name}-worker")
    init_tracing(f"{config.service_name}-worker", otlp_endpoint=config.otlp_endpoint)
    init_metrics(f"{config.service_name}-worker", otlp_endpoint=config.otlp_endpoint)
    await PipelineWorker(config).run()


if __name__ == "__main__":
    asyncio.run(main())
