"""
Outbox Publisher Runner

Standalone process that runs only the outbox publisher, for deployments
that keep publishing out of the API containers.

Usage:
    python -m creditflow.core.outbox.runner

Environment Variables:
    DATABASE_URL: PostgreSQL connection string (required)
    REDIS_URL: broker connection (default: redis://localhost:6379/0)
    OUTBOX_POLL_INTERVAL: Polling interval in seconds (default: 0.1)
    OUTBOX_BATCH_SIZE: Batch size per run (default: 100)
    OUTBOX_RETRY_ALERT_THRESHOLD: retry count that triggers an alert (default: 10)
    LOG_LEVEL: Logging level (default: INFO)
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from ..config import PipelineConfig
from ..observability import configure_logging, init_metrics, init_tracing
from ..pipeline import Pipeline, build_pipeline

logger = logging.getLogger(__name__)


class OutboxRunner:
    """
    Manages the outbox publisher lifecycle with graceful shutdown.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.pipeline: Optional[Pipeline] = None
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        """Handle shutdown signal."""
        if self._shutdown_requested:
            logger.warning(f"Received {sig.name} again, forcing exit")
            sys.exit(1)

        logger.info(f"Received {sig.name}, initiating graceful shutdown")
        self._shutdown_requested = True
        self._shutdown_event.set()

    async def run(self):
        """Run the outbox publisher until shutdown is requested."""
        logger.info("Starting Outbox Publisher Runner")
        logger.info(f"  Poll interval: {self.config.outbox_poll_interval}s")
        logger.info(f"  Batch size: {self.config.outbox_batch_size}")
        logger.info(f"  Retry alert threshold: {self.config.outbox_retry_alert_threshold}")

        self._setup_signal_handlers()

        self.pipeline = await build_pipeline(self.config)
        try:
            await self.pipeline.publisher.start()
            logger.info("Outbox Publisher is running")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Outbox Publisher error: {e}", exc_info=True)
            raise
        finally:
            logger.info("Stopping Outbox Publisher")
            await self.pipeline.close()
            logger.info("Outbox Publisher stopped")

    async def health_check(self) -> dict:
        """Return health status for monitoring."""
        publisher = self.pipeline.publisher if self.pipeline else None
        running = publisher.is_running if publisher else False
        last = publisher.last_report if publisher else None
        return {
            "status": "healthy" if running else "unhealthy",
            "running": running,
            "last_run": last.to_dict() if last else None,
            "shutdown_requested": self._shutdown_requested
        }


async def main():
    """Main entry point."""
    if not os.getenv("DATABASE_URL"):
        logger.error("DATABASE_URL environment variable is required")
        sys.exit(1)

    config = PipelineConfig()
    configure_logging(config.log_level, config.log_structured, f"{config.service_name}-outbox")
    init_tracing(f"{config.service_name}-outbox", otlp_endpoint=config.otlp_endpoint)
    init_metrics(f"{config.service_name}-outbox", otlp_endpoint=config.otlp_endpoint)

    runner = OutboxRunner(config)
    await runner.run()


if __name__ == "__main__":
    asyncio.run(main())
