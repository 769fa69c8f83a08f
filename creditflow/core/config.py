"""
Pipeline Configuration

Settings for the outbox publisher, dedup service, broker and stage
consumers, read from environment variables.
"""

import os
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class PipelineConfig:
    """Pipeline configuration from environment variables."""

    def __init__(self):
        self.redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.broker_backend = os.getenv("BROKER_BACKEND", "redis").lower()
        self.dedup_backend = os.getenv("DEDUP_BACKEND", "redis").lower()

        # Outbox publisher
        self.outbox_poll_interval = float(os.getenv("OUTBOX_POLL_INTERVAL", "0.1"))
        self.outbox_batch_size = int(os.getenv("OUTBOX_BATCH_SIZE", "100"))
        self.outbox_retry_alert_threshold = int(os.getenv("OUTBOX_RETRY_ALERT_THRESHOLD", "10"))
        self.outbox_monitor_interval = float(os.getenv("OUTBOX_MONITOR_INTERVAL", "60"))
        self.outbox_stale_after = float(os.getenv("OUTBOX_STALE_AFTER", "300"))
        self.outbox_queue_warn_size = int(os.getenv("OUTBOX_QUEUE_WARN_SIZE", "1000"))
        self.outbox_processor_enabled = _env_bool("OUTBOX_PROCESSOR_ENABLED", "true")

        # Dedup windows (seconds). The retention window must exceed the
        # broker's maximum redelivery delay.
        self.dedup_ttl = int(os.getenv("DEDUP_TTL", str(7 * 24 * 3600)))
        self.dedup_processing_ttl = int(os.getenv("DEDUP_PROCESSING_TTL", "300"))

        # Stage consumers
        self.consumer_concurrency = int(os.getenv("CONSUMER_CONCURRENCY", "3"))
        self.consumer_max_deliveries = int(os.getenv("CONSUMER_MAX_DELIVERIES", "5"))
        self.broker_redelivery_timeout = float(os.getenv("BROKER_REDELIVERY_TIMEOUT", "30"))
        self.broker_block_ms = int(os.getenv("BROKER_BLOCK_MS", "1000"))

        # Read-through cache
        self.cache_application_ttl = int(os.getenv("CACHE_APPLICATION_TTL", "1800"))
        self.cache_assessment_ttl = int(os.getenv("CACHE_ASSESSMENT_TTL", "3600"))
        self.cache_backend = os.getenv("CACHE_BACKEND", "redis").lower()
        self.cache_max_entries = int(os.getenv("CACHE_MAX_ENTRIES", "10000"))

        # Observability
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.log_structured = _env_bool("LOG_STRUCTURED", "true")
        self.otlp_endpoint: Optional[str] = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None
        self.service_name = os.getenv("SERVICE_NAME", "creditflow")

    def __repr__(self) -> str:
        return (
            f"PipelineConfig(broker={self.broker_backend}, dedup={self.dedup_backend}, "
            f"batch_size={self.outbox_batch_size}, poll_interval={self.outbox_poll_interval}, "
            f"dedup_ttl={self.dedup_ttl}, concurrency={self.consumer_concurrency})"
        )
