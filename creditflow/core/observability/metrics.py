"""
OpenTelemetry Metrics

The pipeline's counters and histograms. Instruments live on the global
meter provider, which records nothing until `init_metrics()` installs
one; recording before that is a harmless no-op.
"""

import logging
from typing import Any, Dict, Optional, Union

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource, SERVICE_NAME

logger = logging.getLogger(__name__)

METER_NAME = "creditflow"

COUNTERS = {
    "outbox_published_total": "Outbox records published to the broker",
    "outbox_publish_failures_total": "Failed outbox publish attempts",
    "outbox_stuck_events_total": "Unpublished outbox records older than the staleness threshold",
    "events_processed_total": "Events committed by a stage consumer",
    "events_skipped_total": "Duplicate deliveries skipped by a stage consumer",
    "dedup_fail_open_total": "Dedup decisions taken while the dedup store was unavailable",
    "dlq_entries_total": "Messages routed to a dead-letter topic",
}

HISTOGRAMS = {
    "outbox_processing_duration_seconds": "Outbox publisher run duration",
    "stage_processing_duration_seconds": "Stage consumer handling duration",
}

Instrument = Union[metrics.Counter, metrics.Histogram]

# Rebuilt whenever a provider is installed; instruments bind to the
# provider that was current when they were created
_instruments: Dict[str, Instrument] = {}


def init_metrics(
    service_name: str,
    otlp_endpoint: Optional[str] = None,
    export_interval_ms: int = 60000
) -> None:
    readers = []
    if otlp_endpoint:
        readers.append(PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True),
            export_interval_millis=export_interval_ms,
        ))
    metrics.set_meter_provider(MeterProvider(
        resource=Resource.create({SERVICE_NAME: service_name}),
        metric_readers=readers,
    ))
    _instruments.clear()
    logger.info(f"Metrics initialized for {service_name} (export: {otlp_endpoint or 'off'})")


def _instrument(name: str) -> Optional[Instrument]:
    if name not in _instruments:
        meter = metrics.get_meter(METER_NAME)
        if name in COUNTERS:
            _instruments[name] = meter.create_counter(name, description=COUNTERS[name], unit="1")
        elif name in HISTOGRAMS:
            _instruments[name] = meter.create_histogram(name, description=HISTOGRAMS[name], unit="s")
        else:
            logger.debug(f"Unknown metric {name} ignored")
            return None
    return _instruments[name]


def record_counter(name: str, value: int = 1, attributes: Optional[Dict[str, Any]] = None) -> None:
    counter = _instrument(name)
    if counter is not None:
        counter.add(value, attributes or {})


def record_histogram(name: str, value: float, attributes: Optional[Dict[str, Any]] = None) -> None:
    histogram = _instrument(name)
    if histogram is not None:
        histogram.record(value, attributes or {})
