"""
Tests for the background outbox publisher.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Optional, Set

import pytest

from creditflow.core.broker import InMemoryBroker
from creditflow.core.credit.models import RiskLevel
from creditflow.core.errors import TransientInfraError
from creditflow.core.events import CreditApplicationSubmitted, RiskAssessmentCompleted, Topics
from creditflow.core.outbox import OutboxDLQManager, OutboxPublisher, OutboxRecord, OutboxRepository, OutboxWriter


class KeyFailingBroker(InMemoryBroker):
    """Rejects publishes for selected partition keys."""

    def __init__(self, fail_keys: Set[str], **kwargs):
        super().__init__(**kwargs)
        self.fail_keys = set(fail_keys)

    async def publish(
        self,
        topic: str,
        key: Optional[str],
        payload: str,
        headers: Optional[Dict[str, str]] = None
    ) -> str:
        if key in self.fail_keys:
            raise TransientInfraError(f"partition for {key} unavailable", backend="memory")
        return await super().publish(topic, key, payload, headers)


def submitted(application_id: str) -> CreditApplicationSubmitted:
    return CreditApplicationSubmitted.create(
        application_id=application_id,
        customer_id="CUST-1",
        requested_amount=Decimal("20000"),
        credit_score=780,
        annual_income=Decimal("100000"),
    )


async def write_events(db, *events):
    writer = OutboxWriter()
    records = []
    async with db.transaction() as conn:
        for event in events:
            records.append(await writer.write(conn, event))
    return records


async def fetch_record(db, record_id) -> OutboxRecord:
    async with db.transaction() as conn:
        return await OutboxRepository().get(conn, record_id)


class TestRunOnce:
    """Test a single publisher pass."""

    @pytest.mark.asyncio
    async def test_publishes_and_marks(self, db, broker):
        records = await write_events(db, submitted("app-1"), submitted("app-2"))
        publisher = OutboxPublisher(db, broker)

        report = await publisher.run_once()

        assert report.attempted == 2
        assert report.published == 2
        assert report.failed == 0
        messages = broker.messages(Topics.CREDIT_APPLICATION_SUBMITTED)
        assert [m.key for m in messages] == ["app-1", "app-2"]
        assert messages[0].headers["event_type"] == "CreditApplicationSubmitted"
        assert messages[0].headers["event_id"] == "app-1"
        assert messages[0].headers["outbox_id"] == str(records[0].id)
        for record in records:
            assert (await fetch_record(db, record.id)).published is True
        assert publisher.last_report is report

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, db, broker):
        report = await OutboxPublisher(db, broker).run_once()
        assert report.attempted == 0
        assert broker.messages(Topics.CREDIT_APPLICATION_SUBMITTED) == []

    @pytest.mark.asyncio
    async def test_published_records_not_resent(self, db, broker):
        await write_events(db, submitted("app-1"))
        publisher = OutboxPublisher(db, broker)

        await publisher.run_once()
        second = await publisher.run_once()

        assert second.attempted == 0
        assert len(broker.messages(Topics.CREDIT_APPLICATION_SUBMITTED)) == 1

    @pytest.mark.asyncio
    async def test_batch_size_limits_a_run(self, db, broker):
        await write_events(db, *[submitted(f"app-{i}") for i in range(5)])
        publisher = OutboxPublisher(db, broker, batch_size=2)

        assert (await publisher.run_once()).published == 2
        assert (await publisher.run_once()).published == 2
        assert (await publisher.run_once()).published == 1


class TestPublishFailures:
    """Test failure bookkeeping and retry."""

    @pytest.mark.asyncio
    async def test_broker_outage_records_failure(self, db, broker):
        [record] = await write_events(db, submitted("app-1"))
        publisher = OutboxPublisher(db, broker)
        broker.set_available(False)

        report = await publisher.run_once()

        assert report.failed == 1
        stored = await fetch_record(db, record.id)
        assert stored.published is False
        assert stored.retry_count == 1
        assert "TransientInfraError" in stored.last_error

    @pytest.mark.asyncio
    async def test_retried_after_recovery(self, db, broker):
        [record] = await write_events(db, submitted("app-1"))
        publisher = OutboxPublisher(db, broker)

        broker.set_available(False)
        await publisher.run_once()
        await publisher.run_once()
        broker.set_available(True)
        report = await publisher.run_once()

        assert report.published == 1
        stored = await fetch_record(db, record.id)
        assert stored.published is True
        assert stored.retry_count == 2
        # Failure telemetry survives publication
        assert "TransientInfraError" in stored.last_error
        assert len(broker.messages(Topics.CREDIT_APPLICATION_SUBMITTED)) == 1

    @pytest.mark.asyncio
    async def test_failed_key_defers_its_later_records(self, db, clock):
        broker = KeyFailingBroker({"app-1"}, clock=clock)
        first, follow_up, other = await write_events(
            db,
            submitted("app-1"),
            RiskAssessmentCompleted.create(
                assessment_id="asm-1", application_id="app-1", risk_level=RiskLevel.LOW
            ),
            submitted("app-2"),
        )
        publisher = OutboxPublisher(db, broker)

        report = await publisher.run_once()

        assert report.attempted == 2
        assert report.failed == 1
        assert report.deferred == 1
        assert report.published == 1
        assert (await fetch_record(db, first.id)).retry_count == 1
        # Deferred, not failed
        assert (await fetch_record(db, follow_up.id)).retry_count == 0
        assert (await fetch_record(db, other.id)).published is True
        assert broker.messages(Topics.RISK_ASSESSMENT_COMPLETED) == []

        broker.fail_keys.clear()
        await publisher.run_once()
        assert [m.key for m in broker.messages(Topics.RISK_ASSESSMENT_COMPLETED)] == ["app-1"]

    @pytest.mark.asyncio
    async def test_invalid_payload_is_a_failure_not_a_send(self, db, broker):
        record = OutboxRecord(
            event_id="app-9",
            event_type="CreditApplicationSubmitted",
            payload='{"event_id": "app-9"}',
            destination=Topics.CREDIT_APPLICATION_SUBMITTED,
            partition_key="app-9",
        )
        async with db.transaction() as conn:
            record = await OutboxRepository().insert(conn, record)

        report = await OutboxPublisher(db, broker).run_once()

        assert report.failed == 1
        assert broker.messages(Topics.CREDIT_APPLICATION_SUBMITTED) == []
        assert "ValidationError" in (await fetch_record(db, record.id)).last_error

    @pytest.mark.asyncio
    async def test_alert_at_retry_threshold(self, db, broker, caplog):
        await write_events(db, submitted("app-1"))
        publisher = OutboxPublisher(db, broker, retry_alert_threshold=2)
        broker.set_available(False)

        with caplog.at_level(logging.WARNING, logger="creditflow.core.outbox.processor"):
            await publisher.run_once()
            assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
            await publisher.run_once()

        alerts = [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert len(alerts) == 1
        assert "manual intervention" in alerts[0].getMessage()

    @pytest.mark.asyncio
    async def test_never_gives_up(self, db, broker):
        [record] = await write_events(db, submitted("app-1"))
        publisher = OutboxPublisher(db, broker, retry_alert_threshold=2)
        broker.set_available(False)

        for _ in range(5):
            await publisher.run_once()

        stored = await fetch_record(db, record.id)
        assert stored.retry_count == 5
        assert stored.published is False

        failing = await OutboxDLQManager(db, retry_threshold=2).get_failing()
        assert [entry.id for entry in failing] == [record.id]


class TestFailureReport:
    """Test the operator's view of failing records."""

    @pytest.mark.asyncio
    async def test_acknowledge_never_lowers_retry_count(self, db, broker):
        [record] = await write_events(db, submitted("app-1"))
        publisher = OutboxPublisher(db, broker)
        dlq = OutboxDLQManager(db, retry_threshold=2)
        broker.set_available(False)
        await publisher.run_once()
        await publisher.run_once()

        assert await dlq.acknowledge(record.id, operator_id="ops") is True

        stored = await fetch_record(db, record.id)
        assert stored.retry_count == 2
        assert stored.acknowledged_by == "ops"
        assert await dlq.get_failing() == []
        [entry] = await dlq.get_failing(include_acknowledged=True)
        assert entry.retry_count == 2
        assert entry.to_dict()["acknowledged_by"] == "ops"

    @pytest.mark.asyncio
    async def test_acknowledged_record_retried_without_alert(self, db, broker, caplog):
        [record] = await write_events(db, submitted("app-1"))
        publisher = OutboxPublisher(db, broker, retry_alert_threshold=1)
        broker.set_available(False)
        await publisher.run_once()
        await OutboxDLQManager(db).acknowledge(record.id, operator_id="ops")
        caplog.clear()

        with caplog.at_level(logging.WARNING, logger="creditflow.core.outbox.processor"):
            report = await publisher.run_once()

        assert report.failed == 1
        assert (await fetch_record(db, record.id)).retry_count == 2
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

        broker.set_available(True)
        assert (await publisher.run_once()).published == 1

    @pytest.mark.asyncio
    async def test_acknowledge_unknown_record(self, db):
        assert await OutboxDLQManager(db).acknowledge(999) is False

    @pytest.mark.asyncio
    async def test_stats_count_every_failing_record(self, db):
        repository = OutboxRepository()
        async with db.transaction() as conn:
            for i in range(1005):
                await repository.insert(
                    conn,
                    OutboxRecord(
                        event_id=f"app-{i}",
                        event_type="CreditApplicationSubmitted",
                        payload="{}",
                        destination=Topics.CREDIT_APPLICATION_SUBMITTED,
                        partition_key=f"app-{i}",
                    ),
                )
            await conn.execute("UPDATE outbox_events SET retry_count = $1", 3)
            await repository.acknowledge(conn, 1, "ops")

        stats = await OutboxDLQManager(db, retry_threshold=3).get_stats()

        assert stats["over_threshold"] == 1005
        assert stats["over_threshold_unacknowledged"] == 1004

class TestStuckMonitor:
    """Test stale-record reporting."""

    @pytest.mark.asyncio
    async def test_reports_without_changing_records(self, db, broker, caplog):
        [record] = await write_events(db, submitted("app-1"))
        publisher = OutboxPublisher(db, broker, stale_after=0, queue_warn_size=0)

        with caplog.at_level(logging.ERROR, logger="creditflow.core.outbox.processor"):
            report = await publisher.check_stuck()

        assert report.unpublished == 1
        assert [r.id for r in report.stale] == [record.id]
        assert report.backlog_warning is True
        assert any("Stuck outbox event" in r.getMessage() for r in caplog.records)

        stored = await fetch_record(db, record.id)
        assert stored.published is False
        assert stored.retry_count == 0
        assert broker.messages(Topics.CREDIT_APPLICATION_SUBMITTED) == []

    @pytest.mark.asyncio
    async def test_fresh_records_are_not_stale(self, db, broker):
        await write_events(db, submitted("app-1"))
        report = await OutboxPublisher(db, broker, stale_after=300).check_stuck()
        assert report.stale == []
        assert report.backlog_warning is False
        assert report.to_dict()["stale_count"] == 0


class TestLifecycle:
    """Test start/stop of the background loops."""

    @pytest.mark.asyncio
    async def test_start_publishes_in_background(self, db, broker):
        await write_events(db, submitted("app-1"))
        publisher = OutboxPublisher(db, broker, poll_interval=0.01)

        await publisher.start()
        assert publisher.is_running
        for _ in range(200):
            if broker.messages(Topics.CREDIT_APPLICATION_SUBMITTED):
                break
            await asyncio.sleep(0.01)
        await publisher.stop()

        assert not publisher.is_running
        assert len(broker.messages(Topics.CREDIT_APPLICATION_SUBMITTED)) == 1

    @pytest.mark.asyncio
    async def test_restartable(self, db, broker):
        publisher = OutboxPublisher(db, broker, poll_interval=0.01)

        await publisher.start()
        await publisher.start()
        await publisher.stop()
        await publisher.stop()
        await publisher.start()
        assert publisher.is_running
        await publisher.stop()
        assert not publisher.is_running
