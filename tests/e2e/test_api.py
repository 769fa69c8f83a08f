"""
End-to-end tests for the HTTP API.
"""

import pytest
from httpx import AsyncClient


async def submit(client: AsyncClient, **overrides) -> str:
    body = {
        "customer_id": "CUST-123",
        "requested_amount": 20000,
        "credit_score": 780,
        "annual_income": 100000,
        **overrides,
    }
    response = await client.post("/api/applications", json=body)
    assert response.status_code == 202, response.text
    return response.json()["data"]["application_id"]


class TestApplicationEndpoints:
    """Submission and status reads."""

    @pytest.mark.asyncio
    async def test_submit_returns_before_processing(self, client, pipeline):
        response = await client.post(
            "/api/applications",
            json={"customer_id": "CUST-1", "requested_amount": 5000, "credit_score": 700},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["data"]["message"] == "Application submitted successfully"
        application_id = body["data"]["application_id"]
        assert body["meta"]["correlation_id"] == application_id

        status = await client.get(f"/api/applications/{application_id}")
        assert status.json()["data"]["status"] == "SUBMITTED"
        assert (await client.get(f"/api/applications/{application_id}/assessment")).status_code == 404

    @pytest.mark.asyncio
    async def test_status_follows_pipeline(self, client, settle):
        application_id = await submit(client)
        # Cached while SUBMITTED; stages evict it
        await client.get(f"/api/applications/{application_id}")

        await settle()

        application = (await client.get(f"/api/applications/{application_id}")).json()["data"]
        assert application["status"] == "DECISION_MADE"
        assert application["decision"] == "APPROVED"
        assert application["decision_reason"] == "Low risk profile"

        assessment = (await client.get(f"/api/applications/{application_id}/assessment")).json()["data"]
        assert assessment["risk_level"] == "LOW"
        assert assessment["application_id"] == application_id

    @pytest.mark.asyncio
    async def test_invalid_amount_rejected(self, client, count_rows):
        response = await client.post(
            "/api/applications", json={"customer_id": "CUST-1", "requested_amount": 0}
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert any("requested_amount" in d["field"] for d in error["details"])
        assert await count_rows("outbox_events") == 0

    @pytest.mark.asyncio
    async def test_missing_customer_rejected(self, client):
        response = await client.post("/api/applications", json={"requested_amount": 100})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_application(self, client):
        response = await client.get("/api/applications/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "APPLICATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_trace_id_echoed(self, client, trace_id):
        response = await client.get("/api/applications/nope", headers={"X-Trace-ID": trace_id})

        assert response.headers["X-Trace-ID"] == trace_id
        assert response.json()["error"]["trace_id"] == trace_id


class TestOutboxEndpoints:
    """Operator views of the outbox."""

    @pytest.mark.asyncio
    async def test_stats(self, client, settle):
        await submit(client)
        await settle()

        stats = (await client.get("/api/outbox/stats")).json()["data"]

        assert stats["published"] == 3
        assert stats["unpublished"] == 0
        assert stats["publisher_running"] is False
        assert "hit_rate" in stats["cache"]

    @pytest.mark.asyncio
    async def test_failing_and_acknowledge(self, client, broker):
        await submit(client)
        broker.set_available(False)
        publish = await client.post("/api/outbox/publish")
        assert publish.json()["data"]["failed"] == 1

        failing = (await client.get("/api/outbox/failing", params={"min_retries": 1})).json()
        assert failing["meta"]["total"] == 1
        record = failing["data"][0]
        assert record["retry_count"] == 1
        assert "unavailable" in record["last_error"]

        ack = await client.post(f"/api/outbox/{record['id']}/acknowledge", params={"operator_id": "ops"})
        assert ack.status_code == 200
        assert ack.json()["data"]["acknowledged_by"] == "ops"
        assert (await client.get("/api/outbox/failing", params={"min_retries": 1})).json()["data"] == []

        acknowledged = (await client.get(
            "/api/outbox/failing", params={"min_retries": 1, "include_acknowledged": "true"}
        )).json()["data"]
        assert acknowledged[0]["retry_count"] == 1
        assert acknowledged[0]["acknowledged_by"] == "ops"

        broker.set_available(True)
        assert (await client.post("/api/outbox/publish")).json()["data"]["published"] == 1

    @pytest.mark.asyncio
    async def test_acknowledge_unknown_record(self, client):
        response = await client.post("/api/outbox/999/acknowledge")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "OUTBOX_RECORD_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_stuck(self, client):
        await submit(client)

        report = (await client.get("/api/outbox/stuck")).json()["data"]

        assert report["unpublished"] == 1
        assert report["stale_count"] == 0

    @pytest.mark.asyncio
    async def test_claim_info(self, client, settle):
        application_id = await submit(client)
        await settle()

        response = await client.get(f"/api/outbox/claims/CreditApplicationSubmitted/{application_id}")

        assert response.status_code == 200
        assert response.json()["data"]["claimant"].startswith("risk-assessment-group/")
        missing = await client.get("/api/outbox/claims/CreditApplicationSubmitted/nope")
        assert missing.status_code == 404


class TestHealthEndpoints:
    """Liveness and readiness endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        assert (await client.get("/health")).json()["status"] == "healthy"
        assert (await client.get("/health/live")).json()["status"] == "alive"

    @pytest.mark.asyncio
    async def test_ready(self, client):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        checks = response.json()["checks"]
        assert checks["database"] == "healthy"
        assert checks["outbox_publisher"] == "disabled"
