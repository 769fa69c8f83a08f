"""
Tests for the Redis-backed broker, dedup store and cache against mocked clients.
"""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from creditflow.core.broker import RedisStreamBroker
from creditflow.core.broker.base import Delivery
from creditflow.core.credit import CreditApplication, RedisCache
from creditflow.core.credit.cache import MISSING
from creditflow.core.errors import TransientInfraError
from creditflow.core.inbox import RedisDedupStore

TOPIC = "credit.application.submitted"


@pytest.fixture
def redis_client() -> Mock:
    client = Mock()
    client.aclose = AsyncMock()
    return client


class TestRedisDedupStore:
    """Test claim primitives issued to Redis."""

    @pytest.fixture
    def scripts(self):
        return AsyncMock(return_value=1), AsyncMock(return_value=1)

    @pytest.fixture
    def store(self, redis_client, scripts) -> RedisDedupStore:
        redis_client.register_script = Mock(side_effect=list(scripts))
        return RedisDedupStore(redis_client)

    @pytest.mark.asyncio
    async def test_set_if_absent_uses_set_nx_ex(self, store, redis_client):
        redis_client.set = AsyncMock(return_value=True)

        assert await store.set_if_absent("idempotency:X:1", "w:1", 300) is True
        redis_client.set.assert_awaited_once_with("idempotency:X:1", "w:1", nx=True, ex=300)

    @pytest.mark.asyncio
    async def test_set_if_absent_existing_key(self, store, redis_client):
        redis_client.set = AsyncMock(return_value=None)
        assert await store.set_if_absent("k", "w:1", 300) is False

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, store, redis_client):
        redis_client.set = AsyncMock(side_effect=RedisConnectionError("refused"))
        redis_client.exists = AsyncMock(side_effect=RedisConnectionError("refused"))

        with pytest.raises(TransientInfraError):
            await store.set_if_absent("k", "w:1", 300)
        with pytest.raises(TransientInfraError):
            await store.exists("k")

    @pytest.mark.asyncio
    async def test_owner_checked_scripts(self, store, scripts):
        delete_script, expire_script = scripts

        assert await store.delete_if_owned("k", "worker-a") is True
        delete_script.assert_awaited_once_with(keys=["k"], args=["worker-a:"])

        assert await store.expire_if_owned("k", "worker-a", 604800) is True
        expire_script.assert_awaited_once_with(keys=["k"], args=["worker-a:", 604800])

    @pytest.mark.asyncio
    async def test_script_reports_not_owned(self, store, scripts):
        scripts[0].return_value = 0
        assert await store.delete_if_owned("k", "worker-b") is False

    @pytest.mark.asyncio
    async def test_close(self, store, redis_client):
        await store.close()
        redis_client.aclose.assert_awaited_once()


class TestRedisCache:
    """Test cache commands issued to Redis."""

    @pytest.fixture
    def cache(self, redis_client) -> RedisCache:
        return RedisCache(
            redis_client,
            {"application": 1800, "assessment": 3600},
            {"application": CreditApplication},
        )

    @pytest.fixture
    def application(self) -> CreditApplication:
        return CreditApplication(
            application_id="app-1", customer_id="CUST-1", requested_amount=Decimal("20000")
        )

    @pytest.mark.asyncio
    async def test_set_uses_namespaced_key_and_ttl(self, cache, redis_client, application):
        redis_client.set = AsyncMock(return_value=True)

        await cache.set("application", "app-1", application)

        redis_client.set.assert_awaited_once_with(
            "creditflow:cache:application:app-1", application.model_dump_json(), ex=1800
        )

    @pytest.mark.asyncio
    async def test_get_decodes_model(self, cache, redis_client, application):
        redis_client.get = AsyncMock(return_value=application.model_dump_json())

        cached = await cache.get("application", "app-1")

        assert cached == application
        assert cached.requested_amount == Decimal("20000")
        assert cache.stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_get_miss(self, cache, redis_client):
        redis_client.get = AsyncMock(return_value=None)
        assert await cache.get("application", "app-1") is MISSING

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_a_miss(self, cache, redis_client):
        redis_client.get = AsyncMock(return_value='{"application_id": 1}')
        assert await cache.get("application", "app-1") is MISSING

    @pytest.mark.asyncio
    async def test_outage_reads_through_to_loader(self, cache, redis_client, application):
        redis_client.get = AsyncMock(side_effect=RedisConnectionError("down"))
        redis_client.set = AsyncMock(side_effect=RedisConnectionError("down"))
        loader = AsyncMock(return_value=application)

        assert await cache.get_or_load("application", "app-1", loader) == application
        loader.assert_awaited_once_with("app-1")

    @pytest.mark.asyncio
    async def test_evict_deletes_every_namespace(self, cache, redis_client):
        redis_client.delete = AsyncMock(return_value=2)

        assert await cache.evict_id("app-1") == 2
        redis_client.delete.assert_awaited_once_with(
            "creditflow:cache:application:app-1", "creditflow:cache:assessment:app-1"
        )
        assert cache.stats()["invalidations"] == 2

    @pytest.mark.asyncio
    async def test_evict_outage_is_transient(self, cache, redis_client):
        redis_client.delete = AsyncMock(side_effect=RedisConnectionError("down"))
        with pytest.raises(TransientInfraError):
            await cache.evict_id("app-1")


class TestRedisStreamBroker:
    """Test stream commands issued by the broker."""

    @pytest.fixture
    def broker(self, redis_client) -> RedisStreamBroker:
        return RedisStreamBroker(redis_client, redelivery_timeout=30)

    @pytest.mark.asyncio
    async def test_publish_xadd(self, broker, redis_client):
        redis_client.xadd = AsyncMock(return_value="1700000000000-0")

        message_id = await broker.publish(TOPIC, "app-1", '{"a": 1}', {"event_type": "X"})

        assert message_id == "1700000000000-0"
        args, kwargs = redis_client.xadd.call_args
        assert args[0] == TOPIC
        assert args[1]["key"] == "app-1"
        assert args[1]["payload"] == '{"a": 1}'
        assert json.loads(args[1]["headers"]) == {"event_type": "X"}

    @pytest.mark.asyncio
    async def test_publish_outage(self, broker, redis_client):
        redis_client.xadd = AsyncMock(side_effect=RedisConnectionError("down"))
        with pytest.raises(TransientInfraError):
            await broker.publish(TOPIC, "app-1", "{}")

    @pytest.mark.asyncio
    async def test_ensure_group_from_start(self, broker, redis_client):
        redis_client.xgroup_create = AsyncMock(return_value=True)

        await broker.ensure_group(TOPIC, "risk")
        await broker.ensure_group(TOPIC, "risk")

        redis_client.xgroup_create.assert_awaited_once_with(TOPIC, "risk", id="0", mkstream=True)

    @pytest.mark.asyncio
    async def test_ensure_group_existing(self, broker, redis_client):
        redis_client.xgroup_create = AsyncMock(
            side_effect=ResponseError("BUSYGROUP Consumer Group name already exists")
        )
        await broker.ensure_group(TOPIC, "risk")

    @pytest.mark.asyncio
    async def test_ensure_group_other_error(self, broker, redis_client):
        redis_client.xgroup_create = AsyncMock(side_effect=ResponseError("WRONGTYPE"))
        with pytest.raises(ResponseError):
            await broker.ensure_group(TOPIC, "risk")

    @pytest.mark.asyncio
    async def test_poll_reclaims_then_reads(self, broker, redis_client):
        fields = {"key": "app-1", "payload": "{}", "headers": json.dumps({"event_id": "app-1"})}
        redis_client.xgroup_create = AsyncMock(return_value=True)
        redis_client.xautoclaim = AsyncMock(return_value=["0-0", [["1-0", fields]], []])
        redis_client.xpending_range = AsyncMock(return_value=[{"times_delivered": 3}])
        redis_client.xreadgroup = AsyncMock(return_value=[[TOPIC, [["2-0", fields]]]])

        deliveries = await broker.poll(TOPIC, "risk", "risk-0", max_messages=5)

        assert [(d.message_id, d.delivery_count) for d in deliveries] == [("1-0", 3), ("2-0", 1)]
        assert deliveries[0].headers == {"event_id": "app-1"}
        assert deliveries[0].key == "app-1"
        _, kwargs = redis_client.xautoclaim.call_args
        assert kwargs["min_idle_time"] == 30000
        _, kwargs = redis_client.xreadgroup.call_args
        assert kwargs["count"] == 4
        assert kwargs["streams"] == {TOPIC: ">"}

    @pytest.mark.asyncio
    async def test_poll_skips_trimmed_entries(self, broker, redis_client):
        redis_client.xgroup_create = AsyncMock(return_value=True)
        redis_client.xautoclaim = AsyncMock(return_value=["0-0", [["1-0", None]], []])
        redis_client.xreadgroup = AsyncMock(return_value=[])

        assert await broker.poll(TOPIC, "risk", "risk-0") == []

    @pytest.mark.asyncio
    async def test_poll_outage(self, broker, redis_client):
        redis_client.xgroup_create = AsyncMock(return_value=True)
        redis_client.xautoclaim = AsyncMock(side_effect=RedisConnectionError("down"))
        with pytest.raises(TransientInfraError):
            await broker.poll(TOPIC, "risk", "risk-0")

    @pytest.mark.asyncio
    async def test_ack_and_nack(self, broker, redis_client):
        redis_client.xack = AsyncMock(return_value=1)
        redis_client.xclaim = AsyncMock(return_value=["1-0"])
        delivery = Delivery(
            message_id="1-0", topic=TOPIC, group="risk", consumer="risk-0",
            key="app-1", payload="{}", broker=broker,
        )

        await delivery.ack()
        redis_client.xack.assert_awaited_once_with(TOPIC, "risk", "1-0")

        await delivery.nack()
        _, kwargs = redis_client.xclaim.call_args
        assert kwargs["message_ids"] == ["1-0"]
        assert kwargs["idle"] == 30000
        assert kwargs["justid"] is True

    @pytest.mark.asyncio
    async def test_ack_outage(self, broker, redis_client):
        redis_client.xack = AsyncMock(side_effect=RedisConnectionError("down"))
        delivery = Delivery(
            message_id="1-0", topic=TOPIC, group="risk", consumer="risk-0",
            key=None, payload="{}", broker=broker,
        )
        with pytest.raises(TransientInfraError):
            await delivery.ack()
