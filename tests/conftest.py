"""
Shared Test Fixtures

Every fixture runs against a throwaway SQLite file and the in-memory
broker, dedup store and cache, driven by one fake clock.
"""

from typing import Awaitable, Callable, List

import pytest

from creditflow.core.broker import InMemoryBroker
from creditflow.core.config import PipelineConfig
from creditflow.core.credit import InMemoryCache
from creditflow.core.credit.service import APPLICATION_CACHE, ASSESSMENT_CACHE
from creditflow.core.database import DatabaseAdapter, DatabaseConfig, ensure_schema
from creditflow.core.inbox import InMemoryDedupStore
from creditflow.core.pipeline import Pipeline, build_pipeline
from creditflow.workers import ConsumerGroupRunner, StageOutcome, build_runners


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(monkeypatch) -> PipelineConfig:
    monkeypatch.setenv("BROKER_BACKEND", "memory")
    monkeypatch.setenv("DEDUP_BACKEND", "memory")
    monkeypatch.setenv("CACHE_BACKEND", "memory")
    monkeypatch.setenv("OUTBOX_PROCESSOR_ENABLED", "false")
    monkeypatch.setenv("CONSUMER_MAX_DELIVERIES", "3")
    monkeypatch.setenv("OUTBOX_RETRY_ALERT_THRESHOLD", "3")
    return PipelineConfig()


@pytest.fixture
async def db(tmp_path):
    adapter = DatabaseAdapter(
        DatabaseConfig(backend="sqlite", sqlite_path=str(tmp_path / "creditflow.db"))
    )
    await adapter.connect()
    await ensure_schema(adapter)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def broker(clock) -> InMemoryBroker:
    return InMemoryBroker(redelivery_timeout=30, clock=clock)


@pytest.fixture
def dedup_store(clock) -> InMemoryDedupStore:
    return InMemoryDedupStore(clock=clock)


@pytest.fixture
def cache(config, clock) -> InMemoryCache:
    return InMemoryCache(
        {
            APPLICATION_CACHE: config.cache_application_ttl,
            ASSESSMENT_CACHE: config.cache_assessment_ttl,
        },
        clock=clock,
    )


@pytest.fixture
async def pipeline(config, db, broker, dedup_store, cache):
    built = await build_pipeline(config, db=db, broker=broker, dedup_store=dedup_store, cache=cache)
    yield built
    await built.close()


@pytest.fixture
def runners(pipeline) -> List[ConsumerGroupRunner]:
    """[risk assessment runner, decision runner]"""
    return build_runners(pipeline)


@pytest.fixture
def settle(pipeline, runners) -> Callable[..., Awaitable[List[StageOutcome]]]:
    """
    Alternate publisher runs and consumer drains until nothing moves.

    Returns every stage outcome observed along the way.
    """

    async def _settle(rounds: int = 10) -> List[StageOutcome]:
        outcomes: List[StageOutcome] = []
        for _ in range(rounds):
            report = await pipeline.publisher.run_once()
            drained: List[StageOutcome] = []
            for runner in runners:
                drained.extend(await runner.drain())
            outcomes.extend(drained)
            if report.attempted == 0 and not drained:
                break
        return outcomes

    return _settle


@pytest.fixture
def count_rows(db) -> Callable[[str], Awaitable[int]]:
    """Row count of a table."""

    async def _count(table: str) -> int:
        return int(await db.fetchval(f"SELECT COUNT(*) AS count FROM {table}"))

    return _count
