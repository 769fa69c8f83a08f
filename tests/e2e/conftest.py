"""
E2E Test Fixtures

API client bound to the test pipeline. The outbox publisher and the stage
consumers are driven explicitly through `settle`.
"""

from typing import AsyncGenerator
from uuid import uuid4

import pytest
from httpx import AsyncClient, ASGITransport

from creditflow.api.main import create_app


@pytest.fixture
async def client(pipeline) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(pipeline)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def trace_id() -> str:
    """Generate a test trace ID."""
    return f"test-trace-{uuid4().hex[:12]}"
