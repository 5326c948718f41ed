import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from main import app
from routers import health


@pytest_asyncio.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client


async def _up() -> str:
    return "up"


async def _down() -> str:
    return "down: unreachable"


@pytest.mark.asyncio
async def test_liveness_and_root(client):
    assert (await client.get("/health/live")).json() == {"alive": True}
    assert (await client.get("/")).json()["status"] == "running"


@pytest.mark.asyncio
async def test_redis_outage_degrades_but_stays_ready(client, monkeypatch):
    monkeypatch.setattr(health, "_check_database", _up)
    monkeypatch.setattr(health, "_check_redis", _down)

    status = (await client.get("/health")).json()
    assert status["status"] == "degraded"
    assert status["database"] == "up"

    ready = await client.get("/health/ready")
    assert ready.status_code == 200
    assert ready.json() == {"ready": True}


@pytest.mark.asyncio
async def test_database_outage_fails_readiness(client, monkeypatch):
    monkeypatch.setattr(health, "_check_database", _down)

    ready = await client.get("/health/ready")
    assert ready.status_code == 503
    assert ready.json()["ready"] is False
