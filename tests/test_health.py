"""Health endpoint tests."""

import pytest
from httpx import AsyncClient

from naffles.points.service import award_points


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """GET /health returns 200 with healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_readiness(client: AsyncClient) -> None:
    """GET /ready checks the database and Redis and reports the outbox."""
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"] == {"database": "ok", "redis": "ok"}
    assert data["outbox"] == {"pending": 0, "failed": 0}


@pytest.mark.asyncio
async def test_readiness_degraded_without_redis(client: AsyncClient, redis_client) -> None:
    """A failing Redis ping degrades readiness instead of erroring."""
    redis_client.ping.side_effect = ConnectionError("refused")
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["redis"] == "error: refused"


@pytest.mark.asyncio
async def test_version(client: AsyncClient) -> None:
    """GET /version returns version, environment and side-effect mode."""
    response = await client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": "0.1.0", "environment": "development", "side_effects": "inline"}


@pytest.mark.asyncio
async def test_readiness_reports_outbox_backlog(client: AsyncClient, session_factory, make_user) -> None:
    """Awards left for the worker show up as pending outbox events."""
    user = await make_user()
    async with session_factory() as db:
        for _ in range(2):
            await award_points(db, None, user.id, "daily_login", process_inline=False)

    response = await client.get("/ready")
    assert response.json()["outbox"] == {"pending": 2, "failed": 0}
