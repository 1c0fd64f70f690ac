"""Probe endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock

from httpx import AsyncClient

from studytogether.presence.coordinator import get_coordinator


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_ready(client: AsyncClient) -> None:
    response = await client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {
        "status": "ready",
        "checks": {"database": "ok", "redis": "ok"},
        "connections": 0,
    }


async def test_ready_counts_live_connections(client: AsyncClient) -> None:
    await get_coordinator().connect(AsyncMock(), 1)
    await get_coordinator().connect(AsyncMock(), 2)
    assert (await client.get("/ready")).json()["connections"] == 2


async def test_version(client: AsyncClient) -> None:
    data = (await client.get("/version")).json()
    assert data == {"version": "0.1.0", "environment": "development"}
