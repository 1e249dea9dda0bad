"""Tests for health endpoint."""

import pytest

from app.main import app


@pytest.mark.asyncio
async def test_health_check(client):
    """Test health endpoint returns OK."""
    response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["success"] is True
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_health_reports_cache_state(client):
    """Without a connected cache the service runs API-only."""
    response = await client.get("/api/health")
    assert response.json()["cache"] == "unavailable"


@pytest.mark.asyncio
async def test_health_with_connected_cache(client, cache_store):
    app.state.cache_store = cache_store
    try:
        response = await client.get("/api/health")
    finally:
        app.state.cache_store = None

    assert response.json()["cache"] == "connected"
