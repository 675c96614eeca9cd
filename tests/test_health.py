"""
Notary - Health & Error Response Tests
"""

import re

import pytest
from httpx import AsyncClient


# =============================================================================
# Health Check Tests
# =============================================================================

@pytest.mark.anyio
async def test_healthz(client: AsyncClient):
    """Test basic health check endpoint."""
    response = await client.get("/healthz")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert re.match(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}", data["timestamp"])


@pytest.mark.anyio
async def test_root(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# =============================================================================
# Readiness Check Tests
# =============================================================================

@pytest.mark.anyio
async def test_readyz(client: AsyncClient):
    """Test readiness check reaches the database."""
    response = await client.get("/readyz")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] is True
    assert data["checks"]["background_tasks"] == 0
    assert "database_latency_ms" in data["details"]


@pytest.mark.anyio
async def test_readyz_degraded_without_database(client: AsyncClient, app, engine):
    class BrokenEngine:
        def connect(self):
            raise RuntimeError("database is gone")

    app.state.engine = BrokenEngine()
    try:
        response = await client.get("/readyz")
    finally:
        app.state.engine = engine

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["database"] is False
    assert "database is gone" in data["details"]["database_error"]


# =============================================================================
# Error Response Tests
# =============================================================================

@pytest.mark.anyio
async def test_404_error(client: AsyncClient):
    """Test 404 response for non-existent endpoint."""
    response = await client.get("/nonexistent-endpoint-xyz")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.anyio
async def test_method_not_allowed(client: AsyncClient):
    """Test 405 for wrong HTTP method."""
    response = await client.post("/healthz", json={})
    assert response.status_code == 405


@pytest.mark.anyio
async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/healthz", headers={"X-Request-Id": "abc123"})
    assert response.headers["X-Request-Id"] == "abc123"
