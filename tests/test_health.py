"""Tests for GET /api/health."""
import pytest
from httpx import AsyncClient

from barkly.services.llm_client import llm_client


@pytest.mark.asyncio
async def test_health_returns_200(client: AsyncClient):
    resp = await client.get("/api/health/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["database"] == "ok"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_health_degraded_without_llm(client: AsyncClient):
    """The LLM being down degrades the service but does not make it unhealthy."""
    resp = await client.get("/api/health/")
    data = resp.json()
    assert data["llm"] == "error"
    assert data["status"] == "degraded"


@pytest.mark.asyncio
async def test_health_healthy_with_llm(client: AsyncClient, monkeypatch):
    async def _available():
        return True

    monkeypatch.setattr(llm_client, "is_available", _available)
    resp = await client.get("/api/health/")
    data = resp.json()
    assert data["llm"] == "ok"
    assert data["status"] == "healthy"


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    resp = await client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Barkly Research API"
    assert data["endpoints"]["documents"] == "/api/documents"


@pytest.mark.asyncio
async def test_process_time_header(client: AsyncClient):
    resp = await client.get("/")
    assert resp.headers["X-Process-Time"].endswith("ms")
