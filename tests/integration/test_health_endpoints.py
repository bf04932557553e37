"""Integration tests for health endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.requests import Request

from src.api.middleware.logging import client_origin
from src.config import settings
from src.main import app

pytestmark = pytest.mark.integration


class TestHealthEndpoints:
    @pytest.mark.asyncio
    async def test_health_endpoint(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")
            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "healthy"
            assert "version" in data
            assert "uptime_seconds" in data

    @pytest.mark.asyncio
    async def test_ready_with_memory_backend(self, monkeypatch):
        monkeypatch.setattr(settings, "ledger_backend", "memory")
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/ready")
            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "ready"
            assert data["ledger_backend"] == "memory"
            assert data["kafka"] is False

    @pytest.mark.asyncio
    async def test_ready_degraded_when_database_down(self, monkeypatch):
        monkeypatch.setattr(settings, "ledger_backend", "sql")
        with patch("src.db.database.check_db", AsyncMock(return_value=False)):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get("/ready")
        assert response.status_code == 503
        assert response.json()["database"] is False


class TestRequestLogging:
    @pytest.mark.asyncio
    async def test_caller_request_id_is_echoed(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_client_origin_prefers_forwarded_hop(self):
        request = Request(
            {
                "type": "http",
                "headers": [(b"x-forwarded-for", b"198.51.100.7, 10.0.0.1")],
                "client": ("10.0.0.1", 5000),
            }
        )
        assert client_origin(request) == "198.51.100.7"

    def test_client_origin_falls_back_to_peer(self):
        request = Request({"type": "http", "headers": [], "client": ("203.0.113.10", 5000)})
        assert client_origin(request) == "203.0.113.10"
