"""Tests for the service-level endpoints."""

import pytest

from contracts.schemas.enums import TestCategory, reset_fallback_events

pytestmark = pytest.mark.anyio


class TestServiceEndpoints:
    """Test cases for /health, /ready and /."""

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_ready(self, client):
        response = await client.get("/ready")
        data = response.json()
        assert data["status"] == "ready"
        assert data["services"] == {"store": True, "cache": True, "catalog_seeded": True}
        assert data["config"]["store_backend"] == "memory"

    async def test_ready_lists_enum_fallbacks(self, client):
        reset_fallback_events()
        try:
            assert TestCategory("astrology") is TestCategory.OTHER
            response = await client.get("/ready")
            assert response.json()["enum_fallbacks"] == {"TestCategory:astrology": 1}
        finally:
            reset_fallback_events()

    async def test_root(self, client):
        response = await client.get("/")
        assert response.json()["api"] == "/api/v1"

    async def test_unknown_route_uses_envelope(self, client):
        response = await client.get("/api/v1/nowhere")
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"
