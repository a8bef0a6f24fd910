"""Tests for the liveness and readiness endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from vestibule.infra.fastapi._health import router

if TYPE_CHECKING:
    from fastapi.testclient import TestClient


@pytest.fixture()
def health_app() -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    return app


@pytest.mark.unit
class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness(self, health_app: FastAPI) -> None:
        transport = ASGITransport(app=health_app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            resp = await ac.get("/health")
        assert resp.status_code == 200
        assert resp.text == "ok"

    @pytest.mark.asyncio
    async def test_degraded_before_startup(self, health_app: FastAPI) -> None:
        transport = ASGITransport(app=health_app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            resp = await ac.get("/healthz")
        assert resp.status_code == 503
        body = resp.json()
        assert body["status"] == "degraded"
        assert body["checks"]["oidc"]["status"] == "error"


@pytest.mark.integration
class TestHealthWithAuth:
    def test_ready_after_discovery(self, client: TestClient) -> None:
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "checks": {"oidc": {"status": "ok"}}}

    def test_health_needs_no_session(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
