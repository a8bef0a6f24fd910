"""Unit tests for vestibule.infra.fastapi.app_factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from fastapi import APIRouter, FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from vestibule.app import create_application
from vestibule.foundation.application.contributions import (
    ErrorHandlerContribution,
    LifespanContribution,
    MiddlewareContribution,
)
from vestibule.infra.fastapi import (
    GROUP_ERROR_HANDLERS,
    GROUP_LIFESPAN,
    GROUP_MIDDLEWARE,
    GROUP_ROUTERS,
    AppSettings,
    create_app,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.types import ASGIApp, Receive, Scope, Send

# Exclude all discovery groups so tests are isolated from installed entry points
_ALL_GROUPS = frozenset({GROUP_ROUTERS, GROUP_MIDDLEWARE, GROUP_ERROR_HANDLERS, GROUP_LIFESPAN})


class TestCreateAppBasic:
    @pytest.mark.unit
    def test_applies_settings(self) -> None:
        app = create_app(
            settings=AppSettings(title="Gate", version="1.2.3"),
            exclude_groups=_ALL_GROUPS,
        )
        assert isinstance(app, FastAPI)
        assert app.title == "Gate"
        assert app.version == "1.2.3"

    @pytest.mark.unit
    def test_default_title(self) -> None:
        app = create_app(exclude_groups=_ALL_GROUPS)
        assert app.title == "Vestibule"


class TestCreateAppContributions:
    @pytest.mark.unit
    def test_extra_router_is_mounted(self) -> None:
        router = APIRouter(prefix="/test")

        @router.get("/ping")
        def ping() -> dict[str, str]:
            return {"status": "ok"}

        app = create_app(extra_routers=[router], exclude_groups=_ALL_GROUPS)
        response = TestClient(app).get("/test/ping")
        assert response.json() == {"status": "ok"}

    @pytest.mark.unit
    def test_middleware_ordered_by_priority(self) -> None:
        seen: list[str] = []

        def recorder(label: str) -> type:
            class Recorder:
                def __init__(self, app: ASGIApp) -> None:
                    self.app = app

                async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
                    if scope["type"] == "http":
                        seen.append(label)
                    await self.app(scope, receive, send)

            return Recorder

        router = APIRouter()

        @router.get("/ping")
        def ping() -> dict[str, str]:
            return {}

        app = create_app(
            extra_routers=[router],
            extra_middleware=[
                MiddlewareContribution(middleware_class=recorder("session"), priority=150),
                MiddlewareContribution(middleware_class=recorder("request_id"), priority=10),
            ],
            exclude_groups=_ALL_GROUPS,
        )
        TestClient(app).get("/ping")
        assert seen == ["request_id", "session"]

    @pytest.mark.unit
    def test_middleware_priority_bounds(self) -> None:
        with pytest.raises(ValueError, match="between 0 and 499"):
            MiddlewareContribution(middleware_class=object, priority=500)

    @pytest.mark.unit
    def test_extra_error_handler_is_registered(self) -> None:
        class CustomError(Exception):
            pass

        async def custom_handler(request: object, exc: Exception) -> JSONResponse:
            return JSONResponse(status_code=418, content={"error": "teapot"})

        app = create_app(
            extra_error_handlers=[
                ErrorHandlerContribution(exception_class=CustomError, handler=custom_handler)
            ],
            exclude_groups=_ALL_GROUPS,
        )

        @app.get("/fail")
        def fail() -> None:
            raise CustomError("boom")

        response = TestClient(app, raise_server_exceptions=False).get("/fail")
        assert response.status_code == 418

    @pytest.mark.unit
    def test_lifespan_hooks_in_order(self) -> None:
        order: list[str] = []

        @asynccontextmanager
        async def hook_first(app: FastAPI) -> AsyncIterator[None]:
            order.append("first")
            yield

        @asynccontextmanager
        async def hook_second(app: FastAPI) -> AsyncIterator[None]:
            order.append("second")
            yield

        app = create_app(
            extra_lifespan_hooks=[
                LifespanContribution(hook=hook_second, priority=200),
                LifespanContribution(hook=hook_first, priority=100),
            ],
            exclude_groups=_ALL_GROUPS,
        )
        with TestClient(app):
            assert order == ["first", "second"]


class TestCreateApplication:
    @pytest.mark.integration
    def test_discovers_installed_contributions(self) -> None:
        app = create_application(AppSettings())
        paths = {getattr(route, "path", None) for route in app.routes}
        assert {"/health", "/healthz", "/auth/login", "/auth/callback", "/auth/logout"} <= paths
        assert "/user/profile" in paths
