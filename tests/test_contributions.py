"""Tests for contribution types and entry-point lookup."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib.metadata import EntryPoint
from typing import TYPE_CHECKING, Any

import pytest

from vestibule.foundation.application import discovery
from vestibule.foundation.application.contributions import (
    LIFESPAN_PRIORITY_AUTH,
    LIFESPAN_PRIORITY_OBSERVABILITY,
    MIDDLEWARE_PRIORITY_DEFAULT,
    LifespanContribution,
    MiddlewareContribution,
)
from vestibule.infra.auth.lifespan import lifespan_contribution as auth_lifespan
from vestibule.infra.auth.middleware.oidc_session import OidcSessionMiddleware
from vestibule.infra.auth.middleware.oidc_session import contribution as oidc_session
from vestibule.infra.fastapi.middleware.request_id import contribution as request_id
from vestibule.infra.observability import lifespan_contribution as logging_lifespan

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

GROUP = "vestibule.middleware"
SESSION_TARGET = "vestibule.infra.auth.middleware.oidc_session:contribution"
REQUEST_ID_TARGET = "vestibule.infra.fastapi.middleware.request_id:contribution"


def _entry_points(monkeypatch: pytest.MonkeyPatch, *specs: tuple[str, str]) -> None:
    eps = [EntryPoint(name=name, value=value, group=GROUP) for name, value in specs]

    def fake_entry_points(*, group: str) -> list[EntryPoint]:
        return eps if group == GROUP else []

    monkeypatch.setattr(discovery, "entry_points", fake_entry_points)


@pytest.mark.unit
class TestShippedPriorities:
    def test_request_id_wraps_session_gate(self) -> None:
        assert request_id.priority < oidc_session.priority < MIDDLEWARE_PRIORITY_DEFAULT

    def test_logging_starts_before_auth(self) -> None:
        assert logging_lifespan.priority == LIFESPAN_PRIORITY_OBSERVABILITY
        assert auth_lifespan.priority == LIFESPAN_PRIORITY_AUTH
        assert logging_lifespan.priority < auth_lifespan.priority


@pytest.mark.unit
class TestLabels:
    def test_middleware_label_is_class_name(self) -> None:
        assert oidc_session.label == "OidcSessionMiddleware"
        assert MiddlewareContribution(middleware_class=OidcSessionMiddleware).label == (
            "OidcSessionMiddleware"
        )

    def test_lifespan_label_is_dotted_name(self) -> None:
        @asynccontextmanager
        async def warm_cache(app: Any) -> AsyncIterator[None]:
            yield

        label = LifespanContribution(hook=warm_cache).label
        assert label.startswith("test_contributions.")
        assert label.endswith("warm_cache")


@pytest.mark.unit
class TestDiscover:
    def test_sorted_by_name(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _entry_points(
            monkeypatch,
            ("request_id", REQUEST_ID_TARGET),
            ("oidc_session", SESSION_TARGET),
        )

        found = discovery.discover(GROUP)

        assert [c.name for c in found] == ["oidc_session", "request_id"]
        assert found[0].value is oidc_session
        assert found[0].target == SESSION_TARGET
        assert found[0].group == GROUP

    def test_excluded_names_not_loaded(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _entry_points(
            monkeypatch,
            ("oidc_session", SESSION_TARGET),
            ("broken", "vestibule.does_not_exist:contribution"),
        )

        found = discovery.discover(GROUP, exclude_names=frozenset({"broken"}))

        assert [c.name for c in found] == ["oidc_session"]

    def test_import_failure_skipped(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        _entry_points(
            monkeypatch,
            ("broken", "vestibule.does_not_exist:contribution"),
            ("request_id", REQUEST_ID_TARGET),
        )

        with caplog.at_level(logging.ERROR, logger=discovery.__name__):
            found = discovery.discover(GROUP)

        assert [c.name for c in found] == ["request_id"]
        assert "vestibule.does_not_exist:contribution" in caplog.text

    def test_duplicate_name_keeps_first(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        _entry_points(
            monkeypatch,
            ("session", SESSION_TARGET),
            ("session", REQUEST_ID_TARGET),
        )

        with caplog.at_level(logging.WARNING, logger=discovery.__name__):
            found = discovery.discover(GROUP)

        assert len(found) == 1
        assert found[0].value is oidc_session
        assert "Duplicate entry point" in caplog.text
