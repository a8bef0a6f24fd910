"""FastAPI application factory with entry-point auto-discovery.

:func:`create_app` assembles the service from contributions: routers,
middleware, exception handlers and lifespan hooks. Each kind is read from
its ``vestibule.*`` entry point group and merged with any contributions
passed in explicitly, so tests can build the same application with
discovery switched off.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from starlette.middleware.cors import CORSMiddleware

from fastapi import FastAPI
from vestibule.foundation.application import (
    ErrorHandlerContribution,
    LifespanContribution,
    MiddlewareContribution,
    discover,
)
from vestibule.infra.fastapi.lifespan import compose_lifespan
from vestibule.infra.fastapi.settings import AppSettings

if TYPE_CHECKING:
    from collections.abc import Iterator

    from fastapi import APIRouter

logger = logging.getLogger(__name__)

# Entry point group constants
GROUP_ROUTERS = "vestibule.routers"
GROUP_MIDDLEWARE = "vestibule.middleware"
GROUP_ERROR_HANDLERS = "vestibule.error_handlers"
GROUP_LIFESPAN = "vestibule.lifespan"


class _Discovery:
    """Entry-point lookup honouring the group and name exclusions."""

    def __init__(self, exclude_groups: frozenset[str], exclude_names: frozenset[str]) -> None:
        self._exclude_groups = exclude_groups
        self._exclude_names = exclude_names

    def values(self, group: str) -> Iterator[tuple[str, Any]]:
        if group in self._exclude_groups:
            return
        for contrib in discover(group, exclude_names=self._exclude_names):
            yield contrib.name, contrib.value


def _lifespan_hooks(
    found: _Discovery, extra: list[LifespanContribution] | None
) -> list[LifespanContribution]:
    hooks = list(extra or [])
    for _, value in found.values(GROUP_LIFESPAN):
        if not isinstance(value, LifespanContribution):
            # Bare async context manager factory; default priority
            value = LifespanContribution(hook=value)
        hooks.append(value)
    return hooks


def _add_middleware(
    app: FastAPI, found: _Discovery, extra: list[MiddlewareContribution] | None
) -> None:
    contribs = list(extra or [])
    for name, value in found.values(GROUP_MIDDLEWARE):
        if isinstance(value, MiddlewareContribution):
            contribs.append(value)
        else:
            logger.warning("Middleware entry point %r is not a MiddlewareContribution", name)

    # Starlette wraps the last added middleware outermost, so add the
    # lowest priority last
    for mw in sorted(contribs, key=lambda m: m.priority, reverse=True):
        app.add_middleware(mw.middleware_class, **mw.kwargs)
        logger.info(
            "Registered middleware %s (priority=%d)", mw.label, mw.priority
        )


def _add_error_handlers(
    app: FastAPI, found: _Discovery, extra: list[ErrorHandlerContribution] | None
) -> None:
    contribs = list(extra or [])
    for name, value in found.values(GROUP_ERROR_HANDLERS):
        if isinstance(value, ErrorHandlerContribution):
            contribs.append(value)
        elif callable(value):
            # register(app) -> None
            value(app)
        else:
            logger.warning(
                "Error handler entry point %r is not an ErrorHandlerContribution or callable",
                name,
            )

    for eh in contribs:
        app.add_exception_handler(eh.exception_class, eh.handler)
        logger.info("Registered error handler for %s", eh.exception_class.__name__)


def create_app(
    settings: AppSettings | None = None,
    *,
    extra_routers: list[APIRouter] | None = None,
    extra_middleware: list[MiddlewareContribution] | None = None,
    extra_lifespan_hooks: list[LifespanContribution] | None = None,
    extra_error_handlers: list[ErrorHandlerContribution] | None = None,
    exclude_groups: frozenset[str] | None = None,
    exclude_names: frozenset[str] | None = None,
) -> FastAPI:
    """Create the FastAPI application from discovered and explicit contributions.

    Contributed middleware is stacked in priority order (lowest priority
    outermost) and CORS wraps all of it, so preflights and responses
    produced by the session gate still carry CORS headers.

    Args:
        settings: Application settings. If ``None``, loaded from environment.
        extra_routers: Routers to include in addition to discovered ones.
        extra_middleware: Middleware in addition to discovered ones.
        extra_lifespan_hooks: Lifespan hooks in addition to discovered ones.
        extra_error_handlers: Exception handlers in addition to discovered ones.
        exclude_groups: Entry point groups to skip entirely. Defaults to
            ``settings.exclude_groups``.
        exclude_names: Entry point names to skip in every group. Defaults to
            ``settings.exclude_entry_points``.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or AppSettings()
    found = _Discovery(
        exclude_groups if exclude_groups is not None else settings.exclude_groups,
        exclude_names if exclude_names is not None else settings.exclude_entry_points,
    )

    app = FastAPI(
        title=settings.title,
        version=settings.version,
        description=settings.description,
        docs_url=settings.docs_url,
        redoc_url=settings.redoc_url,
        openapi_url=settings.openapi_url,
        debug=settings.debug,
        lifespan=compose_lifespan(_lifespan_hooks(found, extra_lifespan_hooks)),
    )

    _add_middleware(app, found, extra_middleware)
    cors = settings.cors
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors.allow_origins,
        allow_credentials=cors.allow_credentials,
        allow_methods=cors.allow_methods,
        allow_headers=cors.allow_headers,
        expose_headers=cors.expose_headers,
    )
    _add_error_handlers(app, found, extra_error_handlers)

    routers = list(extra_routers or [])
    routers.extend(value for _, value in found.values(GROUP_ROUTERS))
    for router in routers:
        app.include_router(router)
        logger.info("Included router: %s", router.prefix or "/")

    return app
