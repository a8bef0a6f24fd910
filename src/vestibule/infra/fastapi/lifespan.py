"""Startup and shutdown ordering for contributed lifespan hooks.

Observability (50) starts before auth (60) so provider discovery is logged
through the configured pipeline, and auth releases its HTTP client before
logging is torn down.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from contextlib import AbstractAsyncContextManager

    from fastapi import FastAPI
    from vestibule.foundation.application import LifespanContribution

logger = logging.getLogger(__name__)


def compose_lifespan(
    hooks: list[LifespanContribution],
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Nest ``hooks`` into one FastAPI ``lifespan``.

    Hooks start in ascending priority and stop in reverse. If a hook raises
    while starting, the hooks already started are shut down and the error
    propagates, so the server never accepts traffic half-initialised.
    """
    ordered = sorted(hooks, key=lambda h: h.priority)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            for contrib in ordered:
                logger.info(
                    "Starting lifespan hook %s (priority=%d)", contrib.label, contrib.priority
                )
                await stack.enter_async_context(contrib.hook(app))
                stack.callback(logger.info, "Stopping lifespan hook %s", contrib.label)
            logger.info("Application startup complete (%d lifespan hooks)", len(ordered))
            yield

    return lifespan
