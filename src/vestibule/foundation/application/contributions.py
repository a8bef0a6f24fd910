"""What a vestibule package can plug into the application.

Each installed package declares routers, middleware, exception handlers and
lifespan hooks under the ``vestibule.*`` entry point groups; the objects
below are what those entry points resolve to. Nothing here imports FastAPI,
so the auth and observability packages can describe their contributions
without pulling in the web layer.

Middleware priority bands (lower runs earlier on the way in):

    0-99     request bookkeeping; runs before any auth decision
    100-199  the session gate; verifies or refreshes tokens
    200-499  application middleware that may read the merged claims

CORS is not a contribution: the app factory always wraps it around the
whole stack.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

MIDDLEWARE_PRIORITY_MIN = 0
MIDDLEWARE_PRIORITY_MAX = 499

MIDDLEWARE_PRIORITY_REQUEST_ID = 10
MIDDLEWARE_PRIORITY_SESSION = 150
MIDDLEWARE_PRIORITY_DEFAULT = 400

# Logging must be configured before discovery runs so provider errors are
# rendered through the same pipeline
LIFESPAN_PRIORITY_OBSERVABILITY = 50
LIFESPAN_PRIORITY_AUTH = 60
LIFESPAN_PRIORITY_DEFAULT = 500


def _callable_label(obj: Any) -> str:
    module = getattr(obj, "__module__", None)
    name = getattr(obj, "__qualname__", None) or type(obj).__qualname__
    return f"{module}.{name}" if module else name


@dataclass(frozen=True, slots=True)
class MiddlewareContribution:
    """A middleware class and where it sits in the request path.

    Attributes:
        middleware_class: The ASGI middleware class.
        priority: Lower numbers wrap higher ones; see the module docstring
            for the bands. Must be in range [0, 499].
        kwargs: Keyword arguments forwarded to ``add_middleware()``.
    """

    middleware_class: type[Any]
    priority: int = MIDDLEWARE_PRIORITY_DEFAULT
    kwargs: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not MIDDLEWARE_PRIORITY_MIN <= self.priority <= MIDDLEWARE_PRIORITY_MAX:
            msg = (
                f"Middleware priority must be between {MIDDLEWARE_PRIORITY_MIN} "
                f"and {MIDDLEWARE_PRIORITY_MAX}, got {self.priority}"
            )
            raise ValueError(msg)

    @property
    def label(self) -> str:
        return self.middleware_class.__name__


@dataclass(frozen=True, slots=True)
class ErrorHandlerContribution:
    """An exception type and the async ``(Request, exc) -> Response`` that renders it."""

    exception_class: type[BaseException]
    handler: Any  # Callable[[Request, Exception], Awaitable[Response]]


@dataclass(frozen=True, slots=True)
class LifespanContribution:
    """A startup/shutdown hook.

    Attributes:
        hook: ``(app) -> AsyncContextManager[None]``. Code before the
            ``yield`` runs at startup and must raise to abort it.
        priority: Lower priorities start first and shut down last.
    """

    hook: Any  # Callable[[Any], AsyncContextManager[None]]
    priority: int = LIFESPAN_PRIORITY_DEFAULT

    @property
    def label(self) -> str:
        """Dotted name of the hook, for startup and shutdown logs."""
        return _callable_label(self.hook)
