"""Vestibule Infra FastAPI -- app factory, error handlers, middleware, health."""

from vestibule.infra.fastapi.app_factory import (
    GROUP_ERROR_HANDLERS,
    GROUP_LIFESPAN,
    GROUP_MIDDLEWARE,
    GROUP_ROUTERS,
    create_app,
)
from vestibule.infra.fastapi.error_handlers import (
    ProblemDetail,
    domain_error_response,
    problem_response,
    register_exception_handlers,
)
from vestibule.infra.fastapi.middleware.request_id import (
    RequestIdMiddleware,
    get_request_id,
)
from vestibule.infra.fastapi.settings import AppSettings, CORSSettings, ServerSettings

__all__ = [
    "GROUP_ERROR_HANDLERS",
    "GROUP_LIFESPAN",
    "GROUP_MIDDLEWARE",
    "GROUP_ROUTERS",
    "AppSettings",
    "CORSSettings",
    "ProblemDetail",
    "RequestIdMiddleware",
    "ServerSettings",
    "create_app",
    "domain_error_response",
    "get_request_id",
    "problem_response",
    "register_exception_handlers",
]
