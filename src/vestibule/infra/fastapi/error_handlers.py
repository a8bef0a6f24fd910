"""RFC 7807 Problem Details exception handlers for FastAPI.

Translates domain exceptions into ``application/problem+json`` responses.
The same builders are used by the auth routes and the session middleware,
which produce error responses themselves (they must attach cookie updates
to the response) rather than raising.

Usage:
    from vestibule.infra.fastapi.error_handlers import register_exception_handlers

    app = FastAPI()
    register_exception_handlers(app)
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import BaseModel, Field

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from vestibule.foundation.application.context import NoRequestContextError
from vestibule.foundation.domain.exceptions import (
    AuthenticationError,
    AuthorizationError,
    DomainError,
    UpstreamServiceError,
)
from vestibule.infra.fastapi.middleware.request_id import get_request_id

if TYPE_CHECKING:
    from starlette.requests import Request

    from fastapi import FastAPI

logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"

_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    422: "Unprocessable Entity",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details response model.

    Standard fields:
    - type: URI reference identifying the problem type
    - title: Short human-readable summary
    - status: HTTP status code
    - detail: Human-readable explanation
    - instance: URI reference to specific occurrence

    Extension fields:
    - error_code: Machine-readable error code for client handling
    - context: Structured debugging information
    - correlation_id: Request correlation ID (5xx errors only)
    """

    type: str = Field(
        ...,
        description="URI reference identifying problem type",
        examples=["/errors/csrf-mismatch", "/errors/token-exchange-failed"],
    )
    title: str = Field(
        ...,
        description="Short human-readable summary",
        examples=["Bad Request", "Bad Gateway"],
    )
    status: int = Field(
        ...,
        ge=400,
        le=599,
        description="HTTP status code",
    )
    detail: str = Field(
        ...,
        description="Human-readable explanation",
    )
    instance: str | None = Field(
        default=None,
        description="URI reference to specific occurrence (request path)",
    )
    error_code: str | None = Field(
        default=None,
        description="Machine-readable error code",
        examples=["CSRF_MISMATCH", "TOKEN_EXCHANGE_FAILED"],
    )
    context: dict[str, Any] | None = Field(
        default=None,
        description="Structured debugging information",
    )
    correlation_id: str | None = Field(
        default=None,
        description="Request correlation ID for support requests",
    )


# Patterns for sensitive data
_SENSITIVE_PATTERNS = [
    (
        re.compile(r"secret\s*=\s*['\"]?[^'\"\s&]+['\"]?", re.IGNORECASE),
        "secret=[REDACTED]",
    ),
    (
        re.compile(r"token\s*=\s*['\"]?[^'\"\s&]+['\"]?", re.IGNORECASE),
        "token=[REDACTED]",
    ),
    (
        re.compile(r"\bcode\s*=\s*['\"]?[^'\"\s&]+['\"]?", re.IGNORECASE),
        "code=[REDACTED]",
    ),
    (
        re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*"),
        "Bearer [REDACTED]",
    ),
]

_SENSITIVE_KEYS = frozenset(
    {
        "password",
        "secret",
        "client_secret",
        "token",
        "id_token",
        "access_token",
        "refresh_token",
        "nonce",
        "state",
        "code",
        "credential",
    }
)


def _create_problem_response(problem: ProblemDetail) -> JSONResponse:
    """Create JSONResponse with RFC 7807 content type."""
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type=PROBLEM_MEDIA_TYPE,
    )


def _get_correlation_id() -> str:
    """Request ID set by RequestIdMiddleware, or "unknown" outside a request."""
    return get_request_id() or "unknown"


def _sanitize_context(context: dict[str, Any] | None) -> dict[str, Any] | None:
    """Sanitize context dictionary for safe inclusion in responses.

    - Converts UUIDs and datetimes to strings
    - Drops keys that name credentials or protocol secrets
    - Handles non-serializable types gracefully
    """
    if context is None:
        return None

    sanitized = {}
    for key, value in context.items():
        if key.lower() in _SENSITIVE_KEYS:
            continue
        sanitized[key] = _sanitize_value(value)

    return sanitized if sanitized else None


def _sanitize_value(value: Any) -> Any:
    """Sanitize a single value for JSON serialization."""
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        return redact_sensitive_strings(value)
    if isinstance(value, dict):
        return _sanitize_context(value)
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(v) for v in value]
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def redact_sensitive_strings(text: str) -> str:
    """Redact credential-looking fragments from free text."""
    result = text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def problem_response(
    request: Request,
    *,
    status: int,
    detail: str,
    error_code: str,
    context: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build a problem+json response for an arbitrary error.

    Args:
        request: Current request (for the ``instance`` field).
        status: HTTP status code.
        detail: Human-readable explanation.
        error_code: Machine-readable error code (UPPER_SNAKE_CASE).
        context: Optional structured context, sanitized before rendering.
        headers: Extra response headers.

    Returns:
        JSONResponse with problem details.
    """
    problem = ProblemDetail(
        type=f"/errors/{error_code.lower().replace('_', '-')}",
        title=_TITLES.get(status, "Error"),
        status=status,
        detail=redact_sensitive_strings(detail),
        instance=str(request.url.path),
        error_code=error_code,
        context=_sanitize_context(context),
        correlation_id=_get_correlation_id() if status >= 500 else None,
    )
    response = _create_problem_response(problem)
    if headers:
        response.headers.update(headers)
    return response


def domain_error_response(request: Request, exc: DomainError) -> JSONResponse:
    """Build a problem+json response from a :class:`DomainError`.

    The status code comes from the exception class (``status_code``).
    """
    return problem_response(
        request,
        status=exc.status_code,
        detail=exc.message,
        error_code=exc.error_code,
        context=exc.context,
    )


async def authentication_error_handler(
    request: Request,
    exc: AuthenticationError,
) -> JSONResponse:
    """Translate AuthenticationError to 401.

    Args:
        request: FastAPI request object.
        exc: AuthenticationError instance.

    Returns:
        JSONResponse with 401 status and problem details.
    """
    logger.info(
        "authentication_failed",
        extra={"error_code": exc.error_code, "path": request.url.path},
    )
    return domain_error_response(request, exc)


async def authorization_error_handler(
    request: Request,
    exc: AuthorizationError,
) -> JSONResponse:
    """Translate AuthorizationError to 403 Forbidden."""
    return domain_error_response(request, exc)


async def upstream_error_handler(
    request: Request,
    exc: UpstreamServiceError,
) -> JSONResponse:
    """Translate UpstreamServiceError to 502 Bad Gateway.

    Logged at warning level since the identity provider, not the caller,
    is at fault.
    """
    logger.warning(
        "upstream_service_error",
        extra={"error_code": exc.error_code, "path": request.url.path},
    )
    return domain_error_response(request, exc)


async def domain_error_handler(
    request: Request,
    exc: DomainError,
) -> JSONResponse:
    """Fallback handler for domain errors without a more specific handler."""
    return domain_error_response(request, exc)


async def no_request_context_handler(
    request: Request,
    exc: NoRequestContextError,
) -> JSONResponse:
    """Translate a missing claims context into 401.

    Raised when a handler asks for the current claims on a path the session
    middleware does not guard.
    """
    return problem_response(
        request,
        status=401,
        detail="Authentication required",
        error_code="AUTHENTICATION_REQUIRED",
    )


async def request_validation_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Translate Pydantic RequestValidationError to 422."""
    errors = [
        {
            "loc": list(error.get("loc", [])),
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]

    return problem_response(
        request,
        status=422,
        detail="Request validation failed",
        error_code="REQUEST_VALIDATION_ERROR",
        context={"errors": errors},
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions.

    Logs full exception details but returns a sanitized response carrying
    the correlation ID. In debug mode the exception type and message are
    included.
    """
    correlation_id = _get_correlation_id()

    logger.exception(
        "unhandled_exception",
        extra={
            "correlation_id": correlation_id,
            "path": str(request.url.path),
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
    )

    if getattr(request.app, "debug", False):
        detail = f"{type(exc).__name__}: {exc}"
        context: dict[str, Any] | None = {"exception_type": type(exc).__name__}
    else:
        detail = "An internal error occurred. Please contact support with the correlation ID."
        context = None

    return problem_response(
        request,
        status=500,
        detail=detail,
        error_code="INTERNAL_ERROR",
        context=context,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on FastAPI application.

    Handlers are registered from most specific to least specific:
    1. AuthenticationError -> 401
    2. AuthorizationError -> 403
    3. UpstreamServiceError -> 502
    4. DomainError -> status from the exception class (base fallback)
    5. NoRequestContextError -> 401
    6. RequestValidationError -> 422 (Pydantic)
    7. Exception -> 500 (catch-all)

    Args:
        app: FastAPI application instance
    """
    # Starlette's handler typing is stricter than the handlers need
    app.add_exception_handler(
        AuthenticationError,
        authentication_error_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        AuthorizationError,
        authorization_error_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        UpstreamServiceError,
        upstream_error_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        DomainError,
        domain_error_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        NoRequestContextError,
        no_request_context_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        RequestValidationError,
        request_validation_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
