"""Middleware components for the vestibule FastAPI integration."""

from vestibule.infra.fastapi.middleware.request_id import (
    RequestIdMiddleware,
    get_request_id,
)

__all__ = [
    "RequestIdMiddleware",
    "get_request_id",
]
