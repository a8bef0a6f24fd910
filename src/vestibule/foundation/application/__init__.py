"""Vestibule Foundation Application -- contribution types, discovery, request context."""

from vestibule.foundation.application.context import (
    NoRequestContextError,
    clear_claims_context,
    get_current_claims,
    set_claims_context,
)
from vestibule.foundation.application.contributions import (
    ErrorHandlerContribution,
    LifespanContribution,
    MiddlewareContribution,
)
from vestibule.foundation.application.discovery import (
    DiscoveredContribution,
    discover,
)

__all__ = [
    "DiscoveredContribution",
    "ErrorHandlerContribution",
    "LifespanContribution",
    "MiddlewareContribution",
    "NoRequestContextError",
    "clear_claims_context",
    "discover",
    "get_current_claims",
    "set_claims_context",
]
