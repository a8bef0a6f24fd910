"""Request-scoped claims context.

The session middleware publishes the merged claims of the authenticated
user in a ContextVar for the duration of the request, so handlers and
services can read them without threading the request object through.

Usage:
    from vestibule.foundation.application.context import get_current_claims

    claims = get_current_claims()  # Raises outside an authenticated request
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from contextvars import Token

    from vestibule.foundation.domain.claims import MergedClaims


_claims_context: ContextVar[MergedClaims | None] = ContextVar("claims_context", default=None)


class NoRequestContextError(RuntimeError):
    """Raised when claims are accessed outside of an authenticated request."""

    def __init__(self) -> None:
        super().__init__(
            "No authenticated request context available. "
            "Ensure this code runs behind the OIDC session middleware."
        )


def set_claims_context(claims: MergedClaims) -> Token[MergedClaims | None]:
    """Publish the merged claims for the current request.

    Args:
        claims: Claims produced after successful session verification.

    Returns:
        Token for resetting the context.
    """
    return _claims_context.set(claims)


def clear_claims_context(token: Token[MergedClaims | None]) -> None:
    """Reset the claims context using the token from :func:`set_claims_context`."""
    _claims_context.reset(token)


def get_current_claims() -> MergedClaims:
    """Get the merged claims of the authenticated user.

    Raises:
        NoRequestContextError: If called outside an authenticated request.
    """
    claims = _claims_context.get()
    if claims is None:
        raise NoRequestContextError()
    return claims

