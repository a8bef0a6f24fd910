"""FastAPI dependency functions for the OIDC relying party.

Provides Depends()-compatible functions for injecting the startup-built
OIDC objects and the authenticated user's claims into endpoint handlers.

Usage:
    from vestibule.infra.auth.dependencies import CurrentClaims, require_group

    @router.get("/reports")
    def list_reports(
        claims: CurrentClaims,
        _: Annotated[None, Depends(require_group("analysts"))],
    ):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request

from vestibule.foundation.application.context import (
    get_current_claims as _get_claims_from_context,
)
from vestibule.foundation.domain.claims import MergedClaims
from vestibule.foundation.domain.exceptions import AuthorizationError
from vestibule.infra.auth.cookies import AuthCookieCodec
from vestibule.infra.auth.errors import AuthUnavailable
from vestibule.infra.auth.oidc_client import OidcClient

if TYPE_CHECKING:
    from collections.abc import Callable


def get_oidc_client(request: Request) -> OidcClient:
    """The OIDC client built at startup.

    Raises:
        AuthUnavailable: If startup has not stored one on ``app.state``.
    """
    client = getattr(request.app.state, "oidc_client", None)
    if client is None:
        raise AuthUnavailable()
    return client


def get_cookie_codec(request: Request) -> AuthCookieCodec:
    """The cookie codec built at startup.

    Raises:
        AuthUnavailable: If startup has not stored one on ``app.state``.
    """
    codec = getattr(request.app.state, "cookie_codec", None)
    if codec is None:
        raise AuthUnavailable()
    return codec


OidcClientDep = Annotated[OidcClient, Depends(get_oidc_client)]
CookieCodecDep = Annotated[AuthCookieCodec, Depends(get_cookie_codec)]


def get_current_claims() -> MergedClaims:
    """FastAPI dependency that returns the authenticated user's claims.

    Reads from the claims ContextVar set by the session middleware.

    Raises:
        NoRequestContextError: If called outside an authenticated request.
    """
    return _get_claims_from_context()


# Type alias for cleaner endpoint signatures
CurrentClaims = Annotated[MergedClaims, Depends(get_current_claims)]


def require_group(group: str) -> Callable[..., None]:
    """Factory returning a dependency that enforces group membership.

    Groups come from the userinfo ``groups`` claim. A user whose provider
    reported no groups at all is treated as a member of none.

    Args:
        group: Required group name (case-sensitive).

    Returns:
        FastAPI dependency function that raises AuthorizationError if the
        user lacks the group.
    """

    def _check_group(claims: CurrentClaims) -> None:
        if claims.groups is None or group not in claims.groups:
            raise AuthorizationError(
                f"Required group '{group}' not found in user groups",
                context={"required_group": group, "subject": claims.subject},
            )

    return _check_group
