"""Turning a token response into an authenticated session.

Shared by the callback (authorization code grant) and the session
middleware (refresh grant). The checks run in a fixed order and the first
failure wins:

1. the response carries a refresh token
2. the nonce cookie is present
3. the response carries an ID token
4. the ID token verifies against the provider keys and the nonce
5. userinfo answers for the same subject
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from vestibule.foundation.domain.claims import merge_claims
from vestibule.infra.auth.cookies import SessionCookieSet
from vestibule.infra.auth.errors import MissingIdToken, MissingNonce, MissingRefreshToken

if TYPE_CHECKING:
    from vestibule.foundation.domain.claims import MergedClaims
    from vestibule.infra.auth.oidc_client import OidcClient, TokenResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EstablishedSession:
    """A freshly verified session.

    Attributes:
        cookies: Values to persist in the session cookies.
        claims: Merged claims for the current request.
    """

    cookies: SessionCookieSet
    claims: MergedClaims


async def establish_session(
    client: OidcClient,
    tokens: TokenResponse,
    nonce: str | None,
) -> EstablishedSession:
    """Validate ``tokens`` and build the session they describe.

    Args:
        client: OIDC client (for ID token verification and userinfo).
        tokens: Token endpoint response (code or refresh grant).
        nonce: Value of the nonce cookie, or None if absent.

    Returns:
        The session cookie values and merged claims.

    Raises:
        MissingRefreshToken: No refresh token in ``tokens``.
        MissingNonce: ``nonce`` is None.
        MissingIdToken: No ID token in ``tokens``.
        ClaimsVerificationError: ID token failed verification.
        UserInfoFailure: Userinfo call failed or answered for another subject.
    """
    if not tokens.refresh_token:
        raise MissingRefreshToken()
    if nonce is None:
        raise MissingNonce()
    if not tokens.id_token:
        raise MissingIdToken()

    id_claims = client.verify_id_token(tokens.id_token, nonce)
    supplemental = await client.fetch_userinfo(tokens.access_token, id_claims.subject)

    logger.debug(
        "oidc_session_established",
        extra={"subject": id_claims.subject, "has_groups": supplemental.groups is not None},
    )
    return EstablishedSession(
        cookies=SessionCookieSet(
            id_token=tokens.id_token,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            supplemental=supplemental,
        ),
        claims=merge_claims(id_claims, supplemental),
    )
