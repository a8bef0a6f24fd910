"""Vestibule Infra Auth -- OIDC relying party with encrypted cookie sessions.

Provides provider discovery, ID token verification, the OIDC HTTP client,
the encrypted cookie codec, login/callback/logout endpoints, the session
middleware with refresh de-duplication, and FastAPI dependencies for the
authenticated user's claims.
"""

from vestibule.infra.auth.cookies import (
    AuthCookieCodec,
    CookieCipher,
    CookiePolicy,
    EncryptedCookieJar,
    SessionCookieSet,
    load_or_create_cookie_key,
)
from vestibule.infra.auth.dependencies import (
    CurrentClaims,
    get_cookie_codec,
    get_current_claims,
    get_oidc_client,
    require_group,
)
from vestibule.infra.auth.discovery import ProviderMetadata, discover
from vestibule.infra.auth.errors import (
    AuthorizationRejected,
    AuthUnavailable,
    ClaimsVerificationError,
    CsrfMismatch,
    DiscoveryFailure,
    MalformedCookie,
    MissingCookie,
    MissingIdToken,
    MissingNonce,
    MissingRefreshToken,
    SessionCookieError,
    TokenExchangeFailure,
    UserInfoFailure,
)
from vestibule.infra.auth.id_token import IdTokenVerifier
from vestibule.infra.auth.lifespan import lifespan_contribution, make_auth_lifespan
from vestibule.infra.auth.middleware.oidc_session import OidcSessionMiddleware
from vestibule.infra.auth.oidc_client import OidcClient, OidcClientConfig, TokenResponse
from vestibule.infra.auth.pkce import derive_code_challenge, generate_code_verifier
from vestibule.infra.auth.refresh import RefreshCoalescer
from vestibule.infra.auth.settings import AuthSettings, get_auth_settings

__all__ = [
    "AuthCookieCodec",
    "AuthSettings",
    "AuthUnavailable",
    "AuthorizationRejected",
    "ClaimsVerificationError",
    "CookieCipher",
    "CookiePolicy",
    "CsrfMismatch",
    "CurrentClaims",
    "DiscoveryFailure",
    "EncryptedCookieJar",
    "IdTokenVerifier",
    "MalformedCookie",
    "MissingCookie",
    "MissingIdToken",
    "MissingNonce",
    "MissingRefreshToken",
    "OidcClient",
    "OidcClientConfig",
    "OidcSessionMiddleware",
    "ProviderMetadata",
    "RefreshCoalescer",
    "SessionCookieError",
    "SessionCookieSet",
    "TokenExchangeFailure",
    "TokenResponse",
    "UserInfoFailure",
    "derive_code_challenge",
    "discover",
    "generate_code_verifier",
    "get_auth_settings",
    "get_cookie_codec",
    "get_current_claims",
    "get_oidc_client",
    "lifespan_contribution",
    "make_auth_lifespan",
    "require_group",
]
