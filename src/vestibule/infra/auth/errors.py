"""Error taxonomy for the OIDC relying party.

Each failure point of the login, callback and session-verification flows
has its own exception type, so the HTTP layer can map it to a distinct
status and error code:

======================  ======  ==================================
Exception               Status  Raised when
======================  ======  ==================================
DiscoveryFailure        502     provider metadata unusable (startup)
MissingCookie           401     a session cookie is absent
MalformedCookie         401     a session cookie cannot be parsed
CsrfMismatch            400     callback ``state`` missing or wrong
MissingNonce            400     nonce cookie absent
AuthorizationRejected   400     provider returned ``error=`` on callback
AuthUnavailable         503     relying party not initialised
MissingIdToken          502     token response without ``id_token``
MissingRefreshToken     502     token response without ``refresh_token``
ClaimsVerificationError 502     ID token signature/iss/aud/nonce check failed
TokenExchangeFailure    502     token endpoint error or network failure
UserInfoFailure         502     userinfo error, network failure, bad body
======================  ======  ==================================
"""

from __future__ import annotations

from typing import Any

from vestibule.foundation.domain.exceptions import (
    AuthenticationError,
    DomainError,
    UpstreamServiceError,
)

__all__ = [
    "AuthUnavailable",
    "AuthorizationRejected",
    "ClaimsVerificationError",
    "CsrfMismatch",
    "DiscoveryFailure",
    "MalformedCookie",
    "MissingCookie",
    "MissingIdToken",
    "MissingNonce",
    "MissingRefreshToken",
    "SessionCookieError",
    "TokenExchangeFailure",
    "UserInfoFailure",
]


class DiscoveryFailure(UpstreamServiceError):
    """Provider metadata could not be fetched or is unusable. Fatal at startup."""

    error_code: str = "DISCOVERY_FAILED"

    def __init__(self, issuer: str, reason: str) -> None:
        self.issuer = issuer
        self.reason = reason
        super().__init__(f"OIDC discovery failed: {reason}", {"issuer": issuer})


class SessionCookieError(AuthenticationError):
    """Base class for session cookie problems.

    Attributes:
        field: Name of the offending cookie.
    """

    def __init__(self, field: str, message: str, error_code: str) -> None:
        self.field = field
        super().__init__(
            message,
            auth_error="invalid_session",
            error_code=error_code,
            context={"field": field},
        )


class MissingCookie(SessionCookieError):
    """A cookie required for the session is absent (or failed decryption)."""

    def __init__(self, field: str) -> None:
        super().__init__(field, f"Missing {field} cookie", "MISSING_COOKIE")


class MalformedCookie(SessionCookieError):
    """A cookie decrypted but its contents cannot be parsed."""

    def __init__(self, field: str) -> None:
        super().__init__(field, f"Malformed {field} cookie", "MALFORMED_COOKIE")


class CsrfMismatch(DomainError):
    """The callback ``state`` does not match the CSRF cookie.

    Attributes:
        missing: True when either side was absent rather than different.
    """

    error_code: str = "CSRF_MISMATCH"

    def __init__(self, *, missing: bool) -> None:
        self.missing = missing
        super().__init__("CSRF state missing" if missing else "CSRF state mismatch")


class MissingNonce(DomainError):
    """The nonce cookie is absent."""

    error_code: str = "MISSING_NONCE"

    def __init__(self) -> None:
        super().__init__("Nonce cookie missing")


class AuthorizationRejected(DomainError):
    """The identity provider redirected back with an ``error`` parameter."""

    error_code: str = "AUTHORIZATION_REJECTED"

    def __init__(self, error: str, error_description: str = "") -> None:
        self.error = error
        self.error_description = error_description
        detail = f": {error_description}" if error_description else ""
        super().__init__(f"Authorization rejected by provider ({error}){detail}")


class MissingIdToken(UpstreamServiceError):
    """The token response carries no ID token."""

    error_code: str = "MISSING_ID_TOKEN"

    def __init__(self) -> None:
        super().__init__("Token response did not include an ID token")


class MissingRefreshToken(UpstreamServiceError):
    """The token response carries no refresh token."""

    error_code: str = "MISSING_REFRESH_TOKEN"

    def __init__(self) -> None:
        super().__init__("Token response did not include a refresh token")


class ClaimsVerificationError(UpstreamServiceError):
    """ID token signature, issuer, audience, expiry or nonce check failed."""

    error_code: str = "CLAIMS_VERIFICATION_FAILED"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"ID token verification failed: {reason}")


class TokenExchangeFailure(UpstreamServiceError):
    """Token endpoint call failed.

    Attributes:
        provider_status: HTTP status from the provider, or None for network errors.
        error: OAuth 2.0 error code (e.g., "invalid_grant").
        error_description: Human-readable error from the provider.
    """

    error_code: str = "TOKEN_EXCHANGE_FAILED"

    def __init__(
        self,
        error: str,
        error_description: str = "",
        provider_status: int | None = None,
    ) -> None:
        self.provider_status = provider_status
        self.error = error
        self.error_description = error_description
        context: dict[str, Any] = {"error": error}
        if provider_status is not None:
            context["provider_status"] = provider_status
        message = f"Token exchange failed: {error}"
        if error_description:
            message = f"{message} ({error_description})"
        super().__init__(message, context)


class UserInfoFailure(UpstreamServiceError):
    """Userinfo endpoint call failed or returned an unusable body."""

    error_code: str = "USERINFO_FAILED"

    def __init__(self, reason: str, provider_status: int | None = None) -> None:
        self.reason = reason
        self.provider_status = provider_status
        context = {"provider_status": provider_status} if provider_status is not None else None
        super().__init__(f"Userinfo request failed: {reason}", context)


class AuthUnavailable(DomainError):
    """The relying party is not initialised (startup has not completed)."""

    error_code: str = "AUTH_UNAVAILABLE"
    status_code: int = 503

    def __init__(self) -> None:
        super().__init__("Authentication service not configured")
