"""OIDC session middleware: the per-request authentication gate.

Reads the encrypted session cookies, verifies the ID token, refreshes the
session once when verification fails, and publishes the merged claims in
``request.state.oidc_claims`` and the claims ContextVar.

Middleware position in stack (LIFO registration order):
  Request -> CORS -> RequestId -> OidcSession -> Route

State machine per request::

    NoSession ----------------------------------------> ReauthRequired
    Decoded --verify ok--> Verified
    Decoded --verify fails--> RefreshAttempted --ok--> Verified
                                               --fails--> ReauthRequired

Design decisions:
- Use BaseHTTPMiddleware for consistency with the other middleware.
- Return responses directly for auth failures (not raise) because
  BaseHTTPMiddleware dispatch cannot propagate exceptions through the
  ASGI stack.
- Cookie changes are applied to every response, including the 500 built
  here when the downstream handler raises.
- At most one refresh per request, never retried. Concurrent requests of
  the same session share it through :class:`RefreshCoalescer`.
- ReauthRequired on GET redirects to the login endpoint with an
  ``X-Auth-Error`` header; other methods get a 401 problem response so
  the request's intent is not silently dropped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, RedirectResponse

from vestibule.foundation.application.context import (
    clear_claims_context,
    set_claims_context,
)
from vestibule.foundation.application.contributions import (
    MIDDLEWARE_PRIORITY_SESSION,
    MiddlewareContribution,
)
from vestibule.foundation.domain.claims import merge_claims
from vestibule.foundation.domain.exceptions import DomainError
from vestibule.infra.auth.cookies import NONCE_COOKIE
from vestibule.infra.auth.errors import ClaimsVerificationError, SessionCookieError
from vestibule.infra.auth.session import establish_session
from vestibule.infra.fastapi.error_handlers import (
    problem_response,
    redact_sensitive_strings,
    unhandled_exception_handler,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response

    from vestibule.foundation.domain.claims import MergedClaims
    from vestibule.infra.auth.cookies import (
        AuthCookieCodec,
        EncryptedCookieJar,
        SessionCookieSet,
    )
    from vestibule.infra.auth.oidc_client import OidcClient
    from vestibule.infra.auth.refresh import RefreshCoalescer
    from vestibule.infra.auth.session import EstablishedSession

logger = logging.getLogger(__name__)

AUTH_ERROR_HEADER = "X-Auth-Error"
DEFAULT_LOGIN_PATH = "/auth/login"

# Default paths the gate lets through unauthenticated.
DEFAULT_EXCLUDED_PREFIXES = (
    "/auth/",
    "/health",
    "/healthz",
    "/docs",
    "/openapi.json",
    "/redoc",
)


class ReauthRequired(Exception):
    """Internal signal: the session cannot be used and the user must log in again."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _header_safe(reason: str) -> str:
    text = redact_sensitive_strings(reason)
    return text.encode("ascii", "replace").decode("ascii").replace("\r", " ").replace("\n", " ")


class OidcSessionMiddleware(BaseHTTPMiddleware):
    """Session validation middleware backed by encrypted cookies.

    Request flow:
    1. Check if path is excluded -> skip auth
    2. Decode the session cookies and the nonce cookie
    3. Verify the ID token against the provider keys and the nonce
    4. On failure, refresh once via the token endpoint (if any)
    5. Merge ID token and supplemental claims into request state/context
    6. Call next middleware/handler, then apply cookie changes

    Error flow:
    - Missing/malformed cookie -> ReauthRequired ("Missing <field> cookie")
    - Missing nonce cookie -> ReauthRequired ("Nonce cookie missing")
    - Verification failed, no token endpoint -> ReauthRequired
    - Refresh failed (any step) -> ReauthRequired
    - OIDC objects not initialised -> 503
    """

    def __init__(
        self,
        app: Any,
        oidc_client: OidcClient | None = None,
        cookie_codec: AuthCookieCodec | None = None,
        refresh_coalescer: RefreshCoalescer | None = None,
        excluded_prefixes: tuple[str, ...] | None = None,
        login_path: str = DEFAULT_LOGIN_PATH,
    ) -> None:
        """Initialize the session middleware.

        Args:
            app: ASGI application (passed by Starlette).
            oidc_client: OIDC client. None to read ``app.state.oidc_client``
                per request (it only exists once startup has run).
            cookie_codec: Cookie codec. None to read ``app.state.cookie_codec``.
            refresh_coalescer: Refresh de-duplication. None to read
                ``app.state.refresh_coalescer``; absent there means no sharing.
            excluded_prefixes: Path prefixes to skip auth on.
            login_path: Where GET requests are sent to re-authenticate.
        """
        super().__init__(app)
        self._oidc_client = oidc_client
        self._cookie_codec = cookie_codec
        self._refresh_coalescer = refresh_coalescer
        self._excluded_prefixes = (
            excluded_prefixes if excluded_prefixes is not None else DEFAULT_EXCLUDED_PREFIXES
        )
        self._login_path = login_path

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Gate the request on a valid (possibly refreshed) session.

        Args:
            request: Incoming HTTP request.
            call_next: Next middleware/handler in stack.

        Returns:
            Response from handler, a login redirect, or an error response.
        """
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self._excluded_prefixes):
            return await call_next(request)

        state = request.app.state
        client = self._oidc_client or getattr(state, "oidc_client", None)
        codec = self._cookie_codec or getattr(state, "cookie_codec", None)
        coalescer = self._refresh_coalescer or getattr(state, "refresh_coalescer", None)
        if client is None or codec is None:
            return problem_response(
                request,
                status=503,
                detail="Authentication service not configured",
                error_code="AUTH_UNAVAILABLE",
            )

        jar = codec.jar(request)
        try:
            claims = await self._authenticate(client, codec, coalescer, jar)
        except ReauthRequired as exc:
            response = self._reauth_response(request, exc.reason)
            jar.apply(response)
            return response

        request.state.oidc_claims = claims
        claims_token = set_claims_context(claims)
        try:
            response = await call_next(request)
        except Exception as exc:
            # Staged cookie changes (a rotated refresh token) ride on the 500
            response = await unhandled_exception_handler(request, exc)
        finally:
            clear_claims_context(claims_token)
        jar.apply(response)
        return response

    async def _authenticate(
        self,
        client: OidcClient,
        codec: AuthCookieCodec,
        coalescer: RefreshCoalescer | None,
        jar: EncryptedCookieJar,
    ) -> MergedClaims:
        try:
            session = codec.decode(jar)
        except SessionCookieError as exc:
            raise ReauthRequired(exc.message) from exc

        nonce = jar.get(NONCE_COOKIE)
        if nonce is None:
            raise ReauthRequired("Nonce cookie missing")

        try:
            id_claims = client.verify_id_token(session.id_token, nonce)
        except ClaimsVerificationError as exc:
            logger.info("oidc_session_verification_failed", extra={"reason": exc.reason})
            if not client.metadata.supports_refresh:
                raise ReauthRequired(exc.message) from exc
            refreshed = await self._refresh(client, coalescer, session, nonce)
            codec.write(jar, refreshed.cookies)
            return refreshed.claims

        return merge_claims(id_claims, session.supplemental)

    async def _refresh(
        self,
        client: OidcClient,
        coalescer: RefreshCoalescer | None,
        session: SessionCookieSet,
        nonce: str,
    ) -> EstablishedSession:
        async def refresh() -> EstablishedSession:
            tokens = await client.exchange_refresh_token(session.refresh_token)
            return await establish_session(client, tokens, nonce)

        try:
            if coalescer is None:
                refreshed = await refresh()
            else:
                refreshed = await coalescer.run(session.refresh_token, nonce, refresh)
        except DomainError as exc:
            logger.warning(
                "oidc_session_refresh_failed",
                extra={"error_code": exc.error_code},
            )
            raise ReauthRequired(exc.message) from exc

        logger.info("oidc_session_refreshed", extra={"subject": refreshed.claims.subject})
        return refreshed

    def _reauth_response(self, request: Request, reason: str) -> RedirectResponse | JSONResponse:
        """Build the ReauthRequired response for ``request``'s method."""
        logger.info(
            "oidc_reauthentication_required",
            extra={"path": request.url.path, "method": request.method, "reason": reason},
        )
        headers = {AUTH_ERROR_HEADER: _header_safe(reason)}
        if request.method == "GET":
            target = f"{self._login_path}?redirect_to={quote(str(request.url), safe='')}"
            return RedirectResponse(target, status_code=303, headers=headers)
        return problem_response(
            request,
            status=401,
            detail=reason,
            error_code="REAUTHENTICATION_REQUIRED",
            headers=headers,
        )


contribution = MiddlewareContribution(
    middleware_class=OidcSessionMiddleware,
    priority=MIDDLEWARE_PRIORITY_SESSION,
)
