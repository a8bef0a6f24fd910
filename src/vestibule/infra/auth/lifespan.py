"""Auth lifespan hook: discovery, cookie key and shared HTTP client.

Priority 60 ensures auth starts AFTER observability (50), so discovery is
logged through the configured pipeline.

Startup is all-or-nothing: invalid settings, an unreadable cookie key or a
discovery failure propagates and the application never serves traffic.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx

from vestibule.foundation.application import LifespanContribution
from vestibule.foundation.application.contributions import LIFESPAN_PRIORITY_AUTH
from vestibule.infra.auth.cookies import (
    AuthCookieCodec,
    CookieCipher,
    CookiePolicy,
    load_or_create_cookie_key,
)
from vestibule.infra.auth.discovery import discover
from vestibule.infra.auth.oidc_client import OidcClient, OidcClientConfig
from vestibule.infra.auth.refresh import RefreshCoalescer
from vestibule.infra.auth.settings import AuthSettings, get_auth_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from contextlib import AbstractAsyncContextManager

logger = logging.getLogger(__name__)


def build_cookie_codec(settings: AuthSettings) -> AuthCookieCodec:
    """Load (or create) the cookie key and build the codec around it."""
    key = load_or_create_cookie_key(settings.cookie_key_path)
    policy = CookiePolicy(
        max_age=settings.cookie_max_age,
        secure=settings.cookie_secure,
        same_site=settings.cookie_same_site,
    )
    return AuthCookieCodec(CookieCipher(key), policy)


def make_auth_lifespan(
    settings: AuthSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[[Any], AbstractAsyncContextManager[None]]:
    """Build the auth lifespan hook.

    Args:
        settings: Auth settings. None to load them from the environment at
            startup.
        transport: Transport for the shared HTTP client; tests pass an
            ``httpx.MockTransport``.

    Returns:
        Async context manager factory ``(app) -> AsyncContextManager[None]``.
    """

    @asynccontextmanager
    async def _auth_lifespan(app: Any) -> AsyncIterator[None]:
        """Manage OIDC resources across the application lifecycle.

        Startup:
            1. Validate settings and load the cookie key.
            2. Open the shared HTTP client and run discovery.
            3. Store the client, codec and refresh coalescer on ``app.state``.

        Shutdown:
            1. Clear ``app.state`` and close the shared HTTP client.
        """
        auth_settings = settings or get_auth_settings()
        auth_settings.validate_oidc_config()
        codec = build_cookie_codec(auth_settings)

        http_client = httpx.AsyncClient(
            timeout=auth_settings.http_timeout,
            follow_redirects=False,
            transport=transport,
        )
        try:
            metadata = await discover(auth_settings.issuer, client=http_client)
        except BaseException:
            await http_client.aclose()
            raise
        config = OidcClientConfig(
            metadata=metadata,
            client_id=auth_settings.client_id,
            client_secret=auth_settings.client_secret or None,
            redirect_uri=auth_settings.redirect_uri or None,
            scopes=auth_settings.scope_list,
            token_auth_method=auth_settings.token_auth_method,
            use_pkce=auth_settings.use_pkce,
        )
        oidc_client = OidcClient(
            config,
            http_client,
            leeway=auth_settings.clock_skew_seconds,
            owns_http_client=True,
        )
        app.state.oidc_client = oidc_client
        app.state.cookie_codec = codec
        app.state.refresh_coalescer = RefreshCoalescer(ttl=auth_settings.refresh_dedup_ttl)
        logger.info(
            "auth_lifespan_ready",
            extra={"issuer": metadata.issuer, "pkce": config.pkce_enabled},
        )
        try:
            yield
        finally:
            app.state.oidc_client = None
            app.state.cookie_codec = None
            app.state.refresh_coalescer = None
            await oidc_client.aclose()
            logger.info("auth_lifespan_shutdown_complete")

    return _auth_lifespan


lifespan_contribution = LifespanContribution(
    hook=make_auth_lifespan(),
    priority=LIFESPAN_PRIORITY_AUTH,
)
