"""Login, callback and logout steps of the authorization code flow.

These functions operate on a request-scoped :class:`EncryptedCookieJar`
and leave it to the caller to apply the jar to whatever response is
finally sent, success or error. That way the CSRF cookie is consumed even
when the callback fails.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import jwt

from vestibule.infra.auth.cookies import (
    ACCESS_TOKEN_COOKIE,
    CSRF_STATE_COOKIE,
    ID_TOKEN_COOKIE,
    LOGIN_REDIRECT_COOKIE,
    NONCE_COOKIE,
    PKCE_VERIFIER_COOKIE,
    REFRESH_TOKEN_COOKIE,
)
from vestibule.infra.auth.errors import AuthorizationRejected, CsrfMismatch
from vestibule.infra.auth.pkce import derive_code_challenge, generate_code_verifier
from vestibule.infra.auth.session import establish_session

if TYPE_CHECKING:
    from vestibule.infra.auth.cookies import AuthCookieCodec, EncryptedCookieJar
    from vestibule.infra.auth.oidc_client import OidcClient

logger = logging.getLogger(__name__)

DEFAULT_POST_LOGIN_REDIRECT = "/"

_TOKEN_BYTES = 32


def is_safe_redirect(target: str, origin: str) -> bool:
    """Whether ``target`` is a same-origin redirect destination.

    Accepts absolute paths (``/dash``) and absolute URLs whose scheme and
    host equal ``origin``. Protocol-relative (``//host``) and backslash
    tricks are rejected.

    Args:
        target: Candidate redirect target.
        origin: ``scheme://host[:port]`` of the current request.
    """
    if not target or "\\" in target or any(ord(c) < 0x20 for c in target):
        return False
    parts = urlsplit(target)
    if not parts.scheme and not parts.netloc:
        return target.startswith("/") and not target.startswith("//")
    own = urlsplit(origin)
    return parts.scheme == own.scheme and parts.netloc == own.netloc


def _id_token_hint(jar: EncryptedCookieJar) -> str | None:
    """The previous ID token, if the cookie holds something JWT-shaped."""
    candidate = jar.get(ID_TOKEN_COOKIE)
    if candidate is None:
        return None
    try:
        jwt.get_unverified_header(candidate)
    except jwt.InvalidTokenError:
        return None
    return candidate


def begin_login(
    client: OidcClient,
    codec: AuthCookieCodec,
    jar: EncryptedCookieJar,
    *,
    redirect_uri: str,
    redirect_to: str | None,
) -> str:
    """Start a login attempt.

    Mints a CSRF token and a nonce, stages them in cookies, remembers (or
    forgets) the post-login redirect target and returns the authorization
    URL to send the browser to.

    Args:
        client: OIDC client.
        codec: Cookie codec (for cookie lifetimes).
        jar: Request cookie jar; changes are staged here.
        redirect_uri: Callback URL for this deployment.
        redirect_to: Validated post-login destination, or None.

    Returns:
        Authorization endpoint URL.
    """
    config = client.config
    csrf_token = secrets.token_urlsafe(_TOKEN_BYTES)
    nonce = secrets.token_urlsafe(_TOKEN_BYTES)

    code_challenge = None
    if config.pkce_enabled:
        verifier = generate_code_verifier()
        code_challenge = derive_code_challenge(verifier)
        jar.add(codec.flow_cookie(PKCE_VERIFIER_COOKIE, verifier))

    jar.add(codec.flow_cookie(CSRF_STATE_COOKIE, csrf_token))
    jar.add(codec.nonce_cookie(nonce))
    if redirect_to:
        jar.add(codec.flow_cookie(LOGIN_REDIRECT_COOKIE, redirect_to))
    else:
        jar.remove(LOGIN_REDIRECT_COOKIE)

    hint = _id_token_hint(jar)
    logger.info(
        "oidc_login_started",
        extra={"has_id_token_hint": hint is not None, "pkce": code_challenge is not None},
    )
    return config.authorization_url(
        csrf_token=csrf_token,
        nonce=nonce,
        redirect_uri=redirect_uri,
        id_token_hint=hint,
        code_challenge=code_challenge,
    )


def check_csrf_state(jar: EncryptedCookieJar, state: str | None) -> None:
    """Compare the callback ``state`` with the CSRF cookie and consume it.

    The cookie is staged for deletion before the comparison, so it is gone
    whatever the outcome.

    Raises:
        CsrfMismatch: If either value is absent or they differ.
    """
    expected = jar.get(CSRF_STATE_COOKIE)
    jar.remove(CSRF_STATE_COOKIE)
    if not state or expected is None:
        raise CsrfMismatch(missing=True)
    if not hmac.compare_digest(state.encode(), expected.encode()):
        raise CsrfMismatch(missing=False)


async def complete_login(
    client: OidcClient,
    codec: AuthCookieCodec,
    jar: EncryptedCookieJar,
    *,
    redirect_uri: str,
    state: str | None,
    code: str | None,
    error: str | None = None,
    error_description: str | None = None,
) -> str:
    """Finish a login attempt from the provider's callback.

    Args:
        client: OIDC client.
        codec: Cookie codec.
        jar: Request cookie jar; session cookies are staged here.
        redirect_uri: Same callback URL that was sent at login.
        state: ``state`` query parameter.
        code: ``code`` query parameter.
        error: ``error`` query parameter, if the provider sent one.
        error_description: ``error_description`` query parameter.

    Returns:
        Where to send the browser next.

    Raises:
        CsrfMismatch: ``state`` missing or not matching (checked first; no
            token exchange happens).
        AuthorizationRejected: Provider reported an error or sent no code.
        TokenExchangeFailure: Code exchange failed.
        MissingRefreshToken, MissingNonce, MissingIdToken,
        ClaimsVerificationError, UserInfoFailure: See
            :func:`~vestibule.infra.auth.session.establish_session`.
    """
    check_csrf_state(jar, state)

    if error:
        raise AuthorizationRejected(error, error_description or "")
    if not code:
        raise AuthorizationRejected("invalid_request", "callback carried no authorization code")

    code_verifier = jar.get(PKCE_VERIFIER_COOKIE)
    if code_verifier is not None:
        jar.remove(PKCE_VERIFIER_COOKIE)

    tokens = await client.exchange_code(code, redirect_uri, code_verifier)
    session = await establish_session(client, tokens, jar.get(NONCE_COOKIE))
    codec.write(jar, session.cookies)

    target = jar.get(LOGIN_REDIRECT_COOKIE) or DEFAULT_POST_LOGIN_REDIRECT
    jar.remove(LOGIN_REDIRECT_COOKIE)
    logger.info("oidc_login_completed", extra={"subject": session.claims.subject})
    return target


async def logout(client: OidcClient, codec: AuthCookieCodec, jar: EncryptedCookieJar) -> None:
    """Revoke the session tokens and stage removal of the session cookies.

    Revocation is best-effort and skipped when the provider has no
    revocation endpoint; the cookies are cleared regardless.
    """
    refresh_token = jar.get(REFRESH_TOKEN_COOKIE)
    access_token = jar.get(ACCESS_TOKEN_COOKIE)

    if refresh_token:
        await client.revoke_token(refresh_token, "refresh_token")
    if access_token:
        await client.revoke_token(access_token, "access_token")

    codec.clear(jar)
    logger.info("oidc_logout", extra={"had_session": refresh_token is not None})
