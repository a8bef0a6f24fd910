"""Browser-facing OIDC endpoints: login, callback and logout.

All three answer with a 303 redirect on success. Every response, error
responses included, carries the cookie changes staged during the request,
so a failed callback still consumes the CSRF cookie.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, Response
from fastapi.responses import RedirectResponse

from vestibule.foundation.domain.exceptions import DomainError
from vestibule.infra.auth import flow
from vestibule.infra.auth.dependencies import CookieCodecDep, OidcClientDep
from vestibule.infra.fastapi.error_handlers import domain_error_response

if TYPE_CHECKING:
    from vestibule.infra.auth.oidc_client import OidcClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _origin(request: Request) -> str:
    return f"{request.url.scheme}://{request.url.netloc}"


def _redirect_uri(request: Request, client: OidcClient) -> str:
    configured = client.config.redirect_uri
    return configured or str(request.url_for("oidc_callback"))


def _safe_target(request: Request, redirect_to: str | None) -> str | None:
    if redirect_to is None:
        return None
    if flow.is_safe_redirect(redirect_to, _origin(request)):
        return redirect_to
    logger.warning("oidc_unsafe_redirect_ignored", extra={"path": request.url.path})
    return None


@router.get("/login", name="oidc_login")
async def login(
    request: Request,
    client: OidcClientDep,
    codec: CookieCodecDep,
    redirect_to: str | None = None,
) -> Response:
    """Start the authorization code flow.

    Args:
        redirect_to: Same-origin path or URL to land on after login.
    """
    jar = codec.jar(request)
    url = flow.begin_login(
        client,
        codec,
        jar,
        redirect_uri=_redirect_uri(request, client),
        redirect_to=_safe_target(request, redirect_to),
    )
    response = RedirectResponse(url, status_code=303)
    jar.apply(response)
    return response


@router.get("/callback", name="oidc_callback")
async def callback(
    request: Request,
    client: OidcClientDep,
    codec: CookieCodecDep,
    state: str | None = None,
    code: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
) -> Response:
    """Receive the provider's redirect and establish the session."""
    jar = codec.jar(request)
    response: Response
    try:
        target = await flow.complete_login(
            client,
            codec,
            jar,
            redirect_uri=_redirect_uri(request, client),
            state=state,
            code=code,
            error=error,
            error_description=error_description,
        )
    except DomainError as exc:
        logger.warning(
            "oidc_callback_failed",
            extra={"error_code": exc.error_code, "status": exc.status_code},
        )
        response = domain_error_response(request, exc)
    else:
        response = RedirectResponse(target, status_code=303)
    jar.apply(response)
    return response


@router.api_route("/logout", methods=["GET", "POST"], name="oidc_logout")
async def logout(
    request: Request,
    client: OidcClientDep,
    codec: CookieCodecDep,
    redirect_to: str | None = None,
) -> Response:
    """Revoke the session tokens and clear the session cookies."""
    jar = codec.jar(request)
    await flow.logout(client, codec, jar)
    target = _safe_target(request, redirect_to) or flow.DEFAULT_POST_LOGIN_REDIRECT
    response = RedirectResponse(target, status_code=303)
    jar.apply(response)
    return response
