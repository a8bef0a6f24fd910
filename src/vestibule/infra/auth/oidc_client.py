"""OIDC relying-party client: authorization URLs and provider calls.

:class:`OidcClientConfig` is the immutable client identity bound to the
discovered provider metadata. It builds authorization URLs as a pure
function of its inputs.

:class:`OidcClient` performs the network exchanges (authorization code
grant, refresh grant, userinfo, revocation) over one shared
``httpx.AsyncClient`` created at startup. Every call is a single attempt
with the client's timeout; failures are translated into the auth error
taxonomy and never retried here.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal
from urllib.parse import quote, urlencode

import httpx

from vestibule.foundation.domain.claims import SupplementalClaims
from vestibule.infra.auth.errors import TokenExchangeFailure, UserInfoFailure
from vestibule.infra.auth.id_token import IdTokenVerifier

if TYPE_CHECKING:
    from vestibule.foundation.domain.claims import IdTokenClaims
    from vestibule.infra.auth.discovery import ProviderMetadata

logger = logging.getLogger(__name__)

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
_DEFAULT_SCOPES = ("openid", "profile", "offline_access")

TokenAuthMethod = Literal["client_secret_basic", "client_secret_post"]


@dataclass(frozen=True, slots=True)
class TokenResponse:
    """Parsed response from the token endpoint.

    Attributes:
        access_token: Bearer token for the userinfo endpoint.
        token_type: Normally "Bearer".
        refresh_token: Refresh token, if the provider issued one.
        id_token: ID token, if the provider issued one.
        expires_in: Access token lifetime in seconds, if reported.
        scope: Granted scopes, if reported.
    """

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None

    @classmethod
    def from_json(cls, body: dict[str, Any]) -> TokenResponse:
        """Parse a successful token endpoint body.

        Raises:
            TokenExchangeFailure: If ``access_token`` is missing.
        """
        access_token = body.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise TokenExchangeFailure("invalid_response", "token response has no access_token")

        raw_expires_in = body.get("expires_in")
        try:
            expires_in = int(raw_expires_in) if raw_expires_in is not None else None
        except (TypeError, ValueError, OverflowError):
            expires_in = None

        def _opt(name: str) -> str | None:
            value = body.get(name)
            return str(value) if value else None

        return cls(
            access_token=access_token,
            token_type=str(body.get("token_type", "Bearer")),
            refresh_token=_opt("refresh_token"),
            id_token=_opt("id_token"),
            expires_in=expires_in,
            scope=_opt("scope"),
        )


@dataclass(frozen=True, slots=True)
class OidcClientConfig:
    """Immutable client identity bound to discovered provider metadata.

    Attributes:
        metadata: Discovered provider metadata.
        client_id: OAuth client id.
        client_secret: OAuth client secret, or None for a public client.
        redirect_uri: Registered callback URL, or None to derive it per request.
        scopes: Requested scopes; ``openid`` is always included.
        token_auth_method: How the client authenticates at the token endpoint.
        use_pkce: Send an S256 PKCE challenge when the provider allows it.
    """

    metadata: ProviderMetadata
    client_id: str
    client_secret: str | None = None
    redirect_uri: str | None = None
    scopes: tuple[str, ...] = _DEFAULT_SCOPES
    token_auth_method: TokenAuthMethod = "client_secret_basic"
    use_pkce: bool = True

    @property
    def pkce_enabled(self) -> bool:
        """PKCE is used unless disabled or the provider advertises only other methods."""
        methods = self.metadata.code_challenge_methods
        return self.use_pkce and (not methods or "S256" in methods)

    def authorization_url(
        self,
        *,
        csrf_token: str,
        nonce: str,
        redirect_uri: str,
        id_token_hint: str | None = None,
        code_challenge: str | None = None,
        scopes: tuple[str, ...] | None = None,
    ) -> str:
        """Build the authorization endpoint URL for a login attempt.

        Deterministic: identical inputs always produce the identical URL.

        Args:
            csrf_token: Value for the ``state`` parameter.
            nonce: Value for the ``nonce`` parameter.
            redirect_uri: Callback URL the provider redirects back to.
            id_token_hint: Previous ID token, if one is still around.
            code_challenge: PKCE S256 challenge, if PKCE is in use.
            scopes: Override for the configured scopes.

        Returns:
            Absolute URL to redirect the browser to.
        """
        requested = scopes if scopes is not None else self.scopes
        scope = " ".join(("openid", *(s for s in requested if s != "openid")))
        params: list[tuple[str, str]] = [
            ("response_type", "code"),
            ("client_id", self.client_id),
            ("redirect_uri", redirect_uri),
            ("scope", scope),
            ("state", csrf_token),
            ("nonce", nonce),
        ]
        if id_token_hint:
            params.append(("id_token_hint", id_token_hint))
        if code_challenge:
            params.append(("code_challenge", code_challenge))
            params.append(("code_challenge_method", "S256"))

        endpoint = self.metadata.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params, quote_via=quote)}"

    def client_auth(self) -> tuple[dict[str, str], dict[str, str]]:
        """Client authentication for token and revocation requests.

        Returns:
            ``(form_fields, headers)`` to merge into the request.
        """
        if not self.client_secret:
            return {"client_id": self.client_id}, {}
        if self.token_auth_method == "client_secret_post":
            return {"client_id": self.client_id, "client_secret": self.client_secret}, {}
        # RFC 6749 section 2.3.1: form-encode both parts before base64
        raw = f"{quote(self.client_id, safe='')}:{quote(self.client_secret, safe='')}"
        encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
        return {}, {"Authorization": f"Basic {encoded}"}


class OidcClient:
    """Network side of the relying party.

    Args:
        config: Immutable client configuration.
        http_client: Shared client; the caller owns its lifecycle unless
            ``owns_http_client`` is True.
        leeway: Clock skew tolerance for ID token verification.
        owns_http_client: Close ``http_client`` in :meth:`aclose`.
    """

    def __init__(
        self,
        config: OidcClientConfig,
        http_client: httpx.AsyncClient,
        *,
        leeway: int = 0,
        owns_http_client: bool = False,
    ) -> None:
        self._config = config
        self._http = http_client
        self._owns_http_client = owns_http_client
        self._verifier = IdTokenVerifier(config.metadata, config.client_id, leeway=leeway)

    @property
    def config(self) -> OidcClientConfig:
        return self._config

    @property
    def metadata(self) -> ProviderMetadata:
        return self._config.metadata

    def verify_id_token(self, id_token: str, nonce: str) -> IdTokenClaims:
        """Verify an ID token against the provider keys and ``nonce``.

        Raises:
            ClaimsVerificationError: If verification fails.
        """
        return self._verifier.verify(id_token, nonce)

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback query.
            redirect_uri: Must equal the value sent in the authorization request.
            code_verifier: PKCE verifier, when a challenge was sent.

        Raises:
            TokenExchangeFailure: On provider error or network failure.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier
        return await self._token_request(data)

    async def exchange_refresh_token(self, refresh_token: str) -> TokenResponse:
        """Exchange a refresh token for a new token set.

        Raises:
            TokenExchangeFailure: On provider error, network failure, or
                when the provider has no token endpoint.
        """
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def fetch_userinfo(self, access_token: str, expected_subject: str) -> SupplementalClaims:
        """Fetch supplemental claims from the userinfo endpoint.

        A provider without a userinfo endpoint yields empty supplemental
        claims. Only JSON userinfo responses are accepted.

        Args:
            access_token: Bearer token from the token response.
            expected_subject: ``sub`` of the verified ID token.

        Raises:
            UserInfoFailure: On provider error, network failure, a non-JSON
                body, a subject mismatch, or malformed supplemental claims.
        """
        endpoint = self.metadata.userinfo_endpoint
        if endpoint is None:
            return SupplementalClaims()

        try:
            response = await self._http.get(
                endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UserInfoFailure(
                f"provider returned HTTP {exc.response.status_code}",
                provider_status=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise UserInfoFailure(f"network error ({type(exc).__name__})") from exc

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("application/json"):
            raise UserInfoFailure(f"unsupported content type {content_type or 'none'!r}")

        try:
            body = response.json()
        except ValueError as exc:
            raise UserInfoFailure("response is not valid JSON") from exc
        if not isinstance(body, dict):
            raise UserInfoFailure("response is not a JSON object")

        if body.get("sub") != expected_subject:
            raise UserInfoFailure("subject does not match ID token")

        try:
            return SupplementalClaims.from_userinfo(body)
        except ValueError as exc:
            raise UserInfoFailure(str(exc)) from exc

    async def revoke_token(self, token: str, token_type_hint: str) -> bool:
        """Revoke a token at the revocation endpoint (RFC 7009).

        Best-effort: failures are logged, never raised, so logout always
        completes. Skipped when the provider has no revocation endpoint.

        Args:
            token: Token to revoke.
            token_type_hint: "refresh_token" or "access_token".

        Returns:
            True if the provider acknowledged the revocation.
        """
        endpoint = self.metadata.revocation_endpoint
        if endpoint is None:
            logger.debug("oidc_revoke_skipped_no_endpoint")
            return False

        form, headers = self._config.client_auth()
        try:
            response = await self._http.post(
                endpoint,
                data={"token": token, "token_type_hint": token_type_hint, **form},
                headers={"Content-Type": _FORM_CONTENT_TYPE, **headers},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "oidc_revoke_failed",
                extra={"status": exc.response.status_code, "token_type_hint": token_type_hint},
            )
            return False
        except httpx.HTTPError as exc:
            logger.error(
                "oidc_revoke_connection_error",
                extra={"error_type": type(exc).__name__, "token_type_hint": token_type_hint},
            )
            return False
        return True

    async def aclose(self) -> None:
        """Close the HTTP client if this instance owns it."""
        if self._owns_http_client:
            await self._http.aclose()

    async def _token_request(self, data: dict[str, str]) -> TokenResponse:
        """POST a grant to the token endpoint and parse the response.

        Raises:
            TokenExchangeFailure: On non-2xx responses, network errors, or
                an unparseable body.
        """
        endpoint = self.metadata.token_endpoint
        if endpoint is None:
            raise TokenExchangeFailure("unsupported", "provider has no token endpoint")

        form, headers = self._config.client_auth()
        try:
            response = await self._http.post(
                endpoint,
                data={**data, **form},
                headers={
                    "Content-Type": _FORM_CONTENT_TYPE,
                    "Accept": "application/json",
                    **headers,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            body = _error_body(exc.response)
            logger.warning(
                "oidc_token_request_rejected",
                extra={
                    "grant_type": data["grant_type"],
                    "status": exc.response.status_code,
                    "error": body.get("error", "unknown"),
                },
            )
            raise TokenExchangeFailure(
                error=str(body.get("error", "unknown")),
                error_description=str(body.get("error_description", "")),
                provider_status=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "oidc_token_request_error",
                extra={"grant_type": data["grant_type"], "error_type": type(exc).__name__},
            )
            raise TokenExchangeFailure("network_error", type(exc).__name__) from exc

        try:
            body_json = response.json()
        except ValueError as exc:
            raise TokenExchangeFailure("invalid_response", "body is not valid JSON") from exc
        if not isinstance(body_json, dict):
            raise TokenExchangeFailure("invalid_response", "body is not a JSON object")
        return TokenResponse.from_json(body_json)


def _error_body(response: httpx.Response) -> dict[str, Any]:
    """Parse an OAuth error body, tolerating non-JSON error pages."""
    if not response.headers.get("content-type", "").startswith("application/json"):
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
