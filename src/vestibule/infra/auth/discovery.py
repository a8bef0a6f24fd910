"""OpenID Provider discovery.

Fetches ``{issuer}/.well-known/openid-configuration`` and the JWK set it
points to, once, at process startup. The result is an immutable
:class:`ProviderMetadata` shared read-only by every request; picking up
new provider metadata or rotated keys requires a restart.

Design decisions:
- The discovered ``issuer`` must equal the configured issuer (trailing
  slash ignored), per OpenID Connect Discovery section 4.3.
- ``token_endpoint``, ``userinfo_endpoint`` and ``revocation_endpoint`` are
  optional. Their absence disables the refresh path, supplemental claims
  and revocation respectively instead of failing startup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from jwt import PyJWKSet
from jwt.exceptions import PyJWKError, PyJWKSetError

from vestibule.infra.auth.errors import DiscoveryFailure

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"

_DEFAULT_SIGNING_ALGS = ("RS256",)


@dataclass(frozen=True, slots=True)
class ProviderMetadata:
    """Identity provider metadata and signing keys.

    Attributes:
        issuer: Issuer identifier, exactly as the provider reports it.
        authorization_endpoint: Browser redirect target for login.
        jwks_uri: Where the signing keys were fetched from.
        jwks: Parsed signing keys.
        token_endpoint: Code and refresh grant endpoint, if advertised.
        userinfo_endpoint: Userinfo endpoint, if advertised.
        revocation_endpoint: RFC 7009 revocation endpoint, if advertised.
        end_session_endpoint: RP-initiated logout endpoint, if advertised.
        id_token_signing_algs: Algorithms the provider signs ID tokens with.
        code_challenge_methods: PKCE methods the provider supports.
    """

    issuer: str
    authorization_endpoint: str
    jwks_uri: str
    jwks: PyJWKSet
    token_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    revocation_endpoint: str | None = None
    end_session_endpoint: str | None = None
    id_token_signing_algs: tuple[str, ...] = _DEFAULT_SIGNING_ALGS
    code_challenge_methods: tuple[str, ...] = ()

    @property
    def supports_refresh(self) -> bool:
        return self.token_endpoint is not None

    @property
    def supports_revocation(self) -> bool:
        return self.revocation_endpoint is not None


def _url_field(issuer: str, doc: Mapping[str, Any], name: str, *, required: bool) -> str | None:
    value = doc.get(name)
    if value is None or value == "":
        if required:
            raise DiscoveryFailure(issuer, f"metadata is missing '{name}'")
        return None
    if not isinstance(value, str) or not value.startswith(("https://", "http://")):
        raise DiscoveryFailure(issuer, f"metadata field '{name}' is not a URL")
    return value


def _str_tuple(doc: Mapping[str, Any], name: str) -> tuple[str, ...]:
    value = doc.get(name)
    if not isinstance(value, list):
        return ()
    return tuple(v for v in value if isinstance(v, str))


async def _get_json(client: httpx.AsyncClient, url: str, issuer: str, what: str) -> Any:
    try:
        response = await client.get(url, headers={"Accept": "application/json"})
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as exc:
        raise DiscoveryFailure(
            issuer, f"{what} request returned HTTP {exc.response.status_code}"
        ) from exc
    except httpx.HTTPError as exc:
        raise DiscoveryFailure(issuer, f"{what} request failed: {type(exc).__name__}") from exc
    except ValueError as exc:
        raise DiscoveryFailure(issuer, f"{what} is not valid JSON") from exc


def parse_provider_metadata(
    issuer: str,
    doc: Mapping[str, Any],
    jwks_doc: Mapping[str, Any],
) -> ProviderMetadata:
    """Validate a discovery document and JWK set into :class:`ProviderMetadata`.

    Args:
        issuer: The configured issuer URL.
        doc: Parsed discovery document.
        jwks_doc: Parsed JWK set document.

    Raises:
        DiscoveryFailure: If the metadata is malformed, the issuer does not
            match, a required endpoint is missing, or no key is usable.
    """
    discovered_issuer = doc.get("issuer")
    if not isinstance(discovered_issuer, str) or not discovered_issuer:
        raise DiscoveryFailure(issuer, "metadata is missing 'issuer'")
    if discovered_issuer.rstrip("/") != issuer.rstrip("/"):
        raise DiscoveryFailure(
            issuer, f"issuer mismatch: provider reports {discovered_issuer!r}"
        )

    try:
        jwks = PyJWKSet.from_dict(dict(jwks_doc))
    except (PyJWKSetError, PyJWKError) as exc:
        raise DiscoveryFailure(issuer, f"JWK set unusable: {exc}") from exc

    algs = tuple(a for a in _str_tuple(doc, "id_token_signing_alg_values_supported") if a != "none")

    return ProviderMetadata(
        issuer=discovered_issuer,
        authorization_endpoint=str(
            _url_field(issuer, doc, "authorization_endpoint", required=True)
        ),
        jwks_uri=str(_url_field(issuer, doc, "jwks_uri", required=True)),
        jwks=jwks,
        token_endpoint=_url_field(issuer, doc, "token_endpoint", required=False),
        userinfo_endpoint=_url_field(issuer, doc, "userinfo_endpoint", required=False),
        revocation_endpoint=_url_field(issuer, doc, "revocation_endpoint", required=False),
        end_session_endpoint=_url_field(issuer, doc, "end_session_endpoint", required=False),
        id_token_signing_algs=algs or _DEFAULT_SIGNING_ALGS,
        code_challenge_methods=_str_tuple(doc, "code_challenge_methods_supported"),
    )


async def discover(issuer: str, *, client: httpx.AsyncClient) -> ProviderMetadata:
    """Fetch provider metadata and signing keys for ``issuer``.

    Args:
        issuer: OIDC issuer URL.
        client: Shared HTTP client (timeouts are configured on the client).

    Returns:
        Validated provider metadata.

    Raises:
        DiscoveryFailure: On network error, malformed metadata, issuer
            mismatch, missing required endpoints, or an unusable JWK set.
    """
    discovery_url = issuer.rstrip("/") + WELL_KNOWN_PATH
    doc = await _get_json(client, discovery_url, issuer, "discovery document")
    if not isinstance(doc, dict):
        raise DiscoveryFailure(issuer, "discovery document is not a JSON object")

    jwks_uri = _url_field(issuer, doc, "jwks_uri", required=True)
    jwks_doc = await _get_json(client, str(jwks_uri), issuer, "JWK set")
    if not isinstance(jwks_doc, dict):
        raise DiscoveryFailure(issuer, "JWK set is not a JSON object")

    metadata = parse_provider_metadata(issuer, doc, jwks_doc)
    logger.info(
        "oidc_discovery_success",
        extra={
            "issuer": metadata.issuer,
            "jwks_uri": metadata.jwks_uri,
            "key_count": len(metadata.jwks.keys),
            "refresh_enabled": metadata.supports_refresh,
            "revocation_enabled": metadata.supports_revocation,
        },
    )
    if not metadata.supports_revocation:
        logger.warning("oidc_discovery_no_revocation_endpoint", extra={"issuer": issuer})
    return metadata
