"""Tests for provider discovery and metadata validation."""

from __future__ import annotations

from typing import Any

import httpx
import pytest
from _idp import ISSUER, FakeIdP

from vestibule.infra.auth.discovery import discover, parse_provider_metadata
from vestibule.infra.auth.errors import DiscoveryFailure


def _client(handler: Any) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestParseProviderMetadata:
    def test_full_document(self, idp: FakeIdP) -> None:
        metadata = parse_provider_metadata(ISSUER, idp.discovery_document(), idp.jwks())
        assert metadata.issuer == ISSUER
        assert metadata.authorization_endpoint == f"{ISSUER}/authorize"
        assert metadata.token_endpoint == f"{ISSUER}/token"
        assert metadata.revocation_endpoint == f"{ISSUER}/revoke"
        assert metadata.id_token_signing_algs == ("RS256",)
        assert metadata.code_challenge_methods == ("S256",)
        assert len(metadata.jwks.keys) == 1
        assert metadata.supports_refresh
        assert metadata.supports_revocation

    def test_issuer_trailing_slash_ignored(self, idp: FakeIdP) -> None:
        metadata = parse_provider_metadata(f"{ISSUER}/", idp.discovery_document(), idp.jwks())
        assert metadata.issuer == ISSUER

    def test_issuer_mismatch(self, idp: FakeIdP) -> None:
        with pytest.raises(DiscoveryFailure, match="issuer mismatch"):
            parse_provider_metadata(
                "https://other.example.com", idp.discovery_document(), idp.jwks()
            )

    @pytest.mark.parametrize("field", ["authorization_endpoint", "jwks_uri"])
    def test_required_endpoint_missing(self, idp: FakeIdP, field: str) -> None:
        doc = idp.discovery_document()
        del doc[field]
        with pytest.raises(DiscoveryFailure, match=field):
            parse_provider_metadata(ISSUER, doc, idp.jwks())

    def test_optional_endpoints_may_be_absent(self) -> None:
        idp = FakeIdP(token_endpoint=False, userinfo_endpoint=False, revocation_endpoint=False)
        metadata = parse_provider_metadata(ISSUER, idp.discovery_document(), idp.jwks())
        assert metadata.token_endpoint is None
        assert metadata.userinfo_endpoint is None
        assert not metadata.supports_refresh
        assert not metadata.supports_revocation

    def test_endpoint_must_be_url(self, idp: FakeIdP) -> None:
        doc = idp.discovery_document()
        doc["token_endpoint"] = "/token"
        with pytest.raises(DiscoveryFailure, match="not a URL"):
            parse_provider_metadata(ISSUER, doc, idp.jwks())

    def test_none_algorithm_dropped(self, idp: FakeIdP) -> None:
        doc = idp.discovery_document()
        doc["id_token_signing_alg_values_supported"] = ["none"]
        metadata = parse_provider_metadata(ISSUER, doc, idp.jwks())
        assert metadata.id_token_signing_algs == ("RS256",)

    def test_empty_jwks(self, idp: FakeIdP) -> None:
        with pytest.raises(DiscoveryFailure, match="JWK set"):
            parse_provider_metadata(ISSUER, idp.discovery_document(), {"keys": []})


@pytest.mark.unit
class TestDiscover:
    @pytest.mark.asyncio
    async def test_fetches_document_then_keys(self, idp: FakeIdP) -> None:
        async with httpx.AsyncClient(transport=idp.transport) as client:
            metadata = await discover(ISSUER, client=client)
        assert metadata.jwks_uri == f"{ISSUER}/jwks"
        assert [r.url.path for r in idp.requests] == [
            "/.well-known/openid-configuration",
            "/jwks",
        ]

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        async with _client(lambda request: httpx.Response(500)) as client:
            with pytest.raises(DiscoveryFailure, match="HTTP 500"):
                await discover(ISSUER, client=client)

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(DiscoveryFailure, match="ConnectError"):
                await discover(ISSUER, client=client)

    @pytest.mark.asyncio
    async def test_non_json_document(self) -> None:
        async with _client(lambda request: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(DiscoveryFailure, match="not valid JSON"):
                await discover(ISSUER, client=client)

    @pytest.mark.asyncio
    async def test_missing_revocation_endpoint_is_not_fatal(self) -> None:
        idp = FakeIdP(revocation_endpoint=False)
        async with httpx.AsyncClient(transport=idp.transport) as client:
            metadata = await discover(ISSUER, client=client)
        assert metadata.revocation_endpoint is None
