"""Shared fixtures: a fake identity provider and the assembled application."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
import pytest_asyncio
from _idp import CLIENT_ID, CLIENT_SECRET, ISSUER, FakeIdP
from _support import build_app
from fastapi.testclient import TestClient

from vestibule.infra.auth.cookies import (
    AuthCookieCodec,
    CookieCipher,
    CookiePolicy,
    load_or_create_cookie_key,
)
from vestibule.infra.auth.oidc_client import OidcClient, OidcClientConfig
from vestibule.infra.auth.settings import AuthSettings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path

    from fastapi import FastAPI


@pytest.fixture()
def idp() -> FakeIdP:
    return FakeIdP()


@pytest.fixture()
def auth_settings(tmp_path: Path) -> AuthSettings:
    return AuthSettings(
        _env_file=None,
        issuer=ISSUER,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        cookie_key_path=str(tmp_path / "cookie_key.bin"),
    )


@pytest.fixture()
def cipher(auth_settings: AuthSettings) -> CookieCipher:
    """Cipher over the same key file the application uses."""
    return CookieCipher(load_or_create_cookie_key(auth_settings.cookie_key_path))


@pytest.fixture()
def codec(cipher: CookieCipher) -> AuthCookieCodec:
    return AuthCookieCodec(cipher, CookiePolicy())


@pytest.fixture()
def app(idp: FakeIdP, auth_settings: AuthSettings) -> FastAPI:
    return build_app(idp, auth_settings)


@pytest.fixture()
def client(app: FastAPI, cipher: CookieCipher) -> Iterator[TestClient]:
    """TestClient that does not follow redirects (lifespan hooks executed).

    Depends on ``cipher`` so the key file exists before startup.
    """
    with TestClient(app, follow_redirects=False, raise_server_exceptions=False) as c:
        yield c


@pytest_asyncio.fixture()
async def oidc_client(idp: FakeIdP) -> AsyncIterator[OidcClient]:
    """OIDC client talking to the fake provider, outside any application."""
    http_client = httpx.AsyncClient(transport=idp.transport)
    config = OidcClientConfig(
        metadata=idp.metadata(),
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
    )
    client = OidcClient(config, http_client, owns_http_client=True)
    yield client
    await client.aclose()
