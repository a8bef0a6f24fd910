"""Tests for OidcSessionMiddleware: pass-through, refresh, re-authentication."""

from __future__ import annotations

import pytest
from _idp import FakeIdP
from _support import build_app, response_cookie, set_session_cookies
from fastapi.testclient import TestClient
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from vestibule.infra.auth.cookies import (
    ACCESS_TOKEN_COOKIE,
    ADDITIONAL_CLAIMS_COOKIE,
    ID_TOKEN_COOKIE,
    NONCE_COOKIE,
    REFRESH_TOKEN_COOKIE,
    CookieCipher,
)
from vestibule.infra.auth.middleware.oidc_session import AUTH_ERROR_HEADER, OidcSessionMiddleware
from vestibule.infra.auth.settings import AuthSettings

NONCE = "session-nonce"


def _session(id_token: str, **overrides: str) -> dict[str, str]:
    values = {
        ID_TOKEN_COOKIE: id_token,
        ACCESS_TOKEN_COOKIE: "at-0",
        REFRESH_TOKEN_COOKIE: "rt-0",
        ADDITIONAL_CLAIMS_COOKIE: '{"groups":["staff"]}',
        NONCE_COOKIE: NONCE,
    }
    values.update(overrides)
    return values


@pytest.mark.integration
class TestVerifiedSession:
    def test_valid_session_passes_through(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        set_session_cookies(client, cipher, _session(idp.mint_id_token(nonce=NONCE)))

        response = client.get("/protected")

        assert response.status_code == 200
        assert response.json() == {
            "sub": "user-123",
            "groups": ["staff"],
            "email": "ada@example.com",
        }
        assert idp.calls("/token") == []
        assert idp.calls("/userinfo") == []
        assert "set-cookie" not in response.headers

    def test_non_get_passes_through(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        set_session_cookies(client, cipher, _session(idp.mint_id_token(nonce=NONCE)))
        response = client.post("/protected")
        assert response.status_code == 200
        assert response.json() == {"written_by": "user-123"}

    def test_group_requirement(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        set_session_cookies(client, cipher, _session(idp.mint_id_token(nonce=NONCE)))

        assert client.get("/staff-only").status_code == 200
        forbidden = client.get("/admins-only")
        assert forbidden.status_code == 403
        assert forbidden.json()["error_code"] == "AUTHORIZATION_ERROR"

    def test_user_without_groups_is_in_none(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        set_session_cookies(
            client,
            cipher,
            _session(idp.mint_id_token(nonce=NONCE), **{ADDITIONAL_CLAIMS_COOKIE: '{"groups":null}'}),
        )
        assert client.get("/staff-only").status_code == 403


@pytest.mark.integration
class TestRefresh:
    def test_expired_token_refreshed_once(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        expired = idp.mint_id_token(nonce=NONCE, expires_in=-60)
        set_session_cookies(client, cipher, _session(expired))
        idp.nonce = NONCE
        idp.groups = ["staff", "ops"]

        response = client.get("/protected")

        assert response.status_code == 200
        assert response.json()["groups"] == ["staff", "ops"]
        assert len(idp.calls("/token")) == 1
        new_id_token = response_cookie(response, cipher, ID_TOKEN_COOKIE)
        assert new_id_token is not None
        assert new_id_token != expired
        assert response_cookie(response, cipher, REFRESH_TOKEN_COOKIE) != "rt-0"
        assert response_cookie(response, cipher, ACCESS_TOKEN_COOKIE) != "at-0"
        assert (
            response_cookie(response, cipher, ADDITIONAL_CLAIMS_COOKIE)
            == '{"groups":["staff","ops"]}'
        )

    def test_refreshed_cookies_survive_handler_failure(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        set_session_cookies(client, cipher, _session(idp.mint_id_token(nonce=NONCE, expires_in=-60)))
        idp.nonce = NONCE

        response = client.get("/broken")

        assert response.status_code == 500
        assert response.json()["error_code"] == "INTERNAL_ERROR"
        assert len(idp.calls("/token")) == 1
        assert response_cookie(response, cipher, REFRESH_TOKEN_COOKIE) not in (None, "rt-0")
        assert response_cookie(response, cipher, ID_TOKEN_COOKIE) is not None

    def test_token_for_another_nonce_refreshed(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        set_session_cookies(client, cipher, _session(idp.mint_id_token(nonce="stale")))
        idp.nonce = NONCE

        response = client.get("/protected")

        assert response.status_code == 200
        assert len(idp.calls("/token")) == 1

    def test_refresh_rejected_requires_reauth(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        set_session_cookies(client, cipher, _session(idp.mint_id_token(nonce=NONCE, expires_in=-60)))
        idp.token_error = (400, {"error": "invalid_grant"})

        response = client.get("/protected")

        assert response.status_code == 303
        assert "invalid_grant" in response.headers[AUTH_ERROR_HEADER]
        assert len(idp.calls("/token")) == 1
        assert "set-cookie" not in response.headers

    def test_refreshed_token_with_unusable_header_requires_reauth(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        set_session_cookies(client, cipher, _session(idp.mint_id_token(nonce=NONCE, expires_in=-60)))
        idp.nonce = NONCE
        idp.id_token_header = {"alg": "RS256", "typ": "JWT", "kid": 7}

        response = client.get("/protected")

        assert response.status_code == 303
        assert "malformed" in response.headers[AUTH_ERROR_HEADER]
        assert len(idp.calls("/token")) == 1

    def test_refreshed_token_must_match_nonce(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        set_session_cookies(client, cipher, _session(idp.mint_id_token(nonce=NONCE, expires_in=-60)))
        idp.nonce = "different"

        response = client.post("/protected")

        assert response.status_code == 401
        assert "nonce mismatch" in response.json()["detail"]
        assert len(idp.calls("/token")) == 1

    def test_no_token_endpoint_redirects_to_login(
        self, auth_settings: AuthSettings, cipher: CookieCipher
    ) -> None:
        idp = FakeIdP(token_endpoint=False)
        with TestClient(build_app(idp, auth_settings), follow_redirects=False) as client:
            set_session_cookies(
                client, cipher, _session(idp.mint_id_token(nonce=NONCE, expires_in=-60))
            )
            response = client.get("/protected", params={"x": "1"})

        assert response.status_code == 303
        assert response.headers["location"] == (
            "/auth/login?redirect_to=http%3A%2F%2Ftestserver%2Fprotected%3Fx%3D1"
        )
        assert response.headers[AUTH_ERROR_HEADER] == "ID token verification failed: token expired"
        assert idp.calls("/token") == []


@pytest.mark.integration
class TestReauthRequired:
    def test_get_without_session_redirects(self, client: TestClient) -> None:
        response = client.get("/protected")
        assert response.status_code == 303
        assert response.headers["location"].startswith("/auth/login?redirect_to=")
        assert response.headers[AUTH_ERROR_HEADER] == "Missing id_token cookie"

    def test_post_without_session_gets_401(self, client: TestClient) -> None:
        response = client.post("/protected")

        assert response.status_code == 401
        assert response.headers["content-type"] == "application/problem+json"
        body = response.json()
        assert body["error_code"] == "REAUTHENTICATION_REQUIRED"
        assert body["detail"] == "Missing id_token cookie"
        assert "location" not in response.headers

    @pytest.mark.parametrize(
        "missing", [ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, ADDITIONAL_CLAIMS_COOKIE]
    )
    def test_partial_session_is_no_session(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher, missing: str
    ) -> None:
        values = _session(idp.mint_id_token(nonce=NONCE))
        del values[missing]
        set_session_cookies(client, cipher, values)

        response = client.get("/protected")

        assert response.status_code == 303
        assert response.headers[AUTH_ERROR_HEADER] == f"Missing {missing} cookie"

    def test_missing_nonce_cookie(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        values = _session(idp.mint_id_token(nonce=NONCE))
        del values[NONCE_COOKIE]
        set_session_cookies(client, cipher, values)

        response = client.get("/protected")

        assert response.headers[AUTH_ERROR_HEADER] == "Nonce cookie missing"
        assert idp.calls("/token") == []

    def test_cookie_under_wrong_name_is_rejected(
        self, client: TestClient, idp: FakeIdP, cipher: CookieCipher
    ) -> None:
        set_session_cookies(client, cipher, _session(idp.mint_id_token(nonce=NONCE)))
        client.cookies.set(ACCESS_TOKEN_COOKIE, cipher.encrypt(REFRESH_TOKEN_COOKIE, "rt-0"))

        response = client.get("/protected")

        assert response.headers[AUTH_ERROR_HEADER] == "Missing access_token cookie"

    @pytest.mark.parametrize("path", ["/health", "/healthz", "/openapi.json", "/auth/login"])
    def test_excluded_paths(self, client: TestClient, path: str) -> None:
        response = client.get(path)
        assert AUTH_ERROR_HEADER not in response.headers
        assert response.status_code in (200, 303)


@pytest.mark.integration
class TestCrossOrigin:
    ORIGIN = "https://spa.example.com"

    def test_reauth_header_exposed_to_browser(self, client: TestClient) -> None:
        response = client.get("/protected", headers={"Origin": self.ORIGIN})

        assert response.status_code == 303
        assert response.headers["access-control-allow-origin"] == "*"
        exposed = response.headers["access-control-expose-headers"]
        assert AUTH_ERROR_HEADER.lower() in exposed.lower()

    def test_preflight_on_guarded_path_not_gated(self, client: TestClient) -> None:
        response = client.options(
            "/protected",
            headers={"Origin": self.ORIGIN, "Access-Control-Request-Method": "POST"},
        )

        assert response.status_code == 200
        assert AUTH_ERROR_HEADER not in response.headers
        assert "POST" in response.headers["access-control-allow-methods"]


@pytest.mark.unit
class TestUninitialised:
    def test_missing_app_state_returns_503(self) -> None:
        async def homepage(request: Request) -> Response:
            return JSONResponse({"ok": True})

        app = Starlette(routes=[Route("/", homepage)])
        app.add_middleware(OidcSessionMiddleware)
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/")

        assert response.status_code == 503
        assert response.json()["error_code"] == "AUTH_UNAVAILABLE"
