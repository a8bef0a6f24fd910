"""Encrypted cookie storage for the OIDC session.

The session lives entirely in the browser: each value (ID token, access
token, refresh token, supplemental claims, plus the login-flow nonce,
CSRF state, redirect target and PKCE verifier) is its own cookie,
encrypted with AES-GCM under a server-held key. The cookie name is bound
in as associated data, so a value lifted from one cookie does not decrypt
under another name.

Wire format of a cookie value: ``base64url(nonce[12] || ciphertext || tag)``
without padding.

Design decisions:
- A value that fails decryption (tampered, wrong key, truncated) is
  treated exactly like a missing cookie.
- Changes are staged on a request-scoped :class:`EncryptedCookieJar` and
  written onto the response in one step, so partial failures never leave
  half a session on the client.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from vestibule.foundation.domain.claims import SupplementalClaims
from vestibule.infra.auth.errors import MalformedCookie, MissingCookie

if TYPE_CHECKING:
    from collections.abc import Mapping

    from starlette.requests import Request
    from starlette.responses import Response

logger = logging.getLogger(__name__)

ID_TOKEN_COOKIE = "id_token"
ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"
ADDITIONAL_CLAIMS_COOKIE = "additional_claims"
NONCE_COOKIE = "nonce"
CSRF_STATE_COOKIE = "csrf_state"
LOGIN_REDIRECT_COOKIE = "login_redirect_to"
PKCE_VERIFIER_COOKIE = "pkce_verifier"

# Decode order; the first missing cookie is reported
SESSION_COOKIES = (
    ID_TOKEN_COOKIE,
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    ADDITIONAL_CLAIMS_COOKIE,
)

COOKIE_PATH = "/"
KEY_LENGTH = 32
_NONCE_LEN = 12


def _b64u_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64u_decode(payload: str) -> bytes:
    padded = payload + "=" * (-len(payload) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def load_or_create_cookie_key(path: str | Path) -> bytes:
    """Load the cookie key from ``path``, generating it on first run.

    The file holds the urlsafe-base64 encoding of a 32-byte key and is
    created with owner-only permissions.

    Args:
        path: Key file location.

    Returns:
        The raw 32-byte key.

    Raises:
        ValueError: If an existing file does not hold a valid key.
    """
    key_path = Path(path)
    if not key_path.exists():
        key = AESGCM.generate_key(bit_length=KEY_LENGTH * 8)
        key_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as fh:
            fh.write(base64.urlsafe_b64encode(key).decode("ascii"))
        logger.info("cookie_key_generated", extra={"path": str(key_path)})
        return key

    try:
        key = base64.urlsafe_b64decode(key_path.read_text(encoding="ascii").strip())
    except (binascii.Error, UnicodeDecodeError) as exc:
        msg = f"Cookie key file {key_path} is not urlsafe base64"
        raise ValueError(msg) from exc
    if len(key) != KEY_LENGTH:
        msg = f"Cookie key file {key_path} must decode to {KEY_LENGTH} bytes"
        raise ValueError(msg)
    return key


class CookieCipher:
    """AES-GCM encryption of cookie values, bound to the cookie name.

    Args:
        key: 32-byte symmetric key.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            msg = f"Cookie key must be {KEY_LENGTH} bytes"
            raise ValueError(msg)
        self._aead = AESGCM(key)

    def encrypt(self, name: str, value: str) -> str:
        nonce = os.urandom(_NONCE_LEN)
        ciphertext = self._aead.encrypt(nonce, value.encode("utf-8"), name.encode("utf-8"))
        return _b64u_encode(nonce + ciphertext)

    def decrypt(self, name: str, token: str) -> str | None:
        """Decrypt a cookie value, or return None if it does not authenticate."""
        try:
            raw = _b64u_decode(token)
        except (binascii.Error, ValueError):
            return None
        if len(raw) <= _NONCE_LEN:
            return None
        try:
            plaintext = self._aead.decrypt(raw[:_NONCE_LEN], raw[_NONCE_LEN:], name.encode("utf-8"))
        except InvalidTag:
            return None
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            return None


@dataclass(frozen=True, slots=True)
class CookiePolicy:
    """Attributes applied to every auth cookie.

    Attributes:
        max_age: Lifetime of session and nonce cookies in seconds.
        secure: Set the ``Secure`` attribute.
        same_site: ``SameSite`` attribute value.
    """

    max_age: int = 14 * 24 * 60 * 60
    secure: bool = False
    same_site: Literal["lax", "strict", "none"] = "lax"


@dataclass(frozen=True, slots=True)
class Cookie:
    """A plaintext cookie to be set.

    Attributes:
        name: Cookie name.
        value: Plaintext value; encrypted when the jar is applied.
        max_age: Lifetime in seconds, or None for a browser-session cookie.
    """

    name: str
    value: str
    max_age: int | None = None


class EncryptedCookieJar:
    """Request-scoped view of the auth cookies with staged changes.

    Reads see staged changes first, then the decrypted request cookies.

    Args:
        cipher: Cookie cipher.
        policy: Cookie attributes.
        request_cookies: Raw cookies sent by the client.
    """

    def __init__(
        self,
        cipher: CookieCipher,
        policy: CookiePolicy,
        request_cookies: Mapping[str, str],
    ) -> None:
        self._cipher = cipher
        self._policy = policy
        self._request_cookies = dict(request_cookies)
        self._pending: dict[str, Cookie | None] = {}

    def get(self, name: str) -> str | None:
        if name in self._pending:
            staged = self._pending[name]
            return staged.value if staged is not None else None
        raw = self._request_cookies.get(name)
        if raw is None:
            return None
        value = self._cipher.decrypt(name, raw)
        if value is None:
            logger.info("cookie_rejected", extra={"cookie_name": name})
        return value

    def add(self, cookie: Cookie) -> None:
        self._pending[cookie.name] = cookie

    def remove(self, name: str) -> None:
        self._pending[name] = None

    @property
    def changed(self) -> bool:
        return bool(self._pending)

    def apply(self, response: Response) -> None:
        """Write staged changes onto ``response`` as Set-Cookie headers."""
        for name, cookie in self._pending.items():
            if cookie is None:
                response.delete_cookie(
                    name,
                    path=COOKIE_PATH,
                    secure=self._policy.secure,
                    httponly=True,
                    samesite=self._policy.same_site,
                )
                continue
            response.set_cookie(
                name,
                self._cipher.encrypt(name, cookie.value),
                max_age=cookie.max_age,
                path=COOKIE_PATH,
                secure=self._policy.secure,
                httponly=True,
                samesite=self._policy.same_site,
            )


@dataclass(frozen=True, slots=True)
class SessionCookieSet:
    """The persisted session: three tokens plus supplemental claims.

    Attributes:
        id_token: Compact ID token as issued.
        access_token: Bearer access token.
        refresh_token: Refresh token.
        supplemental: Claims captured from userinfo.
    """

    id_token: str
    access_token: str
    refresh_token: str
    supplemental: SupplementalClaims


class AuthCookieCodec:
    """Serializes a :class:`SessionCookieSet` to cookies and back.

    Decoding only checks presence and shape. It does not verify the ID
    token; that is the session middleware's job.

    Args:
        cipher: Cookie cipher built from the startup key.
        policy: Cookie attributes.
    """

    def __init__(self, cipher: CookieCipher, policy: CookiePolicy | None = None) -> None:
        self._cipher = cipher
        self._policy = policy or CookiePolicy()

    @property
    def policy(self) -> CookiePolicy:
        return self._policy

    def jar(self, request: Request) -> EncryptedCookieJar:
        """Create the cookie jar for ``request``."""
        return EncryptedCookieJar(self._cipher, self._policy, request.cookies)

    def encode(self, session: SessionCookieSet) -> tuple[Cookie, ...]:
        """Serialize ``session`` into its four cookies."""
        max_age = self._policy.max_age
        return (
            Cookie(ID_TOKEN_COOKIE, session.id_token, max_age),
            Cookie(ACCESS_TOKEN_COOKIE, session.access_token, max_age),
            Cookie(REFRESH_TOKEN_COOKIE, session.refresh_token, max_age),
            Cookie(ADDITIONAL_CLAIMS_COOKIE, session.supplemental.to_json(), max_age),
        )

    def decode(self, jar: EncryptedCookieJar) -> SessionCookieSet:
        """Read the session from ``jar``.

        Cookies are checked in a fixed order (ID token, access token,
        refresh token, supplemental claims); the first missing one fails
        the decode without looking at the rest.

        Raises:
            MissingCookie: Naming the first missing cookie.
            MalformedCookie: If the supplemental claims do not parse.
        """
        values: dict[str, str] = {}
        for name in SESSION_COOKIES:
            value = jar.get(name)
            if value is None:
                raise MissingCookie(name)
            values[name] = value

        try:
            supplemental = SupplementalClaims.from_json(values[ADDITIONAL_CLAIMS_COOKIE])
        except ValueError as exc:
            raise MalformedCookie(ADDITIONAL_CLAIMS_COOKIE) from exc

        return SessionCookieSet(
            id_token=values[ID_TOKEN_COOKIE],
            access_token=values[ACCESS_TOKEN_COOKIE],
            refresh_token=values[REFRESH_TOKEN_COOKIE],
            supplemental=supplemental,
        )

    def write(self, jar: EncryptedCookieJar, session: SessionCookieSet) -> None:
        """Stage ``session`` on ``jar``, replacing any previous session cookies."""
        for cookie in self.encode(session):
            jar.add(cookie)

    def clear(self, jar: EncryptedCookieJar) -> None:
        """Stage removal of the session cookies and the nonce cookie."""
        for name in (*SESSION_COOKIES, NONCE_COOKIE):
            jar.remove(name)

    def nonce_cookie(self, nonce: str) -> Cookie:
        return Cookie(NONCE_COOKIE, nonce, self._policy.max_age)

    @staticmethod
    def flow_cookie(name: str, value: str) -> Cookie:
        """A login-flow cookie that lives only for the browser session."""
        return Cookie(name, value)
