"""Claims value objects for an authenticated OIDC session.

Three immutable shapes:

- :class:`IdTokenClaims` -- the verified contents of an ID token. The
  registered OIDC claims are typed fields; anything else the provider adds
  lands in ``extra`` untouched.
- :class:`SupplementalClaims` -- attributes that only arrive from the
  userinfo endpoint (group memberships). Persisted in the
  ``additional_claims`` cookie as a small JSON document.
- :class:`MergedClaims` -- the ID token claims with the supplemental
  fields composed in. This is what request handlers see.

:func:`merge_claims` builds the merged value by copying dataclass fields,
so a renamed field fails loudly instead of silently dropping data.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from typing import Any

_REGISTERED_CLAIMS = frozenset(
    {
        "iss",
        "sub",
        "aud",
        "exp",
        "iat",
        "nonce",
        "azp",
        "auth_time",
        "email",
        "email_verified",
        "name",
        "preferred_username",
        "given_name",
        "family_name",
        "picture",
        "locale",
    }
)


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        msg = f"Claim '{key}' must be a string"
        raise ValueError(msg)
    return value


def _required_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"Claim '{key}' must be a number"
        raise ValueError(msg)
    return int(value)


@dataclass(frozen=True, slots=True)
class IdTokenClaims:
    """Verified claims carried by an OIDC ID token.

    Attributes:
        issuer: ``iss`` -- the identity provider that issued the token.
        subject: ``sub`` -- stable user identifier at the provider.
        audience: ``aud`` -- client ids the token was issued for.
        expires_at: ``exp`` as a Unix timestamp.
        issued_at: ``iat`` as a Unix timestamp.
        nonce: ``nonce`` echoed from the authorization request.
        authorized_party: ``azp`` when the provider includes it.
        auth_time: ``auth_time`` when the provider includes it.
        email: ``email`` standard claim.
        email_verified: ``email_verified`` standard claim.
        name: ``name`` standard claim.
        preferred_username: ``preferred_username`` standard claim.
        given_name: ``given_name`` standard claim.
        family_name: ``family_name`` standard claim.
        picture: ``picture`` standard claim.
        locale: ``locale`` standard claim.
        extra: Every other claim, unmodified.
    """

    issuer: str
    subject: str
    audience: tuple[str, ...]
    expires_at: int
    issued_at: int
    nonce: str | None = None
    authorized_party: str | None = None
    auth_time: int | None = None
    email: str | None = None
    email_verified: bool | None = None
    name: str | None = None
    preferred_username: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None
    locale: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_jwt_payload(cls, payload: dict[str, Any]) -> IdTokenClaims:
        """Build claims from a decoded (already verified) JWT payload.

        Args:
            payload: Claims dict as returned by ``jwt.decode``.

        Returns:
            Typed claims.

        Raises:
            ValueError: If a registered claim is missing or has the wrong type.
        """
        issuer = _optional_str(payload, "iss")
        subject = _optional_str(payload, "sub")
        if not issuer or not subject:
            raise ValueError("ID token must carry 'iss' and 'sub'")

        raw_aud = payload.get("aud")
        if isinstance(raw_aud, str):
            audience: tuple[str, ...] = (raw_aud,)
        elif isinstance(raw_aud, list) and all(isinstance(a, str) for a in raw_aud):
            audience = tuple(raw_aud)
        else:
            raise ValueError("Claim 'aud' must be a string or list of strings")

        auth_time = _required_int(payload, "auth_time") if "auth_time" in payload else None
        email_verified = payload.get("email_verified")

        return cls(
            issuer=issuer,
            subject=subject,
            audience=audience,
            expires_at=_required_int(payload, "exp"),
            issued_at=_required_int(payload, "iat"),
            nonce=_optional_str(payload, "nonce"),
            authorized_party=_optional_str(payload, "azp"),
            auth_time=auth_time,
            email=_optional_str(payload, "email"),
            email_verified=email_verified if isinstance(email_verified, bool) else None,
            name=_optional_str(payload, "name"),
            preferred_username=_optional_str(payload, "preferred_username"),
            given_name=_optional_str(payload, "given_name"),
            family_name=_optional_str(payload, "family_name"),
            picture=_optional_str(payload, "picture"),
            locale=_optional_str(payload, "locale"),
            extra={k: v for k, v in payload.items() if k not in _REGISTERED_CLAIMS},
        )

    def to_dict(self) -> dict[str, Any]:
        """Render the claims with their wire (JWT) names.

        Absent optional claims are omitted.
        """
        result: dict[str, Any] = dict(self.extra)
        result.update(
            {
                "iss": self.issuer,
                "sub": self.subject,
                "aud": list(self.audience),
                "exp": self.expires_at,
                "iat": self.issued_at,
            }
        )
        optional = {
            "nonce": self.nonce,
            "azp": self.authorized_party,
            "auth_time": self.auth_time,
            "email": self.email,
            "email_verified": self.email_verified,
            "name": self.name,
            "preferred_username": self.preferred_username,
            "given_name": self.given_name,
            "family_name": self.family_name,
            "picture": self.picture,
            "locale": self.locale,
        }
        result.update({k: v for k, v in optional.items() if v is not None})
        return result


@dataclass(frozen=True, slots=True)
class SupplementalClaims:
    """Claims fetched out-of-band from the userinfo endpoint.

    Attributes:
        groups: Group memberships. ``None`` when the provider did not
            report any, which is a valid, distinct state from an empty tuple.
    """

    groups: tuple[str, ...] | None = None

    @classmethod
    def from_userinfo(cls, payload: dict[str, Any]) -> SupplementalClaims:
        """Extract supplemental claims from a userinfo response body.

        Raises:
            ValueError: If ``groups`` is present but not a list of strings.
        """
        raw = payload.get("groups")
        if raw is None:
            return cls()
        if not isinstance(raw, list) or not all(isinstance(g, str) for g in raw):
            raise ValueError("Claim 'groups' must be a list of strings")
        return cls(groups=tuple(raw))

    def to_json(self) -> str:
        """Serialize for the ``additional_claims`` cookie."""
        groups = list(self.groups) if self.groups is not None else None
        return json.dumps({"groups": groups}, separators=(",", ":"))

    @classmethod
    def from_json(cls, value: str) -> SupplementalClaims:
        """Parse the ``additional_claims`` cookie value.

        Raises:
            ValueError: If the value is not a JSON object of the expected shape.
        """
        payload = json.loads(value)
        if not isinstance(payload, dict):
            raise ValueError("Supplemental claims must be a JSON object")
        return cls.from_userinfo(payload)


@dataclass(frozen=True, slots=True)
class MergedClaims(IdTokenClaims):
    """Verified ID token claims with supplemental claims composed in.

    Attributes:
        groups: Group memberships from :class:`SupplementalClaims`.
    """

    groups: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render with wire names; ``groups`` is always present (may be null)."""
        result = IdTokenClaims.to_dict(self)
        result["groups"] = list(self.groups) if self.groups is not None else None
        return result


def merge_claims(id_claims: IdTokenClaims, supplemental: SupplementalClaims) -> MergedClaims:
    """Compose verified ID token claims with supplemental claims.

    Every field of :class:`IdTokenClaims` is copied verbatim; the fields of
    :class:`SupplementalClaims` are added alongside. Nothing from the
    supplemental payload can overwrite a verified ID token field.

    Args:
        id_claims: Claims from a signature-checked ID token.
        supplemental: Claims captured from userinfo at login or refresh.

    Returns:
        The merged claims exposed to request handlers.
    """
    base = {f.name: getattr(id_claims, f.name) for f in fields(IdTokenClaims)}
    extra = {f.name: getattr(supplemental, f.name) for f in fields(SupplementalClaims)}
    return MergedClaims(**base, **extra)
