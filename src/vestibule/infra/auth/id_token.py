"""ID token verification against the discovered JWK set.

Checks, in order: token structure, signing algorithm, signing key,
signature, issuer, audience, expiry and issue time, authorized party,
then the nonce. Any failure raises :class:`ClaimsVerificationError`
with a short reason suitable for a diagnostic header.
"""

from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING, Any

import jwt

from vestibule.foundation.domain.claims import IdTokenClaims
from vestibule.infra.auth.errors import ClaimsVerificationError

if TYPE_CHECKING:
    from jwt import PyJWK

    from vestibule.infra.auth.discovery import ProviderMetadata

logger = logging.getLogger(__name__)

# Symmetric algorithms would need the client secret as key; the relying
# party only accepts provider signatures made with published keys.
_ASYMMETRIC_PREFIXES = ("RS", "PS", "ES", "Ed")


class IdTokenVerifier:
    """Verifies ID tokens issued by one provider for one client.

    Args:
        metadata: Discovered provider metadata (issuer and keys).
        client_id: This relying party's client id (expected audience).
        leeway: Clock skew tolerance in seconds for ``exp``/``iat``/``nbf``.
    """

    def __init__(self, metadata: ProviderMetadata, client_id: str, leeway: int = 0) -> None:
        self._metadata = metadata
        self._client_id = client_id
        self._leeway = leeway
        self._algorithms = tuple(
            alg for alg in metadata.id_token_signing_algs if alg.startswith(_ASYMMETRIC_PREFIXES)
        )

    def verify(self, id_token: str, nonce: str) -> IdTokenClaims:
        """Verify ``id_token`` and return its claims.

        Args:
            id_token: Compact-serialized JWT.
            nonce: Nonce issued with the authorization request.

        Returns:
            Typed, verified claims.

        Raises:
            ClaimsVerificationError: If any check fails.
        """
        try:
            header = jwt.get_unverified_header(id_token)
        except jwt.InvalidTokenError as exc:
            raise ClaimsVerificationError("token is malformed") from exc

        alg = header.get("alg")
        if alg not in self._algorithms:
            raise ClaimsVerificationError(f"unexpected signing algorithm {alg!r}")

        key = self._select_key(header.get("kid"))
        payload = self._decode(id_token, key, alg)

        azp = payload.get("azp")
        audiences = payload.get("aud")
        if azp is not None and azp != self._client_id:
            raise ClaimsVerificationError("authorized party does not match client id")
        if isinstance(audiences, list) and len(audiences) > 1 and azp is None:
            raise ClaimsVerificationError("multiple audiences without authorized party")

        token_nonce = payload.get("nonce")
        if not isinstance(token_nonce, str) or not hmac.compare_digest(
            token_nonce.encode(), nonce.encode()
        ):
            raise ClaimsVerificationError("nonce mismatch")

        try:
            return IdTokenClaims.from_jwt_payload(payload)
        except ValueError as exc:
            raise ClaimsVerificationError(str(exc)) from exc

    def _select_key(self, kid: Any) -> PyJWK:
        keys = self._metadata.jwks.keys
        if kid is None:
            if len(keys) == 1:
                return keys[0]
            raise ClaimsVerificationError("token has no key id and provider publishes several keys")
        for key in keys:
            if key.key_id == kid:
                return key
        raise ClaimsVerificationError("signing key not found")

    def _decode(self, id_token: str, key: PyJWK, alg: str) -> dict[str, Any]:
        try:
            return jwt.decode(
                id_token,
                key.key,
                algorithms=[alg],
                audience=self._client_id,
                issuer=self._metadata.issuer,
                leeway=self._leeway,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ClaimsVerificationError("token expired") from exc
        except jwt.InvalidIssuerError as exc:
            raise ClaimsVerificationError("issuer mismatch") from exc
        except jwt.InvalidAudienceError as exc:
            raise ClaimsVerificationError("audience mismatch") from exc
        except jwt.MissingRequiredClaimError as exc:
            raise ClaimsVerificationError(f"missing required claim '{exc.claim}'") from exc
        except jwt.InvalidSignatureError as exc:
            raise ClaimsVerificationError("invalid signature") from exc
        except jwt.ImmatureSignatureError as exc:
            raise ClaimsVerificationError("token not yet valid") from exc
        except jwt.InvalidTokenError as exc:
            logger.debug("id_token_rejected", extra={"reason": type(exc).__name__})
            raise ClaimsVerificationError("token is invalid") from exc
