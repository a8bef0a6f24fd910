"""Vestibule Foundation Domain -- pure Python domain primitives.

Exception hierarchy and the claims value objects shared by the auth layer
and request handlers. No framework or I/O dependencies.
"""

from vestibule.foundation.domain.claims import (
    IdTokenClaims,
    MergedClaims,
    SupplementalClaims,
    merge_claims,
)
from vestibule.foundation.domain.exceptions import (
    AuthenticationError,
    AuthorizationError,
    DomainError,
    UpstreamServiceError,
)

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "DomainError",
    "IdTokenClaims",
    "MergedClaims",
    "SupplementalClaims",
    "UpstreamServiceError",
    "merge_claims",
]
