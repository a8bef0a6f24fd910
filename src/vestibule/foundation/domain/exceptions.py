"""Domain exception hierarchy for type-safe error handling.

Every error raised while authenticating a request derives from
:class:`DomainError`. Each subclass carries a machine-readable
``error_code`` and structured ``context`` so the HTTP layer can translate
it into an RFC 7807 response without inspecting messages.

Example:
    >>> from vestibule.foundation.domain.exceptions import AuthenticationError
    >>> raise AuthenticationError("Session cookie missing", error_code="MISSING_COOKIE")
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "DomainError",
    "UpstreamServiceError",
]


class DomainError(Exception):
    """Base class for all domain errors.

    Maps to HTTP 400 Bad Request unless a subclass overrides ``status_code``.

    Attributes:
        error_code: Machine-readable error code for client handling.
        status_code: HTTP status the error translates to.
        message: Human-readable error description.
        context: Structured debugging information.

    Example:
        >>> raise DomainError("Operation failed", context={"field": "state"})
        DomainError: Operation failed (field=state)
    """

    error_code: str = "DOMAIN_ERROR"
    status_code: int = 400

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Initialize domain error with message and optional context.

        Args:
            message: Human-readable error description.
            context: Structured debugging information. Keys should be snake_case.
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """String representation including context for logging."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message

    def __repr__(self) -> str:
        """Detailed representation for debugging."""
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class AuthenticationError(DomainError):
    """Raised when the caller's identity cannot be established.

    Maps to HTTP 401 Unauthorized.

    Attributes:
        error_code: Machine-readable error code (e.g., "MISSING_COOKIE").
        auth_error: Short OAuth-style error code.

    Example:
        >>> raise AuthenticationError("ID token expired", error_code="TOKEN_EXPIRED")
    """

    error_code: str = "AUTHENTICATION_ERROR"
    status_code: int = 401

    def __init__(
        self,
        message: str,
        auth_error: str = "invalid_token",
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize authentication error.

        Args:
            message: Human-readable error description.
            auth_error: Short OAuth-style error code.
            error_code: Machine-readable error code overriding the class default.
            context: Structured debugging information.
        """
        self.auth_error = auth_error
        if error_code is not None:
            self.error_code = error_code
        super().__init__(message, context)


class AuthorizationError(DomainError):
    """Raised when an authenticated user lacks a required claim.

    Maps to HTTP 403 Forbidden.

    Example:
        >>> raise AuthorizationError("Missing required group: admins")
    """

    error_code: str = "AUTHORIZATION_ERROR"
    status_code: int = 403


class UpstreamServiceError(DomainError):
    """Raised when the identity provider fails or returns an unusable answer.

    Maps to HTTP 502 Bad Gateway.
    """

    error_code: str = "UPSTREAM_ERROR"
    status_code: int = 502
