"""Authentication configuration settings.

Loaded from environment variables with AUTH_ prefix.

Environment Variables:
    AUTH_ISSUER: OIDC issuer URL (required)
    AUTH_CLIENT_ID: OAuth client_id (required)
    AUTH_CLIENT_SECRET: OAuth client_secret (empty for public clients)
    AUTH_REDIRECT_URI: Callback URL; derived from the request when empty
    AUTH_SCOPES: Requested scopes (space-separated)
    AUTH_TOKEN_AUTH_METHOD: client_secret_basic or client_secret_post
    AUTH_USE_PKCE: Send an S256 PKCE challenge
    AUTH_COOKIE_KEY_PATH: Cookie encryption key file, created on first run
    AUTH_COOKIE_MAX_AGE_DAYS: Lifetime of session and nonce cookies
    AUTH_COOKIE_SECURE: Set the Secure attribute on auth cookies
    AUTH_COOKIE_SAME_SITE: SameSite attribute on auth cookies
    AUTH_HTTP_TIMEOUT: Timeout for identity provider calls, in seconds
    AUTH_CLOCK_SKEW_SECONDS: Leeway when checking exp/iat
    AUTH_REFRESH_DEDUP_TTL: Seconds a refresh outcome is shared between requests
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthSettings(BaseSettings):
    """OIDC relying-party configuration loaded from environment variables.

    Example:
        >>> settings = AuthSettings(_env_file=None)
        >>> settings.scopes
        'openid profile offline_access'
        >>> settings.cookie_max_age_days
        14
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    issuer: str = Field(
        default="",
        description="OIDC issuer URL",
    )
    client_id: str = Field(
        default="",
        description="OAuth client_id registered with the identity provider",
    )
    client_secret: str = Field(
        default="",
        repr=False,  # Security: never log client secret
        description="OAuth client_secret; empty for public clients",
    )
    redirect_uri: str = Field(
        default="",
        description="Callback URL; derived as <origin>/auth/callback when empty",
    )
    scopes: str = Field(
        default="openid profile offline_access",
        description="Scopes requested during authorization (space-separated)",
    )
    token_auth_method: Literal["client_secret_basic", "client_secret_post"] = Field(
        default="client_secret_basic",
        description="How the client authenticates at the token endpoint",
    )
    use_pkce: bool = Field(
        default=True,
        description="Send an S256 PKCE challenge with the authorization request",
    )

    cookie_key_path: str = Field(
        default="cookie_key.bin",
        description="Path of the symmetric cookie key file",
    )
    cookie_max_age_days: int = Field(
        default=14,
        ge=1,
        le=400,
        description="Max-age of session and nonce cookies in days",
    )
    cookie_secure: bool = Field(
        default=False,
        description="Set the Secure attribute on auth cookies",
    )
    cookie_same_site: Literal["lax", "strict", "none"] = Field(
        default="lax",
        description="SameSite attribute on auth cookies",
    )

    http_timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout for identity provider calls in seconds",
    )
    clock_skew_seconds: int = Field(
        default=0,
        ge=0,
        le=300,
        description="Leeway applied to exp/iat/nbf checks",
    )
    refresh_dedup_ttl: float = Field(
        default=5.0,
        ge=0,
        le=60,
        description="Seconds a refresh outcome is shared between concurrent requests",
    )

    @property
    def scope_list(self) -> tuple[str, ...]:
        """Scopes as a tuple with ``openid`` always first."""
        scopes = [s for s in self.scopes.split() if s != "openid"]
        return ("openid", *dict.fromkeys(scopes))

    @property
    def cookie_max_age(self) -> int:
        """Cookie max-age in seconds."""
        return self.cookie_max_age_days * 24 * 60 * 60

    def validate_oidc_config(self) -> None:
        """Validate that the relying party can start.

        Raises:
            ValueError: If a required value is missing or malformed.
        """
        if not self.issuer:
            raise ValueError("AUTH_ISSUER is required")

        if not self.issuer.startswith(("http://", "https://")):
            raise ValueError("AUTH_ISSUER must be a valid HTTP(S) URL")

        if not self.client_id:
            raise ValueError("AUTH_CLIENT_ID is required")

        if self.redirect_uri and not self.redirect_uri.startswith(("http://", "https://")):
            raise ValueError("AUTH_REDIRECT_URI must be a valid HTTP(S) URL")

        if self.cookie_same_site == "none" and not self.cookie_secure:
            raise ValueError("AUTH_COOKIE_SAME_SITE=none requires AUTH_COOKIE_SECURE=true")

    def is_configured(self) -> bool:
        """Check if the required values are present (non-throwing)."""
        return bool(self.issuer and self.client_id)


@lru_cache(maxsize=1)
def get_auth_settings() -> AuthSettings:
    """Get singleton AuthSettings instance.

    Clear cache with ``get_auth_settings.cache_clear()`` for testing.
    """
    return AuthSettings()
