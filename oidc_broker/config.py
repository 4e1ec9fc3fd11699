"""
Configuration module for the OIDC broker service.

Uses Pydantic Settings to load and validate environment variables (or a
``.env`` file) for provider configuration, session lifetime, code exchange
deadlines, access control and server options.
"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # =========================================================================
    # OAuth2 Providers
    # =========================================================================

    OAUTH2_CONFIG_FILE: str = Field(
        default="oauth2.toml",
        description="Path of the TOML file listing the identity providers",
    )

    PUBLIC_BASE_URL: Optional[str] = Field(
        None,
        description="External base URL used to build the OAuth callback URL (derived from the request when unset)",
    )

    # =========================================================================
    # Session Lifecycle
    # =========================================================================

    OIDC_SESSION_TTL_SECONDS: int = Field(
        default=600,
        description="Lifetime of an OIDC login session in seconds",
        ge=30,
        le=86400,
    )

    OIDC_REAPER_INTERVAL_SECONDS: int = Field(
        default=60,
        description="Interval between sweeps of expired sessions",
        ge=5,
        le=3600,
    )

    OIDC_EXCHANGE_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        description="Deadline for one authorization-code exchange with a provider",
        gt=0,
        le=120,
    )

    # =========================================================================
    # Users
    # =========================================================================

    ADMIN_USERS: str = Field(
        default="",
        description="Comma-separated op:subject identities granted the administrative flag (e.g. github:octocat)",
    )

    # =========================================================================
    # Server
    # =========================================================================

    HOST: str = Field(default="0.0.0.0", description="Host to bind the server")

    PORT: int = Field(default=21114, description="Port to bind the server", ge=1, le=65535)

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def admin_users_list(self) -> List[str]:
        return [name.strip() for name in self.ADMIN_USERS.split(",") if name.strip()]

    @property
    def allowed_origins_list(self) -> List[str]:
        if not self.ALLOWED_ORIGINS:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("PUBLIC_BASE_URL")
    @classmethod
    def validate_public_base_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"PUBLIC_BASE_URL must start with http:// or https://, got: {v}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """
    Get or create the singleton Settings instance.

    Raises:
        ValidationError: If environment variables are invalid
    """
    return Settings()
