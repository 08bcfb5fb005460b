"""Application configuration using Pydantic Settings.

This project loads configuration from environment variables.

Optionally, you may point `ENV_FILE` at a local env file (for development).
In secret-manager driven deployments, leave `ENV_FILE` unset so injected
variables are the single source of truth.
"""

import os
from enum import Enum

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppEnvironment(str, Enum):
    """Application environment values."""

    LOCAL = "local"
    TEST = "test"
    PROD = "prod"


class Settings(BaseSettings):
    """
    Application settings with type validation.

    Configuration is loaded from environment variables, with support
    for .env files in development.
    """

    model_config = SettingsConfigDict(
        env_file=os.getenv("ENV_FILE") or None, env_prefix="", extra="ignore"
    )

    # Application
    app_env: AppEnvironment = AppEnvironment.LOCAL
    app_name: str = "policy-control-plane"
    app_log_level: str = "INFO"

    # Observability
    observability_enabled: bool = True
    observability_structured_logs: bool = True
    observability_request_id_header: str = "X-Request-ID"

    # Database
    database_url_app: str = "postgresql://localhost:5432/controlplane"
    db_pool_size: int = 20
    db_max_overflow: int = 10

    # Identity provider
    identity_issuer_url: str = "http://localhost:8081/realms/controlplane"
    identity_audience: str = "controlplane"
    identity_algorithms: str = "RS256"
    identity_jwks_url: str | None = None
    jwks_cache_ttl_seconds: int = 900

    # Realm role that grants the synthetic superadmin binding
    superadmin_role: str = "superadmin"

    # Local development: skip JWT validation.
    # SECURITY: ONLY allowed in LOCAL environment.
    skip_jwt_validation: bool = Field(
        default=False, validation_alias="SECURITY_SKIP_JWT_VALIDATION"
    )

    @field_validator("skip_jwt_validation", mode="before")
    @classmethod
    def parse_skip_jwt_validation(cls, v: bool | str) -> bool:
        """Parse skip_jwt_validation from string or bool."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes", "on")
        return bool(v)

    # Invitations
    invitation_ttl_days: int = 7

    # Capacity of the in-process event queue
    events_queue_size: int = 1000

    # Metrics token for protecting /metrics endpoint
    metrics_token: str | None = None

    # CORS Configuration
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def identity_algorithms_list(self) -> list[str]:
        """Parse the accepted signing algorithms into a list."""
        return [algo.strip() for algo in self.identity_algorithms.split(",")]

    @property
    def jwks_url(self) -> str:
        """JWKS location; defaults to the OpenID Connect certs path of the issuer."""
        if self.identity_jwks_url:
            return self.identity_jwks_url
        return f"{self.identity_issuer_url.rstrip('/')}/protocol/openid-connect/certs"

    @property
    def async_url(self) -> str:
        """Database URL rewritten for the asyncpg driver."""
        url = self.database_url_app
        if url.startswith("postgresql+asyncpg://"):
            return url
        if url.startswith("postgresql://"):
            return "postgresql+asyncpg://" + url[len("postgresql://") :]
        return url

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | AppEnvironment) -> AppEnvironment:
        """Validate and parse app_env to AppEnvironment enum."""
        if isinstance(v, AppEnvironment):
            return v
        try:
            return AppEnvironment(v.lower())
        except ValueError:
            raise ValueError(
                f"app_env must be one of {[e.value for e in AppEnvironment]}, got '{v}'"
            )

    @field_validator(
        "invitation_ttl_days", "jwks_cache_ttl_seconds", "events_queue_size", "db_pool_size"
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """
        Validate production-specific settings.

        These checks prevent insecure configurations from being deployed to production.
        """
        if self.skip_jwt_validation and self.app_env != AppEnvironment.LOCAL:
            raise ValueError(
                "SECURITY_SKIP_JWT_VALIDATION can only be set in local environment. "
                f"Current environment: {self.app_env.value}"
            )

        if self.app_env == AppEnvironment.PROD:
            if not self.database_url_app.startswith("postgresql"):
                raise ValueError("DATABASE_URL_APP must use a postgresql scheme in production")

            if not self.identity_issuer_url.startswith("https://"):
                raise ValueError("IDENTITY_ISSUER_URL must use HTTPS in production")

            for origin in self.cors_origins_list:
                if "localhost" in origin or "127.0.0.1" in origin:
                    raise ValueError(
                        f"CORS origins must not contain localhost in production: {origin}"
                    )

        return self


settings = Settings()
