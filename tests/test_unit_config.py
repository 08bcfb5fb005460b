"""
Unit tests for application settings.
"""

import pytest
from pydantic import ValidationError

from app.core.config import AppEnvironment, Settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSettings:
    def test_app_env_is_case_insensitive(self):
        settings = _settings(
            app_env="PROD",
            identity_issuer_url="https://id.example.com",
            cors_origins="https://app.example.com",
        )
        assert settings.app_env == AppEnvironment.PROD

    def test_unknown_app_env(self):
        with pytest.raises(ValidationError, match="app_env must be one of"):
            _settings(app_env="staging")

    def test_async_url_uses_asyncpg(self):
        settings = _settings(database_url_app="postgresql://db:5432/cp")
        assert settings.async_url == "postgresql+asyncpg://db:5432/cp"

    def test_jwks_url_derived_from_issuer(self):
        settings = _settings(identity_issuer_url="https://id.example.com/realms/cp/")
        assert settings.jwks_url == (
            "https://id.example.com/realms/cp/protocol/openid-connect/certs"
        )

    def test_explicit_jwks_url_wins(self):
        settings = _settings(identity_jwks_url="https://keys.example.com/jwks.json")
        assert settings.jwks_url == "https://keys.example.com/jwks.json"

    def test_list_properties(self):
        settings = _settings(
            cors_origins="https://a.example, https://b.example", identity_algorithms="RS256,ES256"
        )
        assert settings.cors_origins_list == ["https://a.example", "https://b.example"]
        assert settings.identity_algorithms_list == ["RS256", "ES256"]

    @pytest.mark.parametrize(
        "field",
        ["invitation_ttl_days", "jwks_cache_ttl_seconds", "events_queue_size", "db_pool_size"],
    )
    def test_positive_integers(self, field):
        with pytest.raises(ValidationError, match="must be a positive integer"):
            _settings(**{field: 0})


class TestProductionGuards:
    def test_http_issuer_rejected_in_prod(self):
        with pytest.raises(ValidationError, match="HTTPS"):
            _settings(
                app_env="prod",
                identity_issuer_url="http://id.example.com",
                cors_origins="https://app.example.com",
            )

    def test_localhost_cors_rejected_in_prod(self):
        with pytest.raises(ValidationError, match="localhost"):
            _settings(app_env="prod", identity_issuer_url="https://id.example.com")

    def test_jwt_bypass_only_in_local(self):
        with pytest.raises(ValidationError, match="only be set in local"):
            _settings(app_env="test", SECURITY_SKIP_JWT_VALIDATION="true")

    def test_jwt_bypass_allowed_locally(self):
        assert _settings(app_env="local", SECURITY_SKIP_JWT_VALIDATION="yes").skip_jwt_validation
