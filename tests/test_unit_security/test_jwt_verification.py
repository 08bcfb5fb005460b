"""
Tests for token validation.
"""

import base64
import time

import pytest
from jose import jwt

from app.core.errors import AuthFailedError
from app.core.security.jwt_verification import (
    BypassValidator,
    JwtValidator,
    TokenClaims,
    parse_and_validate,
    select_signing_key,
)

SECRET = "test-signing-secret-for-hs256-only"
ISSUER = "https://id.test.local/realms/controlplane"
AUDIENCE = "controlplane"


def _jwk(kid: str = "k1", secret: str = SECRET) -> dict:
    k = base64.urlsafe_b64encode(secret.encode()).rstrip(b"=").decode()
    return {"kid": kid, "kty": "oct", "alg": "HS256", "k": k}


KEY_SET = {"keys": [_jwk()]}


def make_token(kid: str = "k1", secret: str = SECRET, **overrides) -> str:
    now = int(time.time())
    claims = {
        "sub": "alice-sub",
        "iss": ISSUER,
        "aud": AUDIENCE,
        "iat": now,
        "exp": now + 300,
        "preferred_username": "alice",
        "gh_id": 12345,
        "realm_access": {"roles": ["offline_access"]},
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, secret, algorithm="HS256", headers={"kid": kid})


def validate(token: str) -> TokenClaims:
    return parse_and_validate(
        token, KEY_SET, issuer=ISSUER, audience=AUDIENCE, algorithms=["HS256"]
    )


class StaticCache:
    async def get_key_set(self) -> dict:
        return KEY_SET


class TestSelectSigningKey:
    def test_matching_kid(self):
        assert select_signing_key(KEY_SET, make_token())["kid"] == "k1"

    def test_unknown_kid(self):
        with pytest.raises(AuthFailedError):
            select_signing_key(KEY_SET, make_token(kid="rotated-away"))

    def test_garbage_header(self):
        with pytest.raises(AuthFailedError):
            select_signing_key(KEY_SET, "not-a-jwt")


class TestParseAndValidate:
    def test_valid_token(self):
        claims = validate(make_token())
        assert claims.subject == "alice-sub"
        assert claims.preferred_username == "alice"
        assert claims.gh_id == "12345"
        assert claims.realm_roles == ("offline_access",)

    def test_expired(self):
        with pytest.raises(AuthFailedError) as exc_info:
            validate(make_token(exp=int(time.time()) - 60))
        assert exc_info.value.message == "invalid auth token"

    def test_wrong_issuer(self):
        with pytest.raises(AuthFailedError):
            validate(make_token(iss="https://elsewhere"))

    def test_wrong_audience(self):
        with pytest.raises(AuthFailedError):
            validate(make_token(aud="someone-else"))

    def test_bad_signature(self):
        with pytest.raises(AuthFailedError):
            validate(make_token(secret="a-different-secret-entirely-xx"))

    def test_missing_subject(self):
        with pytest.raises(AuthFailedError):
            validate(make_token(sub=None))


class TestValidators:
    @pytest.mark.anyio
    async def test_jwt_validator_uses_cache(self):
        validator = JwtValidator(
            StaticCache(), issuer=ISSUER, audience=AUDIENCE, algorithms=["HS256"]
        )
        claims = await validator.validate(make_token())
        assert claims.subject == "alice-sub"

    @pytest.mark.anyio
    async def test_bypass_validator_returns_superadmin(self):
        claims = await BypassValidator().validate("anything")
        assert claims.subject == "local-dev-user"
        assert "superadmin" in claims.realm_roles
