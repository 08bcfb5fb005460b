"""
Token validation for bearer tokens issued by the identity provider.

`parse_and_validate` is a pure function over the signing keys it is handed:
it never fetches anything. `JwtValidator` couples it to the JWKS cache,
which is where key rotation happens.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from jose import JWTError, jwt

from app.core.config import settings
from app.core.errors import AuthFailedError

from .jwks_cache import JWKSCache, get_jwks_cache
from .utils import (
    EMAIL_CLAIM,
    FORGE_ID_CLAIM,
    PREFERRED_USERNAME_CLAIM,
    get_realm_roles,
    get_string_claim,
    get_user_sub,
)

logger = logging.getLogger(__name__)

INVALID_OR_EXPIRED_TOKEN_MSG = "invalid auth token"

_ExpiredSignatureError: type[Exception] = getattr(jwt, "ExpiredSignatureError", JWTError)
_JWTClaimsError: type[Exception] = getattr(jwt, "JWTClaimsError", JWTError)


@dataclass(frozen=True)
class TokenClaims:
    """Claims bundle produced by a successful validation."""

    subject: str
    preferred_username: str | None = None
    gh_id: str | None = None
    email: str | None = None
    realm_roles: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TokenClaims":
        return cls(
            subject=get_user_sub(payload),
            preferred_username=get_string_claim(payload, PREFERRED_USERNAME_CLAIM),
            gh_id=get_string_claim(payload, FORGE_ID_CLAIM),
            email=get_string_claim(payload, EMAIL_CLAIM),
            realm_roles=tuple(get_realm_roles(payload)),
            raw=dict(payload),
        )


class TokenValidator(Protocol):
    async def validate(self, token: str) -> TokenClaims: ...


def select_signing_key(key_set: dict[str, Any], token: str) -> dict[str, Any]:
    """
    Pick the key from a JWKS that matches the token's 'kid' header.

    Raises:
        AuthFailedError: If the header is unreadable or no key matches
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        logger.warning("Invalid JWT header: %s", e)
        raise AuthFailedError(INVALID_OR_EXPIRED_TOKEN_MSG)

    kid = unverified_header.get("kid")
    for key in key_set.get("keys", []):
        if kid is not None and key.get("kid") == kid:
            return dict(key)

    logger.error("Unable to find matching key for kid: %s", kid)
    raise AuthFailedError(INVALID_OR_EXPIRED_TOKEN_MSG)


def parse_and_validate(
    token: str,
    key_set: dict[str, Any],
    *,
    issuer: str,
    audience: str,
    algorithms: list[str],
) -> TokenClaims:
    """
    Verify a JWT against the given key set and return its claims.

    Checks signature, expiry, issuer and audience, and requires a subject.

    Raises:
        AuthFailedError: If verification fails for any reason
    """
    signing_key = select_signing_key(key_set, token)

    try:
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=algorithms,
            audience=audience,
            issuer=issuer,
        )
    except _ExpiredSignatureError:
        logger.warning("Token has expired")
        raise AuthFailedError(INVALID_OR_EXPIRED_TOKEN_MSG)
    except _JWTClaimsError as e:
        logger.warning("Invalid token claims: %s", e)
        raise AuthFailedError(INVALID_OR_EXPIRED_TOKEN_MSG)
    except JWTError as e:
        logger.warning("JWT verification failed: %s", e)
        raise AuthFailedError(INVALID_OR_EXPIRED_TOKEN_MSG)

    claims = TokenClaims.from_payload(payload)
    logger.debug("Token verified for subject: %s", claims.subject)
    return claims


class JwtValidator:
    """Validates tokens with keys served by a JWKS cache."""

    def __init__(
        self,
        jwks_cache: JWKSCache | None = None,
        *,
        issuer: str | None = None,
        audience: str | None = None,
        algorithms: list[str] | None = None,
    ):
        self._jwks_cache = jwks_cache
        self._issuer = issuer or settings.identity_issuer_url
        self._audience = audience or settings.identity_audience
        self._algorithms = algorithms or settings.identity_algorithms_list

    async def validate(self, token: str) -> TokenClaims:
        cache = self._jwks_cache or get_jwks_cache()
        key_set = await cache.get_key_set()
        return parse_and_validate(
            token,
            key_set,
            issuer=self._issuer,
            audience=self._audience,
            algorithms=self._algorithms,
        )


class BypassValidator:
    """
    Accepts any token and returns a fixed local superadmin.

    ONLY used when SECURITY_SKIP_JWT_VALIDATION=true and APP_ENV=local;
    config validation refuses the flag anywhere else.
    """

    async def validate(self, token: str) -> TokenClaims:
        logger.info("JWT validation bypassed - returning local development user")
        return TokenClaims(
            subject="local-dev-user",
            preferred_username="local-dev",
            realm_roles=(settings.superadmin_role,),
        )


def build_token_validator() -> TokenValidator:
    if settings.skip_jwt_validation:
        return BypassValidator()
    return JwtValidator()
