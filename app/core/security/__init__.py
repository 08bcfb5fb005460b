"""
Security package - token validation and permission resolution.

Submodules:

- circuit_breaker.py: Circuit breaker for identity provider outages
- jwks_cache.py: JWKS cache with TTL support
- jwt_verification.py: Claims bundle and token validators
- permissions.py: UserPermissions and the permission resolver
- utils.py: Claim extraction helpers
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitBreakerState,
)
from .jwks_cache import (
    JWKSCache,
    close_async_http_client,
    get_async_http_client,
    get_jwks_cache,
)
from .jwt_verification import (
    INVALID_OR_EXPIRED_TOKEN_MSG,
    BypassValidator,
    JwtValidator,
    TokenClaims,
    TokenValidator,
    build_token_validator,
    parse_and_validate,
    select_signing_key,
)
from .permissions import UserPermissions, is_superadmin, resolve_user_permissions
from .utils import get_realm_roles, get_string_claim, get_user_sub

__all__ = [
    "BypassValidator",
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitBreakerState",
    "INVALID_OR_EXPIRED_TOKEN_MSG",
    "JWKSCache",
    "JwtValidator",
    "TokenClaims",
    "TokenValidator",
    "UserPermissions",
    "build_token_validator",
    "close_async_http_client",
    "get_async_http_client",
    "get_jwks_cache",
    "get_realm_roles",
    "get_string_claim",
    "get_user_sub",
    "is_superadmin",
    "parse_and_validate",
    "resolve_user_permissions",
    "select_signing_key",
]
