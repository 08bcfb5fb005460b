"""
JWKS cache with TTL support for token verification.

Caches the identity provider's signing keys to avoid fetching them on every
token verification. Keys are refreshed when the cache expires, which is how
key rotation reaches the validator.

A circuit breaker guards the fetch; while it is open, or when a refresh
fails, the last known key set is served.
"""

import asyncio
import logging
import time
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import UnavailableError

from .circuit_breaker import CircuitBreaker, CircuitBreakerOpenError

logger = logging.getLogger(__name__)

_async_http: httpx.AsyncClient | None = None


def get_async_http_client() -> httpx.AsyncClient:
    """Get or create the async HTTP client singleton."""
    global _async_http
    if _async_http is None:
        _async_http = httpx.AsyncClient(timeout=httpx.Timeout(10.0))
    return _async_http


async def close_async_http_client() -> None:
    """Close the async HTTP client (for graceful shutdown)."""
    global _async_http
    if _async_http is not None:
        await _async_http.aclose()
        _async_http = None


class JWKSCache:
    """
    In-memory cache for the identity provider's JWKS with time-to-live.

    Args:
        jwks_url: Location of the key set
        ttl_seconds: Time-to-live for cached keys in seconds
        client: HTTP client; defaults to the module singleton
    """

    def __init__(
        self,
        jwks_url: str,
        ttl_seconds: int = 900,
        client: httpx.AsyncClient | None = None,
    ):
        self._jwks_url = jwks_url
        self._ttl_seconds = ttl_seconds
        self._client = client
        self._cache: dict[str, Any] | None = None
        self._cache_time: float | None = None
        self._lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker()

    def _is_cache_valid(self, now: float) -> bool:
        return (
            self._cache is not None
            and self._cache_time is not None
            and now - self._cache_time < self._ttl_seconds
        )

    async def _fetch(self) -> dict[str, Any]:
        client = self._client or get_async_http_client()
        response = await client.get(self._jwks_url)
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict) or not isinstance(body.get("keys"), list):
            raise ValueError("JWKS document has no 'keys' list")
        return body

    async def get_key_set(self) -> dict[str, Any]:
        """
        Get the JWKS from cache or fetch it from the identity provider.

        Returns:
            JWKS dictionary containing signing keys

        Raises:
            UnavailableError: If the fetch fails and nothing is cached
        """
        now = time.monotonic()

        async with self._lock:
            if self._is_cache_valid(now):
                logger.debug("Using cached JWKS")
                return self._cache

            try:
                logger.info("Fetching JWKS from %s", self._jwks_url)
                self._cache = await self._circuit_breaker.call(self._fetch)
                self._cache_time = now
                logger.info(
                    "JWKS cache refreshed. Circuit state: %s",
                    self._circuit_breaker.state.value,
                )
                return self._cache

            except CircuitBreakerOpenError:
                reason = "circuit open"
            except (httpx.HTTPError, ValueError) as e:
                logger.error("Failed to fetch JWKS: %s", e)
                reason = "fetch failed"

            if self._cache is not None:
                logger.warning("Using stale JWKS cache as fallback (%s)", reason)
                return self._cache
            raise UnavailableError(
                "Unable to verify token: identity provider unavailable",
                details={"reason": reason},
            )

    def clear(self) -> None:
        """Clear the cache and reset the circuit breaker (useful for testing)."""
        self._cache = None
        self._cache_time = None
        self._circuit_breaker.reset()
        logger.debug("JWKS cache and circuit breaker cleared")


_jwks_cache: JWKSCache | None = None


def get_jwks_cache() -> JWKSCache:
    """Process-wide JWKS cache configured from settings."""
    global _jwks_cache
    if _jwks_cache is None:
        _jwks_cache = JWKSCache(settings.jwks_url, ttl_seconds=settings.jwks_cache_ttl_seconds)
    return _jwks_cache
