"""
Helpers for reading identity claims out of a decoded token payload.
"""

import logging
from typing import Any

from app.core.errors import AuthFailedError

logger = logging.getLogger(__name__)

SUBJECT_CLAIM = "sub"
PREFERRED_USERNAME_CLAIM = "preferred_username"
FORGE_ID_CLAIM = "gh_id"
EMAIL_CLAIM = "email"
REALM_ACCESS_CLAIM = "realm_access"


def get_user_sub(payload: dict[str, Any]) -> str:
    """
    Extract the subject (stable user identifier) from the token payload.

    Raises:
        AuthFailedError: If the 'sub' claim is missing or empty
    """
    sub = payload.get(SUBJECT_CLAIM)
    if not sub or not isinstance(sub, str):
        logger.error("JWT payload missing 'sub' claim")
        raise AuthFailedError("provided token is missing required subject claim")
    return sub


def get_realm_roles(payload: dict[str, Any]) -> list[str]:
    """
    Extract realm roles from `realm_access.roles`.

    Returns an empty list when the claim is absent or malformed.
    """
    realm_access = payload.get(REALM_ACCESS_CLAIM)
    if not isinstance(realm_access, dict):
        return []

    roles = realm_access.get("roles", [])
    if not isinstance(roles, list):
        logger.warning("Realm roles claim is not a list: %s", type(roles))
        return []
    return [r for r in roles if isinstance(r, str)]


def get_string_claim(payload: dict[str, Any], claim: str) -> str | None:
    """Return a claim when it is a non-empty string, else None.

    Numeric forge ids are accepted and rendered as strings.
    """
    value = payload.get(claim)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(int(value))
    if isinstance(value, str) and value:
        return value
    return None
