"""
Permission resolution.

Turns validated claims into the caller's `UserPermissions`: user row, the
projects they belong to, their role bindings and the superadmin flag.
"""

import logging
from dataclasses import dataclass, field

from app.core.config import settings
from app.core.errors import UnknownError
from app.db.models import RoleBinding
from app.db.store import NoRowsError, Querier, StoreError

from .jwt_verification import TokenClaims

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserPermissions:
    """What the caller may touch. Empty for unknown users."""

    user_id: int | None = None
    project_ids: tuple[str, ...] = ()
    role_bindings: tuple[RoleBinding, ...] = field(default=(), compare=False)
    organization_id: str | None = None
    is_superadmin: bool = False

    def is_admin_on(self, project_id: str) -> bool:
        return any(b.project_id == project_id and b.is_admin for b in self.role_bindings)


def is_superadmin(claims: TokenClaims) -> bool:
    return settings.superadmin_role in claims.realm_roles


async def resolve_user_permissions(querier: Querier, claims: TokenClaims) -> UserPermissions:
    """
    Materialise the caller's permissions from the store.

    A missing user row is not an error: the caller gets an empty permission
    set (keeping the superadmin flag) and later policy checks decide.

    Raises:
        UnknownError: If the store cannot be read
    """
    superadmin = is_superadmin(claims)

    try:
        user = await querier.get_user_by_subject(claims.subject)
        projects = await querier.get_user_projects(user.id)
        bindings = await querier.get_user_roles(user.id)
    except NoRowsError:
        logger.debug("No user row for subject %s", claims.subject)
        return UserPermissions(is_superadmin=superadmin)
    except StoreError as e:
        logger.error("Failed to look up user %s: %s", claims.subject, e)
        raise UnknownError("failed to get user permissions") from e

    organization_id = next((b.organization_id for b in bindings if b.organization_id), None)

    return UserPermissions(
        user_id=user.id,
        project_ids=tuple(p.id for p in projects),
        role_bindings=tuple(bindings),
        organization_id=organization_id,
        is_superadmin=superadmin,
    )
