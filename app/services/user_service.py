"""
User Service

Enrolment of new callers, invitation redemption and role assignment.

A caller enrolling for the first time either claims the forge installations
registered for their forge identity (one project per installation), or gets
a fresh default project named after them.
"""

import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from app.api.schemas.user import (
    CreateUserResponse,
    GetUserResponse,
    InvitationRecord,
    ProjectSummary,
    ResolveInvitationResponse,
    RoleAssignment,
    RoleChangeResponse,
    UserRecord,
)
from app.core.config import settings
from app.core.errors import (
    ConflictError,
    ExhaustedError,
    ForbiddenError,
    NotFoundError,
    PreconditionError,
    UnknownError,
    ValidationError,
)
from app.core.security import TokenClaims
from app.db.models import Invitation, Project, User
from app.db.store import NoRowsError, Querier, Store, StoreError, UniqueViolationError, transaction
from app.domain.enums import ProviderCapability, ProviderClass
from app.services.project_service import organization_of, provision_root_project

logger = logging.getLogger(__name__)

PROJECT_NAME_ATTEMPTS = 10

FORGE_APP_CAPABILITIES = [
    ProviderCapability.FORGE.value,
    ProviderCapability.REST.value,
    ProviderCapability.GIT.value,
    ProviderCapability.REPO_LISTER.value,
]


def _random_suffix() -> str:
    return secrets.token_hex(2)


def _invitation_code() -> str:
    return secrets.token_urlsafe(24)


async def unique_project_name(
    querier: Querier, base: str, *, suffix: Callable[[], str] = _random_suffix
) -> str:
    """
    `base` if no root project uses it, else `base-xxxx` for a random suffix.

    Raises:
        ExhaustedError: If every attempt collided
    """
    candidate = base
    for _ in range(PROJECT_NAME_ATTEMPTS):
        try:
            await querier.get_project_by_name(candidate)
        except NoRowsError:
            return candidate
        candidate = f"{base}-{suffix()}"

    logger.warning("Gave up finding a free project name for %s", base)
    raise ExhaustedError("failed to generate a unique project name, try again later")


async def claim_installations(
    querier: Querier,
    claims: TokenClaims,
    user: User,
    *,
    suffix: Callable[[], str] = _random_suffix,
) -> list[Project]:
    """
    Turn every pending forge installation for the caller into a project.

    Each claimed installation gets a forge-app provider in its new project.

    Raises:
        ConflictError: If an installation's project could not be created
        ExhaustedError: If no free project name was found for an installation
    """
    if not claims.gh_id:
        return []

    projects: list[Project] = []
    for installation in await querier.list_unclaimed_installations(claims.gh_id):
        name = await unique_project_name(querier, installation.organization_name, suffix=suffix)
        project = await provision_root_project(querier, name=name, admin_user_id=user.id)

        await querier.create_provider(
            project_id=project.id,
            name=f"{ProviderClass.FORGE_APP.value}-{installation.organization_name}",
            provider_class=ProviderClass.FORGE_APP.value,
            implements=FORGE_APP_CAPABILITIES,
        )
        await querier.claim_installation(installation_id=installation.id, project_id=project.id)
        logger.info(
            "Claimed installation %s",
            installation.app_installation_id,
            extra={"project_id": project.id},
        )
        projects.append(project)

    return projects


async def create_user(
    store: Store, claims: TokenClaims, *, suffix: Callable[[], str] = _random_suffix
) -> CreateUserResponse:
    """
    Enrol the caller.

    Raises:
        ConflictError: If the subject is already enrolled or an installation
            could not be claimed
        ExhaustedError: If no free project name was found
    """
    try:
        async with transaction(store) as q:
            try:
                user = await q.create_user(
                    subject=claims.subject,
                    display_name=claims.preferred_username,
                    email=claims.email,
                )
            except UniqueViolationError:
                raise ConflictError("user already exists")

            projects = await claim_installations(q, claims, user, suffix=suffix)
            if not projects:
                base = claims.preferred_username or claims.subject
                name = await unique_project_name(q, base, suffix=suffix)
                projects = [await provision_root_project(q, name=name, admin_user_id=user.id)]
    except StoreError as e:
        raise UnknownError("failed to create user") from e

    project = projects[0]
    logger.info(
        "Enrolled user %s", claims.subject, extra={"user_id": user.id, "project_id": project.id}
    )
    return CreateUserResponse(
        id=user.id,
        subject=user.identity_subject,
        project_id=project.id,
        project_name=project.name,
        created_at=user.created_at,
    )


async def _user_or_not_found(querier: Querier, subject: str) -> User:
    try:
        return await querier.get_user_by_subject(subject)
    except NoRowsError:
        raise NotFoundError("user not found")


async def get_user(store: Store, claims: TokenClaims) -> GetUserResponse:
    async with store.read() as q:
        user = await _user_or_not_found(q, claims.subject)
        projects = await q.get_user_projects(user.id)

    return GetUserResponse(
        user=UserRecord.model_validate(user),
        projects=[ProjectSummary.model_validate(p) for p in projects],
    )


async def delete_user(store: Store, claims: TokenClaims) -> None:
    """Remove the caller and every role binding they hold."""
    try:
        async with transaction(store) as q:
            user = await _user_or_not_found(q, claims.subject)
            for binding in await q.get_user_roles(user.id):
                await q.delete_role_binding(user_id=user.id, project_id=binding.project_id)
            await q.delete_user(user.id)
    except StoreError as e:
        raise UnknownError("failed to delete user") from e

    logger.info("Deleted user %s", claims.subject)


def invitation_expires_at(invitation: Invitation) -> datetime:
    issued = invitation.updated_at or invitation.created_at
    if issued.tzinfo is None:
        issued = issued.replace(tzinfo=UTC)
    return issued + timedelta(days=settings.invitation_ttl_days)


def _invitation_record(invitation: Invitation) -> InvitationRecord:
    record = InvitationRecord.model_validate(invitation)
    return record.model_copy(update={"expires_at": invitation_expires_at(invitation)})


async def _grant(querier: Querier, *, user: User, project_id: str, role: str) -> None:
    """Give `user` exactly `role` on the project, replacing any other role."""
    current = next(
        (b for b in await querier.get_user_roles(user.id) if b.project_id == project_id), None
    )
    if current is not None:
        if current.role == role:
            raise ConflictError("user already has the same role in the project")
        await querier.delete_role_binding(user_id=user.id, project_id=project_id)

    await querier.create_role_binding(
        user_id=user.id,
        project_id=project_id,
        role=role,
        organization_id=await organization_of(querier, project_id),
    )


async def resolve_invitation(
    store: Store,
    claims: TokenClaims,
    *,
    code: str,
    accept: bool,
    now: datetime | None = None,
) -> ResolveInvitationResponse:
    """
    Accept or decline an invitation. Either way the invitation is consumed.

    Raises:
        NotFoundError: If the code is unknown or was already used
        ValidationError: If the sponsor tries to resolve their own invitation
        ForbiddenError: If the invitation has expired
        ConflictError: If accepting would not change the caller's role
    """
    now = now or datetime.now(UTC)

    try:
        async with transaction(store) as q:
            try:
                invitation = await q.get_invitation_by_code(code)
            except NoRowsError:
                raise NotFoundError("invitation not found or already used")

            try:
                user: User | None = await q.get_user_by_subject(claims.subject)
            except NoRowsError:
                user = None

            if user is not None and user.id == invitation.sponsor_id:
                raise ValidationError("user cannot resolve their own invitation")

            if invitation_expires_at(invitation) < now:
                raise ForbiddenError("invitation expired")

            if accept:
                if user is None:
                    user = await q.create_user(
                        subject=claims.subject,
                        display_name=claims.preferred_username,
                        email=claims.email,
                    )
                await _grant(q, user=user, project_id=invitation.project_id, role=invitation.role)

            await q.delete_invitation(code)
    except StoreError as e:
        raise UnknownError("failed to resolve invitation") from e

    logger.info(
        "Invitation %s",
        "accepted" if accept else "declined",
        extra={"project_id": invitation.project_id},
    )
    return ResolveInvitationResponse(
        role=invitation.role,
        project_id=invitation.project_id,
        email=invitation.email,
        is_accepted=accept,
    )


async def assign_role(
    store: Store, *, project_id: str, sponsor_id: int | None, assignment: RoleAssignment
) -> RoleChangeResponse:
    """
    Grant a role on a project.

    A known subject gets the binding immediately. An email address gets an
    invitation that the recipient redeems with `resolve_invitation`.

    Raises:
        NotFoundError: If the subject is not enrolled
        ConflictError: If the subject already has a role, or the address
            already has a pending invitation to the project
        PreconditionError: If inviting by email without an enrolled sponsor
    """
    role = assignment.role.value

    try:
        async with transaction(store) as q:
            if assignment.subject:
                user = await _user_or_not_found(q, assignment.subject)
                if any(b.project_id == project_id for b in await q.get_user_roles(user.id)):
                    raise ConflictError("role assignment for this user already exists")
                await q.create_role_binding(
                    user_id=user.id,
                    project_id=project_id,
                    role=role,
                    organization_id=await organization_of(q, project_id),
                )
                response = RoleChangeResponse(role_assignment=assignment, project_id=project_id)
            else:
                if sponsor_id is None:
                    raise PreconditionError("only enrolled users can send invitations")
                if await q.list_invitations_for_project(project_id, assignment.email):
                    raise ConflictError("invitation for this email already exists")
                invitation = await q.create_invitation(
                    code=_invitation_code(),
                    email=assignment.email,
                    project_id=project_id,
                    role=role,
                    sponsor_id=sponsor_id,
                )
                response = RoleChangeResponse(
                    role_assignment=assignment,
                    project_id=project_id,
                    invitation=_invitation_record(invitation),
                )
    except StoreError as e:
        raise UnknownError("failed to assign role") from e

    logger.info("Assigned role %s", role, extra={"project_id": project_id})
    return response


async def remove_role(
    store: Store, *, project_id: str, assignment: RoleAssignment
) -> RoleChangeResponse:
    """
    Revoke a role, or withdraw the pending invitations sent to an address.

    Raises:
        NotFoundError: If there is nothing to remove
    """
    try:
        async with transaction(store) as q:
            if assignment.subject:
                user = await _user_or_not_found(q, assignment.subject)
                binding = next(
                    (b for b in await q.get_user_roles(user.id) if b.project_id == project_id),
                    None,
                )
                if binding is None or binding.role != assignment.role.value:
                    raise NotFoundError("role assignment not found")
                await q.delete_role_binding(user_id=user.id, project_id=project_id)
                response = RoleChangeResponse(role_assignment=assignment, project_id=project_id)
            else:
                invitations = [
                    inv
                    for inv in await q.list_invitations_for_project(project_id, assignment.email)
                    if inv.role == assignment.role.value
                ]
                if not invitations:
                    raise NotFoundError("invitation not found")
                for inv in invitations:
                    await q.delete_invitation(inv.code)
                response = RoleChangeResponse(
                    role_assignment=assignment,
                    project_id=project_id,
                    invitation=_invitation_record(invitations[0]),
                )
    except StoreError as e:
        raise UnknownError("failed to remove role") from e

    logger.info("Removed role %s", assignment.role.value, extra={"project_id": project_id})
    return response
