"""
Project Service

Projects form a forest. Roots are created when a user enrols; children are
created by project administrators under an existing project.
"""

import logging
from typing import Any

from app.core.errors import ConflictError, NotFoundError, UnknownError, ValidationError
from app.core.validators import validate_resource_name
from app.db.models import Project
from app.db.store import NoRowsError, Querier, Store, StoreError, UniqueViolationError, transaction
from app.domain.enums import Role

logger = logging.getLogger(__name__)

# Longest parent chain walked before the hierarchy is declared broken
MAX_HIERARCHY_DEPTH = 64


async def ancestry(querier: Querier, project_id: str) -> list[str]:
    """
    Ids from `project_id` up to its root, inclusive.

    Raises:
        NotFoundError: If any project on the chain is missing
        ValidationError: If the chain loops or is deeper than allowed
    """
    chain: list[str] = []
    current: str | None = project_id

    while current is not None:
        if current in chain or len(chain) >= MAX_HIERARCHY_DEPTH:
            raise ValidationError("project hierarchy contains a cycle")
        try:
            project = await querier.get_project_by_id(current)
        except NoRowsError:
            raise NotFoundError(f"project {current} not found")
        chain.append(project.id)
        current = project.parent_id

    return chain


async def organization_of(querier: Querier, project_id: str) -> str:
    """Root project id of the tree `project_id` belongs to."""
    return (await ancestry(querier, project_id))[-1]


async def provision_root_project(
    querier: Querier, *, name: str, admin_user_id: int, metadata: dict[str, Any] | None = None
) -> Project:
    """
    Create a root project and make `admin_user_id` its administrator.

    Runs on the caller's querier so it joins the caller's transaction.

    Raises:
        ConflictError: If a root project already has this name
    """
    try:
        project = await querier.create_project(
            name=name,
            parent_id=None,
            metadata=metadata or {"self_enrolled": True, "public": {"display_name": name}},
        )
    except UniqueViolationError:
        raise ConflictError(f"project {name} already exists", details={"name": name})

    await querier.create_role_binding(
        user_id=admin_user_id,
        project_id=project.id,
        role=Role.ADMIN.value,
        organization_id=project.id,
    )
    return project


async def create_project(
    store: Store,
    *,
    parent_id: str,
    name: str,
    metadata: dict[str, Any] | None = None,
    creator_id: int | None = None,
) -> Project:
    """
    Create a child project under `parent_id`.

    The creator, when known, becomes administrator of the new project.

    Raises:
        ValidationError: If the name is invalid or the parent chain loops
        NotFoundError: If the parent project does not exist
        ConflictError: If a sibling already has this name
    """
    validate_resource_name(name, "project name")

    try:
        async with transaction(store) as q:
            chain = await ancestry(q, parent_id)

            try:
                project = await q.create_project(
                    name=name, parent_id=parent_id, metadata=metadata or {}
                )
            except UniqueViolationError:
                raise ConflictError(
                    f"project {name} already exists", details={"name": name}
                )

            if creator_id is not None:
                await q.create_role_binding(
                    user_id=creator_id,
                    project_id=project.id,
                    role=Role.ADMIN.value,
                    organization_id=chain[-1],
                )
    except StoreError as e:
        raise UnknownError("failed to create project") from e

    logger.info(
        "Created project %s",
        name,
        extra={"project_id": project.id, "parent_id": parent_id},
    )
    return project


async def list_child_projects(store: Store, *, project_id: str) -> list[Project]:
    async with store.read() as q:
        try:
            return await q.get_children_projects(project_id)
        except StoreError as e:
            raise UnknownError("failed to list projects") from e
