from __future__ import annotations

from fastapi import APIRouter, status

from app.api.schemas.common import EmptyResponse
from app.api.schemas.user import (
    AssignRoleRequest,
    CreateUserRequest,
    CreateUserResponse,
    DeleteUserRequest,
    GetUserRequest,
    GetUserResponse,
    RemoveRoleRequest,
    ResolveInvitationRequest,
    ResolveInvitationResponse,
    RoleChangeResponse,
)
from app.api.server import (
    ASSIGN_ROLE,
    CREATE_USER,
    DELETE_USER,
    GET_USER,
    REMOVE_ROLE,
    RESOLVE_INVITATION,
)
from app.core.dependencies import Metadata, Server

router = APIRouter(tags=["users"])


@router.post("/user", response_model=CreateUserResponse, status_code=status.HTTP_201_CREATED)
async def post_user(server: Server, metadata: Metadata):
    """
    Enrol the caller.

    Claims pending forge installations for the caller's forge identity, or
    provisions a default project named after them.
    """
    return await server.call(CREATE_USER, CreateUserRequest(), metadata)


@router.get("/user", response_model=GetUserResponse)
async def get_user(server: Server, metadata: Metadata):
    return await server.call(GET_USER, GetUserRequest(), metadata)


@router.delete("/user", response_model=EmptyResponse)
async def delete_user(server: Server, metadata: Metadata):
    return await server.call(DELETE_USER, DeleteUserRequest(), metadata)


@router.post("/user/invitations", response_model=ResolveInvitationResponse)
async def post_invitation_resolution(
    payload: ResolveInvitationRequest, server: Server, metadata: Metadata
):
    """Accept or decline an invitation. The code cannot be used again."""
    return await server.call(RESOLVE_INVITATION, payload, metadata)


@router.post("/roles", response_model=RoleChangeResponse)
async def post_role(payload: AssignRoleRequest, server: Server, metadata: Metadata):
    """Grant a role by subject, or invite by email. Project administrators only."""
    return await server.call(ASSIGN_ROLE, payload, metadata)


@router.post("/roles/remove", response_model=RoleChangeResponse)
async def post_role_removal(payload: RemoveRoleRequest, server: Server, metadata: Metadata):
    return await server.call(REMOVE_ROLE, payload, metadata)
