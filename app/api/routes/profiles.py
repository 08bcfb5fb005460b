from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status

from app.api.schemas.common import EmptyResponse
from app.api.schemas.profile import (
    CreateProfileRequest,
    DeleteProfileRequest,
    EntitySelector,
    GetProfileByIdRequest,
    GetProfileByNameRequest,
    GetProfileStatusByNameRequest,
    GetProfileStatusByProjectRequest,
    ListProfilesRequest,
    ListProfilesResponse,
    PatchProfileRequest,
    ProfileResponse,
    ProfileStatusResponse,
    ProjectProfileStatusResponse,
    UpdateProfileRequest,
)
from app.api.server import (
    CREATE_PROFILE,
    DELETE_PROFILE,
    GET_PROFILE_BY_ID,
    GET_PROFILE_BY_NAME,
    GET_PROFILE_STATUS_BY_NAME,
    GET_PROFILE_STATUS_BY_PROJECT,
    LIST_PROFILES,
    PATCH_PROFILE,
    UPDATE_PROFILE,
)
from app.core.dependencies import Metadata, QueryContext, Server
from app.domain.enums import EntityKind

router = APIRouter(tags=["profiles"])


@router.post("/profiles", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def post_profile(payload: CreateProfileRequest, server: Server, metadata: Metadata):
    """
    Create a profile.

    Emits a profile-initialised event once the profile is stored.
    """
    return await server.call(CREATE_PROFILE, payload, metadata)


@router.put("/profiles", response_model=ProfileResponse)
async def put_profile(payload: UpdateProfileRequest, server: Server, metadata: Metadata):
    return await server.call(UPDATE_PROFILE, payload, metadata)


@router.patch("/profiles", response_model=ProfileResponse)
async def patch_profile(payload: PatchProfileRequest, server: Server, metadata: Metadata):
    """Apply a partial update; fields left out keep their stored value."""
    return await server.call(PATCH_PROFILE, payload, metadata)


@router.get("/profiles", response_model=ListProfilesResponse)
async def get_profiles(server: Server, metadata: Metadata, ctx: QueryContext):
    return await server.call(LIST_PROFILES, ListProfilesRequest(**ctx), metadata)


@router.get("/profiles/status", response_model=ProjectProfileStatusResponse)
async def get_project_profile_status(server: Server, metadata: Metadata, ctx: QueryContext):
    return await server.call(
        GET_PROFILE_STATUS_BY_PROJECT, GetProfileStatusByProjectRequest(**ctx), metadata
    )


@router.get("/profiles/name/{name}", response_model=ProfileResponse)
async def get_profile_by_name(name: str, server: Server, metadata: Metadata, ctx: QueryContext):
    return await server.call(
        GET_PROFILE_BY_NAME, GetProfileByNameRequest(name=name, **ctx), metadata
    )


@router.get("/profiles/name/{name}/status", response_model=ProfileStatusResponse)
async def get_profile_status(
    name: str,
    server: Server,
    metadata: Metadata,
    ctx: QueryContext,
    entity_id: Annotated[str | None, Query(description="Only rows for this entity")] = None,
    entity_type: Annotated[EntityKind | None, Query(description="Only rows of this kind")] = None,
    rule_name: Annotated[str | None, Query(description="Only rows for this rule")] = None,
):
    """
    Aggregate status of a profile with its rule evaluations.

    Failed and errored evaluations carry the rule type's guidance.
    """
    entity = None
    if entity_id is not None or entity_type is not None:
        entity = EntitySelector(id=entity_id, type=entity_type)
    request = GetProfileStatusByNameRequest(
        name=name, entity=entity, rule_name=rule_name, **ctx
    )
    return await server.call(GET_PROFILE_STATUS_BY_NAME, request, metadata)


@router.get("/profiles/{profile_id}", response_model=ProfileResponse)
async def get_profile(profile_id: str, server: Server, metadata: Metadata, ctx: QueryContext):
    return await server.call(
        GET_PROFILE_BY_ID, GetProfileByIdRequest(id=profile_id, **ctx), metadata
    )


@router.delete("/profiles/{profile_id}", response_model=EmptyResponse)
async def delete_profile(profile_id: str, server: Server, metadata: Metadata, ctx: QueryContext):
    return await server.call(
        DELETE_PROFILE, DeleteProfileRequest(id=profile_id, **ctx), metadata
    )
