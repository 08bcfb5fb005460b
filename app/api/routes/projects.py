from __future__ import annotations

from fastapi import APIRouter, status

from app.api.schemas.project import (
    CreateProjectRequest,
    ListChildProjectsRequest,
    ListChildProjectsResponse,
    ProjectResponse,
)
from app.api.server import CREATE_PROJECT, LIST_CHILD_PROJECTS
from app.core.dependencies import Metadata, QueryContext, Server

router = APIRouter(tags=["projects"])


@router.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def post_project(payload: CreateProjectRequest, server: Server, metadata: Metadata):
    """Create a child of the context project. Project administrators only."""
    return await server.call(CREATE_PROJECT, payload, metadata)


@router.get("/projects/children", response_model=ListChildProjectsResponse)
async def get_child_projects(server: Server, metadata: Metadata, ctx: QueryContext):
    return await server.call(LIST_CHILD_PROJECTS, ListChildProjectsRequest(**ctx), metadata)
