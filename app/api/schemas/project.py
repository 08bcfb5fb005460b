from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.api.schemas.context import ProjectScopedRequest


class CreateProjectRequest(ProjectScopedRequest):
    """Create a child of the project named by the context."""

    name: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProjectResponse(BaseModel):
    id: str
    name: str
    parent_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="project_metadata")
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ListChildProjectsRequest(ProjectScopedRequest):
    pass


class ListChildProjectsResponse(BaseModel):
    projects: list[ProjectResponse]
