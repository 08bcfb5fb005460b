from __future__ import annotations

from pydantic import BaseModel, Field


class ContextV1(BaseModel):
    """Request context: optional project UUID and provider name."""

    project: str | None = None
    provider: str | None = None


class ContextV2(BaseModel):
    project_id: str = ""


class ProjectScopedRequest(BaseModel):
    """Base for requests that operate inside a project.

    Both context versions may be sent; a non-empty v2 project id wins.
    """

    context: ContextV1 | None = Field(default=None)
    context_v2: ContextV2 | None = Field(default=None)

    def get_context(self) -> ContextV1 | None:
        return self.context

    def get_context_v2(self) -> ContextV2 | None:
        return self.context_v2


class EntityContextResponse(BaseModel):
    project: str
    provider: str | None = None
