from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.api.schemas.context import ProjectScopedRequest


class RuleTypeSpec(BaseModel):
    """A rule type as submitted by a client."""

    name: str = Field(..., min_length=1)
    description: str = ""
    guidance: str = ""
    definition: dict[str, Any] = Field(
        ...,
        description="in_entity, rule_schema, param_schema, ingest, eval, remediate, alert",
    )


class CreateRuleTypeRequest(ProjectScopedRequest):
    rule_type: RuleTypeSpec


class UpdateRuleTypeRequest(ProjectScopedRequest):
    rule_type: RuleTypeSpec


class DeleteRuleTypeRequest(ProjectScopedRequest):
    id: str


class GetRuleTypeByIdRequest(ProjectScopedRequest):
    id: str


class GetRuleTypeByNameRequest(ProjectScopedRequest):
    name: str


class ListRuleTypesRequest(ProjectScopedRequest):
    pass


class RuleTypeResponse(BaseModel):
    id: str
    project_id: str
    provider: str
    name: str
    description: str
    guidance: str
    definition: dict[str, Any]
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ListRuleTypesResponse(BaseModel):
    rule_types: list[RuleTypeResponse]
