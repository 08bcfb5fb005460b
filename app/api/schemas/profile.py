from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.api.schemas.context import EntityContextResponse, ProjectScopedRequest
from app.domain.enums import ActionOpt, EntityKind
from app.domain.rules import RuleRef

ENTITY_FIELDS = {kind: kind.value for kind in EntityKind}


class ProfileSpec(BaseModel):
    """
    A profile as submitted by a client.

    Rule lists are keyed by entity kind; kinds left out have no rules.
    `id` is optional on update, where it takes precedence over the name.
    """

    id: str | None = None
    name: str = Field(..., min_length=1)
    remediate: ActionOpt = ActionOpt.UNSET
    alert: ActionOpt = ActionOpt.UNSET
    repository: list[RuleRef] = Field(default_factory=list)
    artifact: list[RuleRef] = Field(default_factory=list)
    build_environment: list[RuleRef] = Field(default_factory=list)
    pull_request: list[RuleRef] = Field(default_factory=list)
    provider: str | None = Field(
        default=None, description="Provider the profile targets; taken from the context if unset"
    )

    def rules_by_entity(self) -> dict[EntityKind, list[RuleRef]]:
        return {kind: list(getattr(self, field)) for kind, field in ENTITY_FIELDS.items()}


class ProfilePatch(BaseModel):
    """Partial profile: only fields that are set are applied."""

    remediate: ActionOpt | None = None
    alert: ActionOpt | None = None
    repository: list[RuleRef] | None = None
    artifact: list[RuleRef] | None = None
    build_environment: list[RuleRef] | None = None
    pull_request: list[RuleRef] | None = None


class CreateProfileRequest(ProjectScopedRequest):
    profile: ProfileSpec


class UpdateProfileRequest(ProjectScopedRequest):
    profile: ProfileSpec


class PatchProfileRequest(ProjectScopedRequest):
    id: str
    patch: ProfilePatch


class DeleteProfileRequest(ProjectScopedRequest):
    id: str


class GetProfileByIdRequest(ProjectScopedRequest):
    id: str


class GetProfileByNameRequest(ProjectScopedRequest):
    name: str


class ListProfilesRequest(ProjectScopedRequest):
    pass


class EntitySelector(BaseModel):
    id: str | None = None
    type: EntityKind | None = None


class GetProfileStatusByNameRequest(ProjectScopedRequest):
    name: str
    entity: EntitySelector | None = None
    rule_name: str | None = None


class GetProfileStatusByProjectRequest(ProjectScopedRequest):
    pass


class ProfileResponse(BaseModel):
    id: str
    name: str
    context: EntityContextResponse
    remediate: str
    alert: str
    repository: list[RuleRef] = Field(default_factory=list)
    artifact: list[RuleRef] = Field(default_factory=list)
    build_environment: list[RuleRef] = Field(default_factory=list)
    pull_request: list[RuleRef] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class ListProfilesResponse(BaseModel):
    profiles: list[ProfileResponse]


class ProfileStatus(BaseModel):
    profile_id: str
    profile_name: str
    profile_status: str
    last_updated: datetime | None = None


class RuleEvaluationStatus(BaseModel):
    profile_id: str
    rule_id: str
    rule_name: str
    rule_type_name: str
    entity: str
    entity_id: str
    status: str
    details: str = ""
    last_updated: datetime | None = None
    remediation_status: str | None = None
    remediation_details: str = ""
    remediation_last_updated: datetime | None = None
    entity_info: dict[str, Any] = Field(default_factory=dict)
    guidance: str = ""


class ProfileStatusResponse(BaseModel):
    profile_status: ProfileStatus
    rule_evaluation_status: list[RuleEvaluationStatus] = Field(default_factory=list)


class ProjectProfileStatusResponse(BaseModel):
    profile_status: list[ProfileStatus]
