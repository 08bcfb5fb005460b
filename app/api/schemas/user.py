from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.api.schemas.context import ProjectScopedRequest
from app.domain.enums import Role


class CreateUserRequest(BaseModel):
    pass


class CreateUserResponse(BaseModel):
    id: int
    subject: str
    project_id: str
    project_name: str
    created_at: datetime


class ProjectSummary(BaseModel):
    id: str
    name: str

    model_config = ConfigDict(from_attributes=True)


class UserRecord(BaseModel):
    id: int
    identity_subject: str
    display_name: str | None = None
    email: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GetUserRequest(BaseModel):
    pass


class GetUserResponse(BaseModel):
    user: UserRecord
    projects: list[ProjectSummary] = Field(default_factory=list)


class DeleteUserRequest(BaseModel):
    pass


class ResolveInvitationRequest(BaseModel):
    code: str = Field(..., min_length=1)
    accept: bool


class ResolveInvitationResponse(BaseModel):
    role: str
    project_id: str
    email: str
    is_accepted: bool


class RoleAssignment(BaseModel):
    """Role on a project, granted either to a known subject or by email invite."""

    role: Role
    subject: str | None = None
    email: str | None = None

    @model_validator(mode="after")
    def check_target(self) -> RoleAssignment:
        if bool(self.subject) == bool(self.email):
            raise ValueError("exactly one of subject or email is required")
        return self


class AssignRoleRequest(ProjectScopedRequest):
    role_assignment: RoleAssignment


class RemoveRoleRequest(ProjectScopedRequest):
    role_assignment: RoleAssignment


class InvitationRecord(BaseModel):
    code: str
    email: str
    project_id: str
    role: str
    sponsor_id: int
    created_at: datetime | None = None
    expires_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class RoleChangeResponse(BaseModel):
    """Either the binding that changed, or the invitation that was created/removed."""

    role_assignment: RoleAssignment | None = None
    project_id: str
    invitation: InvitationRecord | None = None
