"""
RPC handlers of the control plane.

Each public coroutine on `ControlPlaneServer` is one unary method, tagged with
its fully-qualified name and call policy. By the time a handler runs the
context pipeline has already authenticated the caller and, for
project-scoped methods, fixed the target project and provider.
"""

import logging
from typing import Any

from app.api.schemas.common import EmptyResponse, HealthRequest, HealthResponse
from app.api.schemas.profile import (
    CreateProfileRequest,
    DeleteProfileRequest,
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
from app.api.schemas.project import (
    CreateProjectRequest,
    ListChildProjectsRequest,
    ListChildProjectsResponse,
    ProjectResponse,
)
from app.api.schemas.ruletype import (
    CreateRuleTypeRequest,
    DeleteRuleTypeRequest,
    GetRuleTypeByIdRequest,
    GetRuleTypeByNameRequest,
    ListRuleTypesRequest,
    ListRuleTypesResponse,
    RuleTypeResponse,
    UpdateRuleTypeRequest,
)
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
from app.core.context import get_entity_context, get_permissions, require_claims
from app.core.errors import NotFoundError
from app.core.events import EventPublisher
from app.core.interceptors import ContextPipeline
from app.core.rpc_policy import RpcPolicyIndex, TargetResource, handler_method_name, rpc_method
from app.core.security import TokenValidator
from app.db.store import Store
from app.services import (
    profile_service,
    project_service,
    ruletype_service,
    user_service,
)

logger = logging.getLogger(__name__)

_PROJECT = TargetResource.PROJECT
_USER = TargetResource.USER

HEALTH = "controlplane.v1.HealthService/CheckHealth"

CREATE_RULE_TYPE = "controlplane.v1.RuleTypeService/CreateRuleType"
UPDATE_RULE_TYPE = "controlplane.v1.RuleTypeService/UpdateRuleType"
DELETE_RULE_TYPE = "controlplane.v1.RuleTypeService/DeleteRuleType"
GET_RULE_TYPE_BY_ID = "controlplane.v1.RuleTypeService/GetRuleTypeById"
GET_RULE_TYPE_BY_NAME = "controlplane.v1.RuleTypeService/GetRuleTypeByName"
LIST_RULE_TYPES = "controlplane.v1.RuleTypeService/ListRuleTypes"

CREATE_PROFILE = "controlplane.v1.ProfileService/CreateProfile"
UPDATE_PROFILE = "controlplane.v1.ProfileService/UpdateProfile"
PATCH_PROFILE = "controlplane.v1.ProfileService/PatchProfile"
DELETE_PROFILE = "controlplane.v1.ProfileService/DeleteProfile"
GET_PROFILE_BY_ID = "controlplane.v1.ProfileService/GetProfileById"
GET_PROFILE_BY_NAME = "controlplane.v1.ProfileService/GetProfileByName"
LIST_PROFILES = "controlplane.v1.ProfileService/ListProfiles"
GET_PROFILE_STATUS_BY_NAME = "controlplane.v1.ProfileService/GetProfileStatusByName"
GET_PROFILE_STATUS_BY_PROJECT = "controlplane.v1.ProfileService/GetProfileStatusByProject"

CREATE_USER = "controlplane.v1.UserService/CreateUser"
GET_USER = "controlplane.v1.UserService/GetUser"
DELETE_USER = "controlplane.v1.UserService/DeleteUser"
RESOLVE_INVITATION = "controlplane.v1.UserService/ResolveInvitation"

ASSIGN_ROLE = "controlplane.v1.PermissionsService/AssignRole"
REMOVE_ROLE = "controlplane.v1.PermissionsService/RemoveRole"

CREATE_PROJECT = "controlplane.v1.ProjectsService/CreateProject"
LIST_CHILD_PROJECTS = "controlplane.v1.ProjectsService/ListChildProjects"


def _project_id() -> str:
    return get_entity_context().project.id


def _provider_name() -> str:
    return get_entity_context().provider.name


class ControlPlaneServer:
    """
    Holds the shared store and event publisher; one instance per process.

    Usage:
        server = ControlPlaneServer(store, publisher, validator)
        response = await server.call(LIST_PROFILES, request, metadata)
    """

    def __init__(self, store: Store, publisher: EventPublisher, validator: TokenValidator):
        self.store = store
        self.publisher = publisher
        handlers = [getattr(self, attr) for attr in dir(type(self)) if not attr.startswith("_")]
        self.index = RpcPolicyIndex.from_handlers(handlers)
        self.pipeline = ContextPipeline(self.index, validator, store)
        self._handlers = {handler_method_name(h): h for h in handlers if handler_method_name(h)}

    async def call(self, method: str, request: Any, metadata: dict[str, str] | None = None) -> Any:
        """Run `method` through the context pipeline."""
        handler = self._handlers.get(method)
        if handler is None:
            raise NotFoundError(f"unknown method {method}")
        return await self.pipeline.invoke(method, request, handler, metadata)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @rpc_method(HEALTH, anonymous=True, no_log=True)
    async def check_health(self, request: HealthRequest) -> HealthResponse:
        return HealthResponse()

    # ------------------------------------------------------------------
    # Rule types
    # ------------------------------------------------------------------

    @rpc_method(CREATE_RULE_TYPE, target_resource=_PROJECT, requires_provider=True)
    async def create_rule_type(self, request: CreateRuleTypeRequest) -> RuleTypeResponse:
        rule_type = await ruletype_service.create_rule_type(
            self.store,
            project_id=_project_id(),
            provider=_provider_name(),
            spec=request.rule_type,
        )
        return RuleTypeResponse.model_validate(rule_type)

    @rpc_method(UPDATE_RULE_TYPE, target_resource=_PROJECT, requires_provider=True)
    async def update_rule_type(self, request: UpdateRuleTypeRequest) -> RuleTypeResponse:
        rule_type = await ruletype_service.update_rule_type(
            self.store,
            project_id=_project_id(),
            provider=_provider_name(),
            spec=request.rule_type,
        )
        return RuleTypeResponse.model_validate(rule_type)

    @rpc_method(DELETE_RULE_TYPE, target_resource=_PROJECT)
    async def delete_rule_type(self, request: DeleteRuleTypeRequest) -> EmptyResponse:
        await ruletype_service.delete_rule_type(
            self.store, project_id=_project_id(), rule_type_id=request.id
        )
        return EmptyResponse()

    @rpc_method(GET_RULE_TYPE_BY_ID, target_resource=_PROJECT)
    async def get_rule_type_by_id(self, request: GetRuleTypeByIdRequest) -> RuleTypeResponse:
        rule_type = await ruletype_service.get_rule_type_by_id(
            self.store, project_id=_project_id(), rule_type_id=request.id
        )
        return RuleTypeResponse.model_validate(rule_type)

    @rpc_method(GET_RULE_TYPE_BY_NAME, target_resource=_PROJECT)
    async def get_rule_type_by_name(self, request: GetRuleTypeByNameRequest) -> RuleTypeResponse:
        rule_type = await ruletype_service.get_rule_type_by_name(
            self.store, project_id=_project_id(), name=request.name
        )
        return RuleTypeResponse.model_validate(rule_type)

    @rpc_method(LIST_RULE_TYPES, target_resource=_PROJECT)
    async def list_rule_types(self, request: ListRuleTypesRequest) -> ListRuleTypesResponse:
        rule_types = await ruletype_service.list_rule_types(
            self.store, project_id=_project_id(), provider=_provider_name() or None
        )
        return ListRuleTypesResponse(
            rule_types=[RuleTypeResponse.model_validate(rt) for rt in rule_types]
        )

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    @rpc_method(CREATE_PROFILE, target_resource=_PROJECT, requires_provider=True)
    async def create_profile(self, request: CreateProfileRequest) -> ProfileResponse:
        return await profile_service.create_profile(
            self.store,
            self.publisher,
            project_id=_project_id(),
            provider_name=_provider_name(),
            spec=request.profile,
        )

    @rpc_method(UPDATE_PROFILE, target_resource=_PROJECT)
    async def update_profile(self, request: UpdateProfileRequest) -> ProfileResponse:
        return await profile_service.update_profile(
            self.store,
            self.publisher,
            project_id=_project_id(),
            provider_name=_provider_name() or None,
            spec=request.profile,
        )

    @rpc_method(PATCH_PROFILE, target_resource=_PROJECT)
    async def patch_profile(self, request: PatchProfileRequest) -> ProfileResponse:
        return await profile_service.patch_profile(
            self.store,
            self.publisher,
            project_id=_project_id(),
            profile_id=request.id,
            patch=request.patch,
        )

    @rpc_method(DELETE_PROFILE, target_resource=_PROJECT)
    async def delete_profile(self, request: DeleteProfileRequest) -> EmptyResponse:
        await profile_service.delete_profile(
            self.store, project_id=_project_id(), profile_id=request.id
        )
        return EmptyResponse()

    @rpc_method(GET_PROFILE_BY_ID, target_resource=_PROJECT)
    async def get_profile_by_id(self, request: GetProfileByIdRequest) -> ProfileResponse:
        return await profile_service.get_profile_by_id(
            self.store, project_id=_project_id(), profile_id=request.id
        )

    @rpc_method(GET_PROFILE_BY_NAME, target_resource=_PROJECT)
    async def get_profile_by_name(self, request: GetProfileByNameRequest) -> ProfileResponse:
        return await profile_service.get_profile_by_name(
            self.store, project_id=_project_id(), name=request.name
        )

    @rpc_method(LIST_PROFILES, target_resource=_PROJECT)
    async def list_profiles(self, request: ListProfilesRequest) -> ListProfilesResponse:
        profiles = await profile_service.list_profiles(self.store, project_id=_project_id())
        return ListProfilesResponse(profiles=profiles)

    @rpc_method(GET_PROFILE_STATUS_BY_NAME, target_resource=_PROJECT)
    async def get_profile_status_by_name(
        self, request: GetProfileStatusByNameRequest
    ) -> ProfileStatusResponse:
        return await profile_service.get_profile_status_by_name(
            self.store,
            project_id=_project_id(),
            name=request.name,
            selector=request.entity,
            rule_name=request.rule_name,
        )

    @rpc_method(GET_PROFILE_STATUS_BY_PROJECT, target_resource=_PROJECT)
    async def get_profile_status_by_project(
        self, request: GetProfileStatusByProjectRequest
    ) -> ProjectProfileStatusResponse:
        statuses = await profile_service.get_profile_status_by_project(
            self.store, project_id=_project_id()
        )
        return ProjectProfileStatusResponse(profile_status=statuses)

    # ------------------------------------------------------------------
    # Users and roles
    # ------------------------------------------------------------------

    @rpc_method(CREATE_USER, target_resource=_USER)
    async def create_user(self, request: CreateUserRequest) -> CreateUserResponse:
        return await user_service.create_user(self.store, require_claims())

    @rpc_method(GET_USER, target_resource=_USER)
    async def get_user(self, request: GetUserRequest) -> GetUserResponse:
        return await user_service.get_user(self.store, require_claims())

    @rpc_method(DELETE_USER, target_resource=_USER)
    async def delete_user(self, request: DeleteUserRequest) -> EmptyResponse:
        await user_service.delete_user(self.store, require_claims())
        return EmptyResponse()

    @rpc_method(RESOLVE_INVITATION, target_resource=_USER)
    async def resolve_invitation(
        self, request: ResolveInvitationRequest
    ) -> ResolveInvitationResponse:
        return await user_service.resolve_invitation(
            self.store, require_claims(), code=request.code, accept=request.accept
        )

    @rpc_method(ASSIGN_ROLE, target_resource=_PROJECT, owner_only=True)
    async def assign_role(self, request: AssignRoleRequest) -> RoleChangeResponse:
        return await user_service.assign_role(
            self.store,
            project_id=_project_id(),
            sponsor_id=get_permissions().user_id,
            assignment=request.role_assignment,
        )

    @rpc_method(REMOVE_ROLE, target_resource=_PROJECT, owner_only=True)
    async def remove_role(self, request: RemoveRoleRequest) -> RoleChangeResponse:
        return await user_service.remove_role(
            self.store, project_id=_project_id(), assignment=request.role_assignment
        )

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    @rpc_method(CREATE_PROJECT, target_resource=_PROJECT, owner_only=True)
    async def create_project(self, request: CreateProjectRequest) -> ProjectResponse:
        project = await project_service.create_project(
            self.store,
            parent_id=_project_id(),
            name=request.name,
            metadata=request.metadata,
            creator_id=get_permissions().user_id,
        )
        return ProjectResponse.model_validate(project)

    @rpc_method(LIST_CHILD_PROJECTS, target_resource=_PROJECT)
    async def list_child_projects(
        self, request: ListChildProjectsRequest
    ) -> ListChildProjectsResponse:
        children = await project_service.list_child_projects(self.store, project_id=_project_id())
        return ListChildProjectsResponse(
            projects=[ProjectResponse.model_validate(p) for p in children]
        )
