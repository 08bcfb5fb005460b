"""
Unit tests for the RPC server: method registration, project isolation across
every project-scoped method, and a few handler flows end to end through the
context pipeline.
"""

import pytest

from app.api.schemas.common import HealthRequest
from app.api.schemas.context import ContextV1, ContextV2, ProjectScopedRequest
from app.api.schemas.profile import CreateProfileRequest, GetProfileByNameRequest, ProfileSpec
from app.api.schemas.project import CreateProjectRequest, ListChildProjectsRequest
from app.api.schemas.ruletype import (
    CreateRuleTypeRequest,
    GetRuleTypeByNameRequest,
    ListRuleTypesRequest,
    RuleTypeSpec,
)
from app.api.schemas.user import AssignRoleRequest, GetUserRequest, RoleAssignment
from app.api.server import (
    ASSIGN_ROLE,
    CREATE_PROFILE,
    CREATE_PROJECT,
    CREATE_RULE_TYPE,
    GET_PROFILE_BY_NAME,
    GET_RULE_TYPE_BY_NAME,
    GET_USER,
    HEALTH,
    LIST_CHILD_PROJECTS,
    LIST_RULE_TYPES,
    ControlPlaneServer,
)
from app.core.errors import AuthFailedError, ForbiddenError, NotFoundError
from app.core.rpc_policy import TargetResource
from app.domain.rules import RuleRef
from tests.fakes import SEVERITY_SCHEMA, bearer, make_claims, rule_type_definition


@pytest.fixture
def server(store, publisher, validator):
    return ControlPlaneServer(store, publisher, validator)


def _project_methods(server: ControlPlaneServer) -> list[str]:
    return sorted(
        name
        for name, policy in server.index.items()
        if policy.target_resource == TargetResource.PROJECT
    )


def _in(project_id: str, provider: str | None = None) -> dict:
    return {"context": ContextV1(project=project_id, provider=provider)}


class TestRegistration:
    def test_every_handler_is_indexed(self, server):
        assert HEALTH in server.index
        assert server.index[HEALTH].anonymous
        assert server.index[GET_USER].target_resource == TargetResource.USER
        assert server.index[ASSIGN_ROLE].owner_only
        assert server.index[CREATE_RULE_TYPE].requires_provider

    def test_project_methods_cover_the_tenant_surface(self, server):
        methods = _project_methods(server)
        assert len(methods) == 19
        assert all(".v1." in name for name in methods)

    @pytest.mark.anyio
    async def test_unknown_method(self, server):
        with pytest.raises(NotFoundError, match="unknown method"):
            await server.call("controlplane.v1.Nope/Nothing", HealthRequest())

    @pytest.mark.anyio
    async def test_health_needs_no_token(self, server):
        response = await server.call(HEALTH, HealthRequest())
        assert response.status == "OK"


class TestProjectIsolation:
    @pytest.mark.anyio
    async def test_foreign_project_is_denied_for_every_method(self, server, store, tenant):
        foreign = store.add_project("globex")
        store.add_provider(foreign.id, "github")

        for method in _project_methods(server):
            request = ProjectScopedRequest(**_in(foreign.id))
            with pytest.raises(ForbiddenError):
                await server.call(method, request, bearer(tenant.token))

    @pytest.mark.anyio
    async def test_foreign_project_via_v2_context(self, server, store, tenant):
        foreign = store.add_project("globex")
        request = ListRuleTypesRequest(
            context=ContextV1(project=tenant.project.id),
            context_v2=ContextV2(project_id=foreign.id),
        )

        with pytest.raises(ForbiddenError):
            await server.call(LIST_RULE_TYPES, request, bearer(tenant.token))

    @pytest.mark.anyio
    async def test_missing_token(self, server, tenant):
        with pytest.raises(AuthFailedError):
            await server.call(LIST_RULE_TYPES, ListRuleTypesRequest(**_in(tenant.project.id)))

    @pytest.mark.anyio
    async def test_viewer_cannot_assign_roles(self, server, store, validator, tenant):
        viewer = store.add_user("bob-sub")
        store.bind(viewer, tenant.project, "viewer")
        validator.add("bob-token", make_claims("bob-sub"))
        request = AssignRoleRequest(
            **_in(tenant.project.id),
            role_assignment=RoleAssignment(role="viewer", subject="alice-sub"),
        )

        with pytest.raises(ForbiddenError, match="not an administrator"):
            await server.call(ASSIGN_ROLE, request, bearer("bob-token"))


class TestHandlerFlows:
    @pytest.mark.anyio
    async def test_rule_type_and_profile_lifecycle(self, server, publisher, tenant):
        metadata = bearer(tenant.token)
        created = await server.call(
            CREATE_RULE_TYPE,
            CreateRuleTypeRequest(
                **_in(tenant.project.id),
                rule_type=RuleTypeSpec(
                    name="branch_protection",
                    definition=rule_type_definition(rule_schema=SEVERITY_SCHEMA),
                ),
            ),
            metadata,
        )
        assert created.provider == "github"
        assert created.project_id == tenant.project.id

        fetched = await server.call(
            GET_RULE_TYPE_BY_NAME,
            GetRuleTypeByNameRequest(**_in(tenant.project.id), name="branch_protection"),
            metadata,
        )
        assert fetched.id == created.id

        profile = await server.call(
            CREATE_PROFILE,
            CreateProfileRequest(
                **_in(tenant.project.id),
                profile=ProfileSpec(
                    name="baseline",
                    repository=[RuleRef(type="branch_protection", def_={"severity": "high"})],
                ),
            ),
            metadata,
        )
        assert profile.context.provider == "github"
        assert [topic for topic, _ in publisher.events] == ["profile-initialised"]

        by_name = await server.call(
            GET_PROFILE_BY_NAME,
            GetProfileByNameRequest(**_in(tenant.project.id), name="baseline"),
            metadata,
        )
        assert by_name.id == profile.id

    @pytest.mark.anyio
    async def test_default_project_is_used_without_context(self, server, tenant):
        response = await server.call(
            LIST_RULE_TYPES, ListRuleTypesRequest(context=ContextV1()), bearer(tenant.token)
        )
        assert response.rule_types == []

    @pytest.mark.anyio
    async def test_assign_role_by_subject(self, server, store, tenant):
        store.add_user("bob-sub")

        response = await server.call(
            ASSIGN_ROLE,
            AssignRoleRequest(
                **_in(tenant.project.id),
                role_assignment=RoleAssignment(role="editor", subject="bob-sub"),
            ),
            bearer(tenant.token),
        )

        assert response.project_id == tenant.project.id
        assert response.role_assignment.subject == "bob-sub"
        assert response.invitation is None

    @pytest.mark.anyio
    async def test_create_child_project(self, server, store, tenant):
        child = await server.call(
            CREATE_PROJECT,
            CreateProjectRequest(**_in(tenant.project.id), name="payments"),
            bearer(tenant.token),
        )

        assert child.parent_id == tenant.project.id
        assert (tenant.user.id, child.id) in store.db.role_bindings

    @pytest.mark.anyio
    async def test_viewer_lists_child_projects(self, server, store, validator, tenant):
        await server.call(
            CREATE_PROJECT,
            CreateProjectRequest(**_in(tenant.project.id), name="payments"),
            bearer(tenant.token),
        )
        viewer = store.add_user("bob-sub")
        store.bind(viewer, tenant.project, "viewer")
        validator.add("bob-token", make_claims("bob-sub"))

        response = await server.call(
            LIST_CHILD_PROJECTS,
            ListChildProjectsRequest(**_in(tenant.project.id)),
            bearer("bob-token"),
        )

        assert [p.name for p in response.projects] == ["payments"]
        assert response.projects[0].parent_id == tenant.project.id

    @pytest.mark.anyio
    async def test_get_user_lists_projects(self, server, tenant):
        response = await server.call(GET_USER, GetUserRequest(), bearer(tenant.token))

        assert response.user.identity_subject == "alice-sub"
        assert [p.name for p in response.projects] == ["acme"]
