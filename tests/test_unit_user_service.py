"""
Unit tests for enrolment, invitations and role assignment.
"""

from datetime import UTC, datetime, timedelta

import pytest

from app.api.schemas.user import RoleAssignment
from app.core.errors import (
    ConflictError,
    ExhaustedError,
    ForbiddenError,
    NotFoundError,
    PreconditionError,
    UnknownError,
    ValidationError,
)
from app.domain.enums import Role
from app.services import user_service
from tests.fakes import make_claims


def _bindings(store, user_id):
    return {b.project_id: b.role for b in store.db.role_bindings.values() if b.user_id == user_id}


def _user(store, subject):
    return next(u for u in store.db.users.values() if u.identity_subject == subject)


def _invite(store, tenant, *, role="viewer", age=timedelta(0), **fields):
    return store.add_invitation(
        project=tenant.project,
        sponsor=tenant.user,
        role=role,
        issued_at=datetime.now(UTC) - age,
        **fields,
    )


class TestCreateUser:
    @pytest.mark.anyio
    async def test_new_user_gets_a_default_project(self, store):
        claims = make_claims("carol-sub", preferred_username="carol", email="carol@example.com")

        response = await user_service.create_user(store, claims)

        user = _user(store, "carol-sub")
        assert response.id == user.id
        assert response.subject == "carol-sub"
        assert response.project_name == "carol"
        project = store.db.projects[response.project_id]
        assert project.parent_id is None
        assert project.project_metadata["self_enrolled"] is True
        assert _bindings(store, user.id) == {project.id: "admin"}
        binding = store.db.role_bindings[(user.id, project.id)]
        assert binding.organization_id == project.id

    @pytest.mark.anyio
    async def test_subject_is_used_without_username(self, store):
        response = await user_service.create_user(store, make_claims("dave-sub"))
        assert response.project_name == "dave-sub"

    @pytest.mark.anyio
    async def test_taken_project_name_gets_a_suffix(self, store):
        store.add_project("carol")

        response = await user_service.create_user(
            store, make_claims("carol-sub", preferred_username="carol"), suffix=lambda: "beef"
        )

        assert response.project_name == "carol-beef"

    @pytest.mark.anyio
    async def test_name_attempts_are_bounded(self, store):
        store.add_project("carol")
        store.add_project("carol-dead")
        calls = []

        def suffix():
            calls.append(1)
            return "dead"

        with pytest.raises(ExhaustedError, match="unique project name"):
            await user_service.create_user(
                store, make_claims("carol-sub", preferred_username="carol"), suffix=suffix
            )

        assert len(calls) == user_service.PROJECT_NAME_ATTEMPTS
        assert store.db.users == {}
        assert store.rollbacks == 1

    @pytest.mark.anyio
    async def test_existing_user_is_conflict(self, store, tenant):
        with pytest.raises(ConflictError, match="user already exists"):
            await user_service.create_user(store, tenant.claims)

    @pytest.mark.anyio
    async def test_store_failure_is_unknown(self, store):
        store.fail("create_user")

        with pytest.raises(UnknownError, match="failed to create user"):
            await user_service.create_user(store, make_claims("erin-sub"))

    @pytest.mark.anyio
    async def test_installations_become_projects(self, store):
        first = store.add_installation("4242", "acme-org")
        second = store.add_installation("4242", "widgets")
        store.add_installation("9999", "someone-else")

        response = await user_service.create_user(
            store, make_claims("gh-sub", preferred_username="frank", gh_id="4242")
        )

        user = _user(store, "gh-sub")
        names = {store.db.projects[pid].name for pid in _bindings(store, user.id)}
        assert names == {"acme-org", "widgets"}
        assert response.project_name == "acme-org"

        for install in (first, second):
            claimed = store.db.installations[install.id]
            assert claimed.project_id is not None
            provider = next(
                p for p in store.db.providers.values() if p.project_id == claimed.project_id
            )
            assert provider.name == f"forge-app-{install.organization_name}"
            assert provider.provider_class == "forge-app"
            assert "repo-lister" in provider.implements

        unclaimed = [i for i in store.db.installations.values() if i.project_id is None]
        assert [i.organization_name for i in unclaimed] == ["someone-else"]

    @pytest.mark.anyio
    async def test_installation_name_collision_uses_suffix(self, store):
        store.add_project("acme-org")
        store.add_installation("4242", "acme-org")

        response = await user_service.create_user(
            store, make_claims("gh-sub", preferred_username="frank", gh_id="4242")
        )

        assert response.project_name.startswith("acme-org-")
        assert len(response.project_name) == len("acme-org-") + 4

    @pytest.mark.anyio
    async def test_unclaimable_installation_aborts_enrolment(self, store):
        store.add_project("acme-org")
        store.add_project("acme-org-dead")
        install = store.add_installation("4242", "acme-org")

        with pytest.raises(ExhaustedError, match="unique project name"):
            await user_service.create_user(
                store,
                make_claims("gh-sub", preferred_username="frank", gh_id="4242"),
                suffix=lambda: "dead",
            )

        assert store.db.users == {}
        assert store.db.installations[install.id].project_id is None
        assert store.rollbacks == 1


class TestGetAndDeleteUser:
    @pytest.mark.anyio
    async def test_get_user_lists_projects(self, store, tenant):
        response = await user_service.get_user(store, tenant.claims)

        assert response.user.identity_subject == "alice-sub"
        assert [p.name for p in response.projects] == ["acme"]

    @pytest.mark.anyio
    async def test_get_unknown_user(self, store):
        with pytest.raises(NotFoundError, match="user not found"):
            await user_service.get_user(store, make_claims("ghost"))

    @pytest.mark.anyio
    async def test_delete_user_removes_bindings(self, store, tenant):
        await user_service.delete_user(store, tenant.claims)

        assert store.db.users == {}
        assert store.db.role_bindings == {}
        assert tenant.project.id in store.db.projects


class TestResolveInvitation:
    @pytest.mark.anyio
    async def test_accept_enrols_and_binds_the_invitee(self, store, tenant):
        invitation = _invite(store, tenant, role="editor")

        response = await user_service.resolve_invitation(
            store, make_claims("invitee-sub"), code=invitation.code, accept=True
        )

        assert response.is_accepted is True
        assert response.role == "editor"
        assert response.project_id == tenant.project.id
        invitee = _user(store, "invitee-sub")
        assert _bindings(store, invitee.id) == {tenant.project.id: "editor"}
        assert store.db.invitations == {}

    @pytest.mark.anyio
    async def test_accepting_twice_leaves_the_same_binding(self, store, tenant):
        invitation = _invite(store, tenant, role="editor")
        claims = make_claims("invitee-sub")

        await user_service.resolve_invitation(store, claims, code=invitation.code, accept=True)
        after_first = _bindings(store, _user(store, "invitee-sub").id)

        with pytest.raises(NotFoundError, match="already used"):
            await user_service.resolve_invitation(store, claims, code=invitation.code, accept=True)

        assert _bindings(store, _user(store, "invitee-sub").id) == after_first
        assert store.db.invitations == {}

    @pytest.mark.anyio
    async def test_decline_consumes_the_invitation(self, store, tenant):
        invitation = _invite(store, tenant)

        response = await user_service.resolve_invitation(
            store, make_claims("invitee-sub"), code=invitation.code, accept=False
        )

        assert response.is_accepted is False
        assert store.db.invitations == {}
        assert all(u.identity_subject != "invitee-sub" for u in store.db.users.values())

    @pytest.mark.anyio
    async def test_expired_invitation(self, store, tenant):
        invitation = _invite(store, tenant, age=timedelta(days=8))

        with pytest.raises(ForbiddenError, match="invitation expired"):
            await user_service.resolve_invitation(
                store, make_claims("invitee-sub"), code=invitation.code, accept=True
            )

        assert invitation.code in store.db.invitations

    @pytest.mark.anyio
    async def test_expiry_is_measured_from_issue_time(self, store, tenant):
        invitation = _invite(store, tenant)
        later = datetime.now(UTC) + timedelta(days=7, minutes=1)

        with pytest.raises(ForbiddenError):
            await user_service.resolve_invitation(
                store, make_claims("invitee-sub"), code=invitation.code, accept=True, now=later
            )

    @pytest.mark.anyio
    async def test_sponsor_cannot_resolve_own_invitation(self, store, tenant):
        invitation = _invite(store, tenant)

        with pytest.raises(ValidationError, match="cannot resolve their own invitation"):
            await user_service.resolve_invitation(
                store, tenant.claims, code=invitation.code, accept=True
            )

    @pytest.mark.anyio
    async def test_same_role_is_conflict_and_keeps_invitation(self, store, tenant):
        invitee = store.add_user("invitee-sub")
        store.bind(invitee, tenant.project, "viewer")
        invitation = _invite(store, tenant, role="viewer")

        with pytest.raises(ConflictError, match="same role"):
            await user_service.resolve_invitation(
                store, make_claims("invitee-sub"), code=invitation.code, accept=True
            )

        assert invitation.code in store.db.invitations

    @pytest.mark.anyio
    async def test_different_role_replaces_binding(self, store, tenant):
        invitee = store.add_user("invitee-sub")
        store.bind(invitee, tenant.project, "viewer")
        invitation = _invite(store, tenant, role="admin")

        await user_service.resolve_invitation(
            store, make_claims("invitee-sub"), code=invitation.code, accept=True
        )

        assert _bindings(store, invitee.id) == {tenant.project.id: "admin"}

    @pytest.mark.anyio
    async def test_unknown_code(self, store, tenant):
        with pytest.raises(NotFoundError):
            await user_service.resolve_invitation(
                store, make_claims("invitee-sub"), code="nope", accept=True
            )


class TestAssignRole:
    @pytest.mark.anyio
    async def test_assign_to_enrolled_subject(self, store, tenant):
        bob = store.add_user("bob-sub")

        response = await user_service.assign_role(
            store,
            project_id=tenant.project.id,
            sponsor_id=tenant.user.id,
            assignment=RoleAssignment(role=Role.EDITOR, subject="bob-sub"),
        )

        assert response.invitation is None
        assert _bindings(store, bob.id) == {tenant.project.id: "editor"}
        assert store.db.role_bindings[(bob.id, tenant.project.id)].organization_id == (
            tenant.project.id
        )

    @pytest.mark.anyio
    async def test_assign_to_subject_with_a_role(self, store, tenant):
        bob = store.add_user("bob-sub")
        store.bind(bob, tenant.project, "viewer")

        with pytest.raises(ConflictError, match="already exists"):
            await user_service.assign_role(
                store,
                project_id=tenant.project.id,
                sponsor_id=tenant.user.id,
                assignment=RoleAssignment(role=Role.ADMIN, subject="bob-sub"),
            )

    @pytest.mark.anyio
    async def test_assign_to_unknown_subject(self, store, tenant):
        with pytest.raises(NotFoundError, match="user not found"):
            await user_service.assign_role(
                store,
                project_id=tenant.project.id,
                sponsor_id=tenant.user.id,
                assignment=RoleAssignment(role=Role.VIEWER, subject="ghost"),
            )

    @pytest.mark.anyio
    async def test_assign_by_email_creates_invitation(self, store, tenant):
        response = await user_service.assign_role(
            store,
            project_id=tenant.project.id,
            sponsor_id=tenant.user.id,
            assignment=RoleAssignment(role=Role.VIEWER, email="new@example.com"),
        )

        invitation = response.invitation
        assert invitation is not None
        assert invitation.email == "new@example.com"
        assert invitation.sponsor_id == tenant.user.id
        assert invitation.expires_at - invitation.created_at == timedelta(days=7)
        assert invitation.code in store.db.invitations

    @pytest.mark.anyio
    async def test_second_invitation_to_same_email(self, store, tenant):
        _invite(store, tenant, email="new@example.com")

        with pytest.raises(ConflictError, match="invitation for this email already exists"):
            await user_service.assign_role(
                store,
                project_id=tenant.project.id,
                sponsor_id=tenant.user.id,
                assignment=RoleAssignment(role=Role.EDITOR, email="new@example.com"),
            )

    @pytest.mark.anyio
    async def test_invitation_needs_an_enrolled_sponsor(self, store, tenant):
        with pytest.raises(PreconditionError, match="only enrolled users"):
            await user_service.assign_role(
                store,
                project_id=tenant.project.id,
                sponsor_id=None,
                assignment=RoleAssignment(role=Role.VIEWER, email="new@example.com"),
            )

    def test_assignment_needs_exactly_one_target(self):
        with pytest.raises(ValueError):
            RoleAssignment(role=Role.VIEWER)
        with pytest.raises(ValueError):
            RoleAssignment(role=Role.VIEWER, subject="a", email="a@example.com")


class TestRemoveRole:
    @pytest.mark.anyio
    async def test_remove_subject_role(self, store, tenant):
        bob = store.add_user("bob-sub")
        store.bind(bob, tenant.project, "editor")

        await user_service.remove_role(
            store,
            project_id=tenant.project.id,
            assignment=RoleAssignment(role=Role.EDITOR, subject="bob-sub"),
        )

        assert _bindings(store, bob.id) == {}

    @pytest.mark.anyio
    async def test_remove_with_wrong_role(self, store, tenant):
        bob = store.add_user("bob-sub")
        store.bind(bob, tenant.project, "editor")

        with pytest.raises(NotFoundError, match="role assignment not found"):
            await user_service.remove_role(
                store,
                project_id=tenant.project.id,
                assignment=RoleAssignment(role=Role.ADMIN, subject="bob-sub"),
            )
        assert _bindings(store, bob.id) == {tenant.project.id: "editor"}

    @pytest.mark.anyio
    async def test_withdraw_invitation(self, store, tenant):
        invitation = _invite(store, tenant, email="new@example.com", role="viewer")

        response = await user_service.remove_role(
            store,
            project_id=tenant.project.id,
            assignment=RoleAssignment(role=Role.VIEWER, email="new@example.com"),
        )

        assert response.invitation.code == invitation.code
        assert store.db.invitations == {}

    @pytest.mark.anyio
    async def test_withdraw_missing_invitation(self, store, tenant):
        with pytest.raises(NotFoundError, match="invitation not found"):
            await user_service.remove_role(
                store,
                project_id=tenant.project.id,
                assignment=RoleAssignment(role=Role.VIEWER, email="new@example.com"),
            )
