"""
Query mixin for users, role bindings, invitations and forge installations.
"""

import logging

from sqlalchemy import delete, select, update

from app.db.models import ForgeInstallation, Invitation, Project, RoleBinding, User
from app.repos.common import SessionBound, add_and_flush, fetch_all, fetch_one

logger = logging.getLogger(__name__)


class UserQueries(SessionBound):
    async def get_user_by_subject(self, subject: str) -> User:
        stmt = select(User).where(User.identity_subject == subject)
        return await fetch_one(self._db, stmt, "user")

    async def get_user_by_id(self, user_id: int) -> User:
        stmt = select(User).where(User.id == user_id)
        return await fetch_one(self._db, stmt, "user")

    async def create_user(
        self, *, subject: str, display_name: str | None = None, email: str | None = None
    ) -> User:
        user = await add_and_flush(
            self._db, User(identity_subject=subject, display_name=display_name, email=email)
        )
        logger.info("Created user %s for subject %s", user.id, subject)
        return user

    async def delete_user(self, user_id: int) -> None:
        await self._db.execute(delete(User).where(User.id == user_id))

    async def get_user_projects(self, user_id: int) -> list[Project]:
        stmt = (
            select(Project)
            .join(RoleBinding, RoleBinding.project_id == Project.id)
            .where(RoleBinding.user_id == user_id)
            .order_by(RoleBinding.created_at, Project.id)
        )
        return await fetch_all(self._db, stmt)

    async def get_user_roles(self, user_id: int) -> list[RoleBinding]:
        stmt = (
            select(RoleBinding)
            .where(RoleBinding.user_id == user_id)
            .order_by(RoleBinding.created_at, RoleBinding.id)
        )
        return await fetch_all(self._db, stmt)

    async def create_role_binding(
        self, *, user_id: int, project_id: str, role: str, organization_id: str | None
    ) -> RoleBinding:
        return await add_and_flush(
            self._db,
            RoleBinding(
                user_id=user_id,
                project_id=project_id,
                role=role,
                organization_id=organization_id,
            ),
        )

    async def delete_role_binding(self, *, user_id: int, project_id: str) -> None:
        await self._db.execute(
            delete(RoleBinding).where(
                RoleBinding.user_id == user_id, RoleBinding.project_id == project_id
            )
        )

    async def list_unclaimed_installations(self, forge_id: str) -> list[ForgeInstallation]:
        stmt = (
            select(ForgeInstallation)
            .where(
                ForgeInstallation.enrolling_forge_id == forge_id,
                ForgeInstallation.project_id.is_(None),
            )
            .order_by(ForgeInstallation.created_at)
            .with_for_update()
        )
        return await fetch_all(self._db, stmt)

    async def claim_installation(self, *, installation_id: str, project_id: str) -> None:
        await self._db.execute(
            update(ForgeInstallation)
            .where(ForgeInstallation.id == installation_id)
            .values(project_id=project_id)
        )

    async def create_invitation(
        self, *, code: str, email: str, project_id: str, role: str, sponsor_id: int
    ) -> Invitation:
        return await add_and_flush(
            self._db,
            Invitation(
                code=code, email=email, project_id=project_id, role=role, sponsor_id=sponsor_id
            ),
        )

    async def get_invitation_by_code(self, code: str) -> Invitation:
        stmt = select(Invitation).where(Invitation.code == code)
        return await fetch_one(self._db, stmt, "invitation")

    async def delete_invitation(self, code: str) -> None:
        await self._db.execute(delete(Invitation).where(Invitation.code == code))

    async def list_invitations_for_project(
        self, project_id: str, email: str | None = None
    ) -> list[Invitation]:
        stmt = select(Invitation).where(Invitation.project_id == project_id)
        if email is not None:
            stmt = stmt.where(Invitation.email == email)
        return await fetch_all(self._db, stmt.order_by(Invitation.created_at))
