"""
Abstract store contract.

Services never touch a database session directly. They receive a `Store`
and obtain `Querier` handles from it: short-lived read handles through
`Store.read()`, transactional handles through `transaction()`.

Any backend that satisfies these protocols may be substituted. The
production backend is `app.db.sql_store.SqlStore`; tests use an in-memory
implementation.

Lookups of a single row raise `NoRowsError` when nothing matches. Inserts
raise `UniqueViolationError` when a uniqueness constraint would be broken.
"""

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

from app.db.models import (
    Artifact,
    EntityProfile,
    ForgeInstallation,
    Invitation,
    Profile,
    Project,
    Provider,
    Repository,
    RoleBinding,
    RuleEvaluation,
    RuleInstantiation,
    RuleType,
    User,
)


class StoreError(Exception):
    """Base class for errors raised by store backends."""


class NoRowsError(StoreError, LookupError):
    """A single-row lookup matched nothing."""


class UniqueViolationError(StoreError):
    """An insert or update collided with a uniqueness constraint."""


def is_unique_violation(err: BaseException) -> bool:
    return isinstance(err, UniqueViolationError)


class Querier(Protocol):
    """Query surface used by the services. All methods are coroutines."""

    # Users and role bindings
    async def get_user_by_subject(self, subject: str) -> User: ...

    async def get_user_by_id(self, user_id: int) -> User: ...

    async def create_user(
        self, *, subject: str, display_name: str | None = None, email: str | None = None
    ) -> User: ...

    async def delete_user(self, user_id: int) -> None: ...

    async def get_user_projects(self, user_id: int) -> list[Project]: ...

    async def get_user_roles(self, user_id: int) -> list[RoleBinding]: ...

    async def create_role_binding(
        self, *, user_id: int, project_id: str, role: str, organization_id: str | None
    ) -> RoleBinding: ...

    async def delete_role_binding(self, *, user_id: int, project_id: str) -> None: ...

    # Projects
    async def get_project_by_id(self, project_id: str) -> Project: ...

    async def get_project_by_name(self, name: str, parent_id: str | None = None) -> Project: ...

    async def get_children_projects(self, project_id: str) -> list[Project]: ...

    async def create_project(
        self, *, name: str, parent_id: str | None, metadata: dict[str, Any] | None = None
    ) -> Project: ...

    async def delete_project(self, project_id: str) -> None: ...

    # Providers
    async def list_providers_by_project_id(self, project_id: str) -> list[Provider]: ...

    async def get_provider_by_name(self, *, project_id: str, name: str) -> Provider: ...

    async def get_provider_by_id(self, provider_id: str) -> Provider: ...

    async def create_provider(
        self,
        *,
        project_id: str,
        name: str,
        provider_class: str,
        implements: list[str],
        config: bytes = b"{}",
    ) -> Provider: ...

    async def find_providers(
        self, *, project_id: str, name: str | None = None, capability: str | None = None
    ) -> list[Provider]: ...

    # Forge installations
    async def list_unclaimed_installations(self, forge_id: str) -> list[ForgeInstallation]: ...

    async def claim_installation(self, *, installation_id: str, project_id: str) -> None: ...

    # Invitations
    async def create_invitation(
        self, *, code: str, email: str, project_id: str, role: str, sponsor_id: int
    ) -> Invitation: ...

    async def get_invitation_by_code(self, code: str) -> Invitation: ...

    async def delete_invitation(self, code: str) -> None: ...

    async def list_invitations_for_project(
        self, project_id: str, email: str | None = None
    ) -> list[Invitation]: ...

    # Rule types
    async def create_rule_type(
        self,
        *,
        project_id: str,
        provider: str,
        name: str,
        description: str,
        guidance: str,
        definition: dict[str, Any],
    ) -> RuleType: ...

    async def update_rule_type(
        self, *, rule_type_id: str, description: str, guidance: str, definition: dict[str, Any]
    ) -> RuleType: ...

    async def delete_rule_type(self, rule_type_id: str) -> None: ...

    async def get_rule_type_by_id(self, rule_type_id: str) -> RuleType: ...

    async def get_rule_type_by_name(self, *, project_id: str, name: str) -> RuleType: ...

    async def list_rule_types_by_project(
        self, project_id: str, provider: str | None = None
    ) -> list[RuleType]: ...

    # Profiles
    async def create_profile(
        self, *, project_id: str, provider: str, name: str, remediate: str, alert: str
    ) -> Profile: ...

    async def update_profile(self, *, profile_id: str, remediate: str, alert: str) -> Profile: ...

    async def delete_profile(self, profile_id: str) -> None: ...

    async def get_profile_by_id(self, profile_id: str) -> Profile: ...

    async def get_profile_by_name(self, *, project_id: str, name: str) -> Profile: ...

    async def get_profile_by_id_and_lock(self, profile_id: str) -> Profile: ...

    async def get_profile_by_name_and_lock(self, *, project_id: str, name: str) -> Profile: ...

    async def list_profiles_by_project_id(self, project_id: str) -> list[Profile]: ...

    async def list_entity_profiles(self, profile_id: str) -> list[EntityProfile]: ...

    async def create_profile_for_entity(
        self, *, profile_id: str, entity: str, contextual_rules: list[dict[str, Any]]
    ) -> EntityProfile: ...

    async def upsert_profile_for_entity(
        self, *, profile_id: str, entity: str, contextual_rules: list[dict[str, Any]]
    ) -> EntityProfile: ...

    async def delete_profile_for_entity(self, *, profile_id: str, entity: str) -> None: ...

    async def upsert_rule_instantiation(
        self, *, entity_profile_id: str, rule_type_id: str
    ) -> RuleInstantiation: ...

    async def delete_rule_instantiation(
        self, *, entity_profile_id: str, rule_type_id: str
    ) -> None: ...

    async def list_profiles_instantiating_rule_type(self, rule_type_id: str) -> list[str]: ...

    # Evaluation status
    async def list_rule_evaluations_by_profile_id(
        self,
        profile_id: str,
        *,
        entity: str | None = None,
        entity_id: str | None = None,
        rule_name: str | None = None,
    ) -> list[RuleEvaluation]: ...

    async def delete_rule_statuses_for_profile_and_rule_type(
        self, *, profile_id: str, rule_type_id: str, rule_name: str
    ) -> None: ...

    async def get_repository_by_id(self, repository_id: str) -> Repository: ...

    async def get_artifact_by_id(self, artifact_id: str) -> Artifact: ...


class Store(Protocol):
    """Shared store abstraction; the only mutable global of the service."""

    def read(self) -> AbstractAsyncContextManager[Querier]: ...

    async def begin_transaction(self) -> Any: ...

    def get_querier_with_transaction(self, tx: Any) -> Querier: ...

    async def commit(self, tx: Any) -> None: ...

    async def rollback(self, tx: Any) -> None: ...


@asynccontextmanager
async def transaction(store: Store) -> AsyncIterator[Querier]:
    """Run a block inside one store transaction.

    Commits when the block finishes, rolls back on any exception, including
    task cancellation.

    Usage:
        async with transaction(store) as q:
            profile = await q.create_profile(...)
    """
    tx = await store.begin_transaction()
    try:
        yield store.get_querier_with_transaction(tx)
    except BaseException:
        await store.rollback(tx)
        raise
    await store.commit(tx)
