"""
SQLAlchemy 2.x ORM models for the policy control plane.

All models map to tables in the 'controlplane' schema.
Models use the Mapped[] type annotation syntax and mapped_column.

Relationships are deliberately not declared; repos issue explicit queries so
the same row objects can be produced by any store backend.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from app.db.validators import validate_uuid_string

SCHEMA = "controlplane"


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    metadata = MetaData(schema=SCHEMA)


class User(Base):
    """A human caller, created once per identity-provider subject."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity_subject: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, subject={self.identity_subject})>"


class Project(Base):
    """
    Unit of authorization and data scoping.

    Projects form a forest; a row without parent is an organisation-like root.
    Names are unique among siblings.
    """

    __tablename__ = "projects"
    __table_args__ = (UniqueConstraint("parent_id", "name", name="projects_parent_id_name_key"),)

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    parent_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.projects.id", ondelete="CASCADE"),
        nullable=True,
    )
    project_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name={self.name}, parent_id={self.parent_id})>"

    @validates("id", "parent_id")
    def _validate_ids(self, key: str, value: uuid.UUID | str | None) -> str | None:
        if value is None:
            return None
        return validate_uuid_string(key, value)


class Provider(Base):
    """A named integration (forge connection, registry) owned by a project."""

    __tablename__ = "providers"
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="providers_project_id_name_key"),
    )

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    provider_class: Mapped[str] = mapped_column(Text, nullable=False)
    implements: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    version: Mapped[str] = mapped_column(Text, nullable=False, default="v1")
    config: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"{}")
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, project_id={self.project_id}, name={self.name})>"


class RoleBinding(Base):
    """A role held by a user on a project. Superadmin is never stored."""

    __tablename__ = "role_bindings"
    __table_args__ = (
        UniqueConstraint("user_id", "project_id", name="role_bindings_user_id_project_id_key"),
        CheckConstraint("role IN ('admin','editor','viewer')", name="chk_role_bindings_role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey(f"{SCHEMA}.users.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.projects.id", ondelete="CASCADE"),
        nullable=True,
    )
    organization_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    role: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self) -> str:
        return (
            f"<RoleBinding(user_id={self.user_id}, project_id={self.project_id}, "
            f"role={self.role})>"
        )


class Invitation(Base):
    """Pending offer of a role on a project, redeemed by opaque code."""

    __tablename__ = "invitations"

    code: Mapped[str] = mapped_column(Text, primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(Text, nullable=False)
    sponsor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey(f"{SCHEMA}.users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now, onupdate=_now
    )


class ForgeInstallation(Base):
    """
    A forge app installation waiting to be claimed by its enrolling user.

    `project_id` stays empty until the enrolling user's first call claims it.
    """

    __tablename__ = "forge_installations"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_new_id)
    app_installation_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    organization_name: Mapped[str] = mapped_column(Text, nullable=False)
    enrolling_forge_id: Mapped[str] = mapped_column(Text, nullable=False)
    project_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.projects.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )


class RuleType(Base):
    """
    Reusable rule template scoped to a project and provider.

    `definition` holds in_entity, rule_schema, param_schema, ingest, eval,
    remediate and alert.
    """

    __tablename__ = "rule_type"
    __table_args__ = (UniqueConstraint("project_id", "name", name="rule_type_project_id_name_key"),)

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    guidance: Mapped[str] = mapped_column(Text, nullable=False, default="")
    definition: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    def __repr__(self) -> str:
        return f"<RuleType(id={self.id}, project_id={self.project_id}, name={self.name})>"


class Profile(Base):
    """Top-level profile row. Name, project and provider never change."""

    __tablename__ = "profiles"
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="profiles_project_id_name_key"),
        CheckConstraint(
            "remediate IN ('on','off','dry_run','unset')", name="chk_profiles_remediate"
        ),
        CheckConstraint("alert IN ('on','off','dry_run','unset')", name="chk_profiles_alert"),
    )

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    remediate: Mapped[str] = mapped_column(Text, nullable=False, default="unset")
    alert: Mapped[str] = mapped_column(Text, nullable=False, default="unset")
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, project_id={self.project_id}, name={self.name})>"


class EntityProfile(Base):
    """Rule references of one profile for one entity kind (JSON list)."""

    __tablename__ = "entity_profiles"
    __table_args__ = (
        UniqueConstraint("profile_id", "entity", name="entity_profiles_profile_id_entity_key"),
    )

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_new_id)
    profile_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    entity: Mapped[str] = mapped_column(Text, nullable=False)
    contextual_rules: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )


class RuleInstantiation(Base):
    """Join row linking an entity profile to a rule type it uses."""

    __tablename__ = "rule_instantiations"
    __table_args__ = (
        UniqueConstraint(
            "entity_profile_id",
            "rule_type_id",
            name="rule_instantiations_entity_profile_id_rule_type_id_key",
        ),
    )

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_new_id)
    entity_profile_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.entity_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    rule_type_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.rule_type.id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )


class Repository(Base):
    """Forge repository registered in a project."""

    __tablename__ = "repositories"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    repo_owner: Mapped[str] = mapped_column(Text, nullable=False)
    repo_name: Mapped[str] = mapped_column(Text, nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Artifact(Base):
    """Build artifact (container image and similar) tracked in a project."""

    __tablename__ = "artifacts"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    repository_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.repositories.id", ondelete="CASCADE"),
        nullable=True,
    )
    artifact_name: Mapped[str] = mapped_column(Text, nullable=False)
    artifact_type: Mapped[str] = mapped_column(Text, nullable=False)
    artifact_visibility: Mapped[str] = mapped_column(Text, nullable=False, default="public")


class RuleEvaluation(Base):
    """
    Latest evaluation of one rule of one profile against one entity.

    Written by the evaluation engine; the control plane reads it for status
    and deletes it when a rule leaves a profile. Nullable status columns mean
    the evaluation has not completed; such rows are not reported.
    """

    __tablename__ = "rule_evaluations"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_new_id)
    profile_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    rule_type_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey(f"{SCHEMA}.rule_type.id", ondelete="CASCADE"),
        nullable=False,
    )
    rule_name: Mapped[str] = mapped_column(Text, nullable=False)
    entity: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    eval_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    eval_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    eval_last_updated: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    remediation_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    remediation_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    remediation_last_updated: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
