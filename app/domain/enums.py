"""
Domain enums matching the PostgreSQL database enums.

These enums provide type-safe representations of database enum types
and are used throughout the application for validation and type checking.
"""

from enum import Enum


class EntityKind(str, Enum):
    """Domain class of an object subject to policy - matches entities enum."""

    REPOSITORY = "repository"
    ARTIFACT = "artifact"
    BUILD_ENVIRONMENT = "build_environment"
    PULL_REQUEST = "pull_request"


class ActionOpt(str, Enum):
    """Remediate/alert mode of a profile - matches action_type enum."""

    ON = "on"
    OFF = "off"
    DRY_RUN = "dry_run"
    UNSET = "unset"


class EvalStatus(str, Enum):
    """Outcome of one rule evaluation - matches eval_status_types enum."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    SKIPPED = "skipped"


class RemediationStatus(str, Enum):
    """Outcome of a remediation attempt - matches remediation_status_types enum."""

    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    SKIPPED = "skipped"
    NOT_AVAILABLE = "not_available"


class ProviderClass(str, Enum):
    """Kind of integration a provider represents."""

    FORGE = "forge"
    FORGE_APP = "forge-app"
    CONTAINER_REGISTRY = "container-registry"


class ProviderCapability(str, Enum):
    """Capabilities a provider may implement."""

    FORGE = "forge"
    REST = "rest"
    GIT = "git"
    OCI = "oci"
    REPO_LISTER = "repo-lister"


class Role(str, Enum):
    """Role a user may hold on a project."""

    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


# Statuses for which a rule type's guidance is attached to status rows
GUIDANCE_STATUSES = frozenset({EvalStatus.FAILURE, EvalStatus.ERROR})
