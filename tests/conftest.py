"""
Pytest configuration and shared fixtures.

Tests run against the in-memory store in `tests.fakes`; no database or
identity provider is needed.

Provides:
- store / publisher / validator fakes
- a seeded tenant: user "alice" administering project "acme" with a single
  "github" provider
- helpers to build claims and call metadata
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Set test environment variables before importing app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("OBSERVABILITY_STRUCTURED_LOGS", "false")
os.environ.setdefault("DATABASE_URL_APP", "postgresql://localhost:5432/controlplane_test")
os.environ.setdefault("IDENTITY_ISSUER_URL", "https://id.test.local/realms/controlplane")
os.environ.setdefault("IDENTITY_AUDIENCE", "controlplane")
os.environ.setdefault("METRICS_TOKEN", "metrics-secret")

from dataclasses import dataclass  # noqa: E402

import pytest  # noqa: E402

from app.core.security import TokenClaims  # noqa: E402
from app.db.models import Project, Provider, User  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeTokenValidator,
    InMemoryStore,
    RecordingPublisher,
    make_claims,
)


# =============================================================================
# AnyIO Backend Configuration
# =============================================================================
# Per AnyIO testing docs: https://anyio.readthedocs.io/en/stable/testing.html
@pytest.fixture
def anyio_backend():
    return "asyncio"


@dataclass
class Tenant:
    user: User
    project: Project
    provider: Provider
    claims: TokenClaims
    token: str


@pytest.fixture
def journal() -> list[str]:
    return []


@pytest.fixture
def store(journal: list[str]) -> InMemoryStore:
    return InMemoryStore(journal)


@pytest.fixture
def publisher(journal: list[str]) -> RecordingPublisher:
    return RecordingPublisher(journal)


@pytest.fixture
def validator() -> FakeTokenValidator:
    return FakeTokenValidator()


@pytest.fixture
def tenant(store: InMemoryStore, validator: FakeTokenValidator) -> Tenant:
    user = store.add_user("alice-sub", display_name="alice")
    project = store.add_project("acme")
    provider = store.add_provider(project.id, "github")
    store.bind(user, project, "admin")

    claims = make_claims("alice-sub", preferred_username="alice")
    validator.add("alice-token", claims)
    return Tenant(user=user, project=project, provider=provider, claims=claims, token="alice-token")
