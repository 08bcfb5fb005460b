"""
Provider resolution within a project.
"""

import logging

from app.core.errors import NotFoundError, ValidationError
from app.db.models import Provider
from app.db.store import NoRowsError, Querier

logger = logging.getLogger(__name__)


def select_provider(providers: list[Provider], name: str | None) -> Provider:
    """
    Pick the provider a request refers to from a project's providers.

    An explicit name must match exactly one provider. Without a name the
    project must have exactly one provider.

    Raises:
        ValidationError: If the name matches nothing or the choice is ambiguous
    """
    if name:
        matches = [p for p in providers if p.name == name]
        if len(matches) != 1:
            raise ValidationError("invalid provider name", details={"provider": name})
        return matches[0]

    if len(providers) != 1:
        raise ValidationError(
            f"cannot infer provider, there are {len(providers)} providers available"
        )
    return providers[0]


async def resolve_provider(querier: Querier, project_id: str, name: str | None) -> Provider:
    """Load the project's providers and select one, see `select_provider`."""
    providers = await querier.list_providers_by_project_id(project_id)
    return select_provider(providers, name)


async def find_provider_or_none(querier: Querier, project_id: str, name: str) -> Provider | None:
    """
    Look up a provider by exact name for provisioning callbacks.

    Absence is not an error here: the caller creates the provider.
    """
    try:
        return await querier.get_provider_by_name(project_id=project_id, name=name)
    except NoRowsError:
        logger.debug("Provider %s not found in project %s", name, project_id)
        return None


async def get_provider_or_not_found(querier: Querier, project_id: str, name: str) -> Provider:
    """
    Raises:
        NotFoundError: If the project has no provider with this name
    """
    provider = await find_provider_or_none(querier, project_id, name)
    if provider is None:
        raise NotFoundError("provider not found")
    return provider
