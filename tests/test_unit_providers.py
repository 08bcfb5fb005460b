"""
Unit tests for provider resolution within a project.
"""

import pytest

from app.core.errors import NotFoundError, ValidationError
from app.core.providers import (
    find_provider_or_none,
    get_provider_or_not_found,
    resolve_provider,
    select_provider,
)


class TestSelectProvider:
    def test_single_provider_is_inferred(self, store, tenant):
        assert select_provider([tenant.provider], None) is tenant.provider

    def test_explicit_name_picks_the_match(self, store, tenant):
        gitlab = store.add_provider(tenant.project.id, "gitlab")
        assert select_provider([tenant.provider, gitlab], "gitlab") is gitlab

    def test_unknown_name(self, tenant):
        with pytest.raises(ValidationError, match="invalid provider name") as exc_info:
            select_provider([tenant.provider], "bitbucket")
        assert exc_info.value.details == {"provider": "bitbucket"}

    @pytest.mark.parametrize("count", [0, 2, 3])
    def test_cannot_infer_without_exactly_one(self, store, tenant, count):
        providers = [store.add_provider(tenant.project.id, f"p{i}") for i in range(count)]
        with pytest.raises(
            ValidationError, match=f"cannot infer provider, there are {count} providers available"
        ):
            select_provider(providers, None)


class TestProviderLookups:
    @pytest.mark.anyio
    async def test_resolve_reads_the_project_providers(self, store, tenant):
        async with store.read() as q:
            provider = await resolve_provider(q, tenant.project.id, None)
        assert provider.id == tenant.provider.id

    @pytest.mark.anyio
    async def test_find_returns_none_when_absent(self, store, tenant):
        async with store.read() as q:
            assert await find_provider_or_none(q, tenant.project.id, "gitlab") is None
            assert (await find_provider_or_none(q, tenant.project.id, "github")).id == (
                tenant.provider.id
            )

    @pytest.mark.anyio
    async def test_get_raises_not_found(self, store, tenant):
        async with store.read() as q:
            with pytest.raises(NotFoundError, match="provider not found"):
                await get_provider_or_not_found(q, tenant.project.id, "gitlab")
