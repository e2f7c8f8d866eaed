"""Tests for catalog resolution and namespace routing."""

from __future__ import annotations

import pytest

from app.core.exceptions import CatalogItemsNotFoundError, DuplicateToolNameError, ToolUnavailableError
from app.prompt_engine.catalog import CatalogIndex, ToolCatalogResolver
from app.prompt_engine.types import CatalogNamespace
from tests.fakes import InMemoryCatalogStore, descriptor


@pytest.fixture
def store() -> InMemoryCatalogStore:
    return InMemoryCatalogStore(
        descriptor("calc"),
        descriptor("search"),
        descriptor("legacy", status="deprecated"),
        descriptor("deployed_tool", status="deployed"),
        descriptor("send_email", namespace=CatalogNamespace.ACTIVITY),
        descriptor("onboarding", namespace=CatalogNamespace.WORKFLOW),
    )


class TestResolver:
    @pytest.mark.asyncio
    async def test_resolves_in_declared_order(self, store):
        resolver = ToolCatalogResolver(store)
        result = await resolver.resolve(CatalogNamespace.TOOL, ["tool-search", "tool-calc"])
        assert [d.external_name for d in result] == ["search", "calc"]
        assert store.id_lookups == [(CatalogNamespace.TOOL, ["tool-search", "tool-calc"])]

    @pytest.mark.asyncio
    async def test_missing_ids_fail_strictly(self, store):
        resolver = ToolCatalogResolver(store)
        with pytest.raises(CatalogItemsNotFoundError) as exc_info:
            await resolver.resolve(CatalogNamespace.TOOL, ["tool-calc", "tool-nope"])
        assert exc_info.value.missing == ["tool-nope"]
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_id_from_other_namespace_is_missing(self, store):
        resolver = ToolCatalogResolver(store)
        with pytest.raises(CatalogItemsNotFoundError):
            await resolver.resolve(CatalogNamespace.TOOL, ["activity-send_email"])

    @pytest.mark.asyncio
    async def test_unavailable_status(self, store):
        resolver = ToolCatalogResolver(store)
        with pytest.raises(ToolUnavailableError) as exc_info:
            await resolver.resolve(CatalogNamespace.TOOL, ["tool-calc", "tool-legacy"])
        assert exc_info.value.names == ["legacy"]
        assert exc_info.value.message == "Following tools are not available: legacy"

    @pytest.mark.asyncio
    async def test_deployed_is_callable(self, store):
        resolver = ToolCatalogResolver(store)
        result = await resolver.resolve(CatalogNamespace.TOOL, ["tool-deployed_tool"])
        assert len(result) == 1

    @pytest.mark.asyncio
    async def test_empty_ids_skip_lookup(self, store):
        resolver = ToolCatalogResolver(store)
        assert await resolver.resolve(CatalogNamespace.TOOL, []) == []
        assert store.id_lookups == []

    @pytest.mark.asyncio
    async def test_idempotent(self, store):
        resolver = ToolCatalogResolver(store)
        first = await resolver.resolve(CatalogNamespace.TOOL, ["tool-calc", "tool-search"])
        second = await resolver.resolve(CatalogNamespace.TOOL, ["tool-calc", "tool-search"])
        assert {d.external_name for d in first} == {d.external_name for d in second}


class TestCatalogIndex:
    @pytest.mark.asyncio
    async def test_build_unions_namespaces(self, store):
        index = await CatalogIndex.build(
            ToolCatalogResolver(store),
            {
                CatalogNamespace.TOOL: ("tool-calc",),
                CatalogNamespace.ACTIVITY: ("activity-send_email",),
                CatalogNamespace.WORKFLOW: ("workflow-onboarding",),
            },
        )
        assert len(index) == 3
        assert index.target_for("send_email").namespace == CatalogNamespace.ACTIVITY
        assert index.target_for("onboarding").descriptor_id == "workflow-onboarding"
        assert index.target_for("calc").namespace == CatalogNamespace.TOOL
        assert index.target_for("unknown") is None

    @pytest.mark.asyncio
    async def test_skips_namespaces_without_ids(self, store):
        index = await CatalogIndex.build(ToolCatalogResolver(store), {CatalogNamespace.TOOL: ()})
        assert len(index) == 0
        assert store.id_lookups == []

    def test_duplicate_external_name_across_namespaces(self):
        with pytest.raises(DuplicateToolNameError):
            CatalogIndex(
                {
                    CatalogNamespace.TOOL: [descriptor("notify")],
                    CatalogNamespace.ACTIVITY: [descriptor("notify", namespace=CatalogNamespace.ACTIVITY)],
                }
            )

    def test_function_schema(self):
        schema = descriptor("calc").to_function_schema()
        assert schema["type"] == "function"
        assert schema["function"]["name"] == "calc"
