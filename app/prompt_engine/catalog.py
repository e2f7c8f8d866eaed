"""Catalog resolution: prompt-declared ids → callable descriptors.

The resolver is invoked once per namespace at the start of an execution.
CatalogIndex unions the three namespaces into the candidate list offered
to the LLM and routes each returned call name to its CallTarget.
"""

from __future__ import annotations

import logging

from app.core.exceptions import CatalogItemsNotFoundError, DuplicateToolNameError, ToolUnavailableError
from app.prompt_engine.ports import CatalogStore
from app.prompt_engine.types import CALLABLE_STATUSES, CallTarget, CatalogNamespace, ToolDescriptor

logger = logging.getLogger(__name__)


class ToolCatalogResolver:
    def __init__(self, store: CatalogStore):
        self.store = store

    async def resolve(self, namespace: CatalogNamespace, ids: list[str] | tuple[str, ...]) -> list[ToolDescriptor]:
        """Fetch descriptors for `ids`, failing if any is missing or not callable."""
        requested = list(dict.fromkeys(ids))
        if not requested:
            return []

        descriptors = await self.store.find_by_ids(namespace, requested)

        found = {d.id for d in descriptors}
        missing = [i for i in requested if i not in found]
        if missing:
            raise CatalogItemsNotFoundError(namespace.value, missing)

        unavailable = [d.external_name for d in descriptors if d.status not in CALLABLE_STATUSES]
        if unavailable:
            raise ToolUnavailableError(unavailable)

        # Keep the declared order
        by_id = {d.id: d for d in descriptors}
        ordered = [by_id[i] for i in requested]
        logger.debug("Resolved %d %s descriptor(s)", len(ordered), namespace.value)
        return ordered


class CatalogIndex:
    """Union of the resolved namespaces for one execution."""

    def __init__(self, descriptors: dict[CatalogNamespace, list[ToolDescriptor]] | None = None):
        self.descriptors: list[ToolDescriptor] = []
        self._targets: dict[str, CallTarget] = {}

        for namespace, items in (descriptors or {}).items():
            for descriptor in items:
                existing = self._targets.get(descriptor.external_name)
                if existing is not None and existing.descriptor_id != descriptor.id:
                    raise DuplicateToolNameError(
                        descriptor.external_name, [existing.namespace.value, namespace.value]
                    )
                if existing is not None:
                    continue
                self._targets[descriptor.external_name] = CallTarget(
                    namespace=namespace,
                    descriptor_id=descriptor.id,
                    external_name=descriptor.external_name,
                )
                self.descriptors.append(descriptor)

    @classmethod
    async def build(cls, resolver: ToolCatalogResolver, ids_by_namespace: dict[CatalogNamespace, tuple[str, ...]]) -> CatalogIndex:
        resolved: dict[CatalogNamespace, list[ToolDescriptor]] = {}
        for namespace in CatalogNamespace:
            ids = ids_by_namespace.get(namespace) or ()
            if ids:
                resolved[namespace] = await resolver.resolve(namespace, ids)
        return cls(resolved)

    def __len__(self) -> int:
        return len(self.descriptors)

    def target_for(self, external_name: str) -> CallTarget | None:
        return self._targets.get(external_name)
