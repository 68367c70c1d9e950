"""Dependents checks run before a module may be deleted."""

from __future__ import annotations

from module_errors import BlockedDeletionError, UnknownModuleError
from module_registry import ModuleRegistry
from modgraph.dependency_graph import direct_dependents, transitive_dependents


class DeletionGuard:
    def __init__(self, registry: ModuleRegistry) -> None:
        self._registry = registry

    def direct_dependents(self, module_id: str) -> list[str]:
        return direct_dependents(self._registry.adjacency(), module_id)

    def blocking_modules(self, module_id: str) -> list[dict]:
        return [self._registry.summary(mid) for mid in self.direct_dependents(module_id)]

    def impact(self, module_id: str) -> dict:
        """What the delete dialog shows: blockers plus the deeper fan-out."""
        if module_id not in self._registry:
            raise UnknownModuleError("module not found", path="module_id", module_id=module_id)
        direct = self.direct_dependents(module_id)
        deep = sorted(transitive_dependents(self._registry.adjacency(), module_id) - set(direct) - {module_id})
        return {
            "module": self._registry.summary(module_id),
            "can_delete": not direct,
            "dependents": [self._registry.summary(mid) for mid in direct],
            "transitive_dependents": [self._registry.summary(mid) for mid in deep],
        }

    def check(self, module_id: str) -> None:
        blockers = self.blocking_modules(module_id)
        if not blockers:
            return
        module = self._registry.summary(module_id)
        names = ", ".join(f'"{b.get("name") or b["id"]}" ({b.get("code") or "?"})' for b in blockers)
        noun = "module" if len(blockers) == 1 else "modules"
        raise BlockedDeletionError(
            f'cannot delete "{module.get("name") or module_id}": required by {len(blockers)} other {noun}: {names}',
            dependents=blockers,
        )
