"""Selection model behind the module dependencies tab."""

from __future__ import annotations

from module_mutations import ModuleMutationService
from modgraph.dependency_graph import would_create_cycle


UNKNOWN_MODULE = {"name": "Unknown Module", "code": "unknown", "status": "unknown", "description": "No description available"}


class DependencyEditor:
    """Lists attachable modules for one module and forwards add/remove intents."""

    def __init__(self, service: ModuleMutationService, module_id: str) -> None:
        self._service = service
        self.module_id = module_id

    @property
    def value(self) -> list[str]:
        module = self._service.registry.get(self.module_id)
        return list(module["dependencies"]) if module else []

    def attached(self) -> list[dict]:
        registry = self._service.registry
        items = []
        for dep_id in self.value:
            module = registry.get(dep_id) or {}
            items.append(
                {
                    "id": dep_id,
                    "name": module.get("name") or UNKNOWN_MODULE["name"],
                    "code": module.get("code") or UNKNOWN_MODULE["code"],
                    "status": module.get("status") or UNKNOWN_MODULE["status"],
                    "description": module.get("description") or UNKNOWN_MODULE["description"],
                }
            )
        return items

    def candidates(self) -> list[dict]:
        """Every module except this one and the ones already attached.

        Options that would close a loop stay listed but are flagged; the
        mutation service rejects them on add.
        """
        registry = self._service.registry
        attached = set(self.value)
        graph = registry.adjacency()
        options = []
        for module in registry.list():
            if module["id"] == self.module_id or module["id"] in attached:
                continue
            options.append(
                {
                    "label": module.get("name"),
                    "value": module["id"],
                    "data": {
                        "code": module.get("code"),
                        "vertical_id": module.get("vertical_id"),
                        "creates_cycle": would_create_cycle(graph, self.module_id, module["id"]),
                    },
                }
            )
        return options

    def add(self, dependency_id: str, actor: dict | None = None) -> dict:
        return self._service.add_dependency(self.module_id, dependency_id, actor=actor)

    def remove(self, dependency_id: str, actor: dict | None = None) -> dict:
        return self._service.remove_dependency(self.module_id, dependency_id, actor=actor)
