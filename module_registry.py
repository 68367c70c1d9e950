"""In-memory snapshot of module and vertical records for one editing session."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from modgraph.dependency_graph import find_cycle


logger = logging.getLogger("modgraph.registry")

STATUSES = ("active", "inactive", "draft")
UNKNOWN_VERTICAL = "Unknown"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def normalize_dependencies(value: Any) -> List[str]:
    """Dependencies have set semantics; store them sorted and de-duplicated."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    return sorted({str(dep) for dep in value if dep})


def normalize_module(record: dict) -> dict:
    module = copy.deepcopy(record)
    module["dependencies"] = normalize_dependencies(module.get("dependencies"))
    if module.get("config_schema") is None:
        module["config_schema"] = {}
    return module


class ModuleRegistry:
    """Lookup over the current module set.

    Reads always return deep copies. Only the mutation service calls
    ``apply``/``discard``/``restore``; presentation code reads.
    """

    def __init__(self, modules: Iterable[dict] | None = None, verticals: Iterable[dict] | None = None) -> None:
        self._modules: Dict[str, dict] = {}
        self._verticals: Dict[str, dict] = {}
        self.loaded_at: str | None = None
        self.load(modules or [], verticals or [])

    def load(self, modules: Iterable[dict], verticals: Iterable[dict] | None = None) -> None:
        """Replace the snapshot. Later records with a duplicate id win."""
        fresh: Dict[str, dict] = {}
        for record in modules:
            module_id = record.get("id") if isinstance(record, dict) else None
            if not isinstance(module_id, str) or not module_id:
                logger.warning("registry_skip_record reason=missing_id")
                continue
            fresh[module_id] = normalize_module(record)
        self._modules = fresh
        if verticals is not None:
            self._verticals = {v["id"]: copy.deepcopy(v) for v in verticals if isinstance(v, dict) and v.get("id")}
        self.loaded_at = _now()
        cycle = self.audit_cycles()
        if cycle:
            logger.warning("registry_loaded_with_cycle cycle=%s", "->".join(cycle))
        logger.info("registry_loaded modules=%s verticals=%s", len(self._modules), len(self._verticals))

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def get(self, module_id: str) -> dict | None:
        record = self._modules.get(module_id)
        return copy.deepcopy(record) if record else None

    def get_by_code(self, code: str) -> dict | None:
        for record in self._modules.values():
            if record.get("code") == code:
                return copy.deepcopy(record)
        return None

    def code_taken(self, code: str, exclude_id: str | None = None) -> bool:
        return any(mid != exclude_id and rec.get("code") == code for mid, rec in self._modules.items())

    def list(self) -> list[dict]:
        modules = [copy.deepcopy(rec) for rec in self._modules.values()]
        return sorted(modules, key=lambda m: ((m.get("name") or "").lower(), m.get("code") or "", m["id"]))

    def filter(self, vertical: str | None = None, status: str | None = None, query: str | None = None) -> list[dict]:
        needle = (query or "").strip().lower()
        results = []
        for module in self.list():
            if vertical and module.get("vertical_id") != vertical:
                continue
            if status and module.get("status") != status:
                continue
            if needle:
                haystack = " ".join(str(module.get(key) or "") for key in ("name", "code", "description")).lower()
                if needle not in haystack:
                    continue
            results.append(module)
        return results

    def verticals(self) -> list[dict]:
        return sorted((copy.deepcopy(v) for v in self._verticals.values()), key=lambda v: (v.get("name") or "", v["id"]))

    def get_vertical(self, vertical_id: str) -> dict | None:
        vertical = self._verticals.get(vertical_id)
        return copy.deepcopy(vertical) if vertical else None

    def has_verticals(self) -> bool:
        return bool(self._verticals)

    def vertical_name(self, vertical_id: str) -> str:
        vertical = self._verticals.get(vertical_id) or {}
        return vertical.get("name") or UNKNOWN_VERTICAL

    def adjacency(self) -> Dict[str, set]:
        return {mid: set(rec.get("dependencies") or []) for mid, rec in self._modules.items()}

    def dependencies_by_code(self) -> Dict[str, List[str]]:
        codes = {mid: rec.get("code") for mid, rec in self._modules.items()}
        result: Dict[str, List[str]] = {}
        for mid, rec in self._modules.items():
            deps = sorted(codes[dep] for dep in rec.get("dependencies") or [] if codes.get(dep))
            if deps:
                result[codes[mid]] = deps
        return result

    def audit_cycles(self) -> List[str] | None:
        return find_cycle(self.adjacency())

    def summary(self, module_id: str) -> dict:
        """Display triple for messages that must show more than an id."""
        record = self._modules.get(module_id) or {}
        return {"id": module_id, "name": record.get("name"), "code": record.get("code")}

    def snapshot(self) -> Dict[str, dict]:
        return copy.deepcopy(self._modules)

    def restore(self, snapshot: Dict[str, dict]) -> None:
        self._modules = copy.deepcopy(snapshot)

    def apply(self, record: dict) -> dict:
        module = normalize_module(record)
        self._modules[module["id"]] = module
        return copy.deepcopy(module)

    def discard(self, module_id: str) -> dict | None:
        return self._modules.pop(module_id, None)
