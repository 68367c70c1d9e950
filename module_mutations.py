"""The only writer of the module registry.

Every structural change is validated against the dependency graph before it
touches the registry. Create, update and dependency edits are applied locally
first and compensated if the store rejects them; deletes are applied only
after the store confirms.
"""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from deletion_guard import DeletionGuard
from module_errors import (
    CircularDependencyError,
    DuplicateCodeError,
    InvalidModuleError,
    InvalidVersionError,
    PersistenceSyncError,
    ProtectedFieldError,
    SelfDependencyError,
    UnknownModuleError,
)
from module_events import (
    DEPENDENCY_ADDED,
    DEPENDENCY_REMOVED,
    MODULE_CREATED,
    MODULE_DELETED,
    MODULE_UPDATED,
    MODULES_REFRESHED,
    EventBus,
    EventValidationError,
    make_event,
    validate_actor,
)
from module_registry import STATUSES, ModuleRegistry, normalize_dependencies
from modgraph.config_schema import ConfigSchemaTypeError, parse_config_schema
from modgraph.dependency_graph import (
    GraphCycleError,
    find_cycle,
    find_path,
    topological_order,
    transitive_dependencies,
    would_create_cycle,
)
from modgraph.semver import CODE_MIN_LENGTH, is_code, is_version


logger = logging.getLogger("modgraph.mutations")

NAME_MIN_LENGTH = 3
MODULE_DEFAULTS = {
    "description": "",
    "status": "draft",
    "version": "1.0.0",
    "icon": "TbBox",
    "config_schema": {},
    "dependencies": [],
}
MODULE_FIELDS = (
    "id",
    "code",
    "name",
    "description",
    "vertical_id",
    "status",
    "version",
    "icon",
    "config_schema",
    "dependencies",
)
REQUIRED_FIELDS = ("name", "code", "vertical_id", "status", "version")
SYSTEM_FIELDS = ("created_at", "updated_at")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _check_dependency_list(value: Any) -> None:
    if value is None:
        return
    if not isinstance(value, (list, tuple)) or not all(isinstance(dep, str) and dep for dep in value):
        raise InvalidModuleError("dependencies must be a list of module ids", path="dependencies")


class ModuleMutationService:
    def __init__(self, registry: ModuleRegistry, store=None, events: EventBus | None = None) -> None:
        self.registry = registry
        self.guard = DeletionGuard(registry)
        self._store = store
        self._events = events
        self._audit: Dict[str, List[dict]] = {}

    def history(self, module_id: str) -> list[dict]:
        return copy.deepcopy(self._audit.get(module_id, []))

    def refresh(self, actor: dict | None = None) -> list[dict]:
        """Reseed the registry from the store, replacing the session snapshot."""
        validate_actor(actor)
        if self._store is None:
            return self.registry.list()
        try:
            modules = self._store.list({})
            verticals = self._store.list_verticals()
        except Exception as exc:
            logger.warning("modules_refresh_failed error=%s", exc)
            raise PersistenceSyncError(f"could not load modules: {exc}", operation="list") from exc
        self.registry.load(modules, verticals)
        self._publish(MODULES_REFRESHED, {"count": len(self.registry)}, None, actor)
        return self.registry.list()

    def create_module(self, data: dict, actor: dict | None = None, reason: str = "create") -> dict:
        validate_actor(actor)
        if not isinstance(data, dict):
            raise InvalidModuleError("module data must be an object", path="module")
        record = {**copy.deepcopy(MODULE_DEFAULTS), **copy.deepcopy(data)}
        for key in SYSTEM_FIELDS:
            record.pop(key, None)
        self._reject_unknown_fields(record)
        module_id = record.get("id") or str(uuid.uuid4())
        if not isinstance(module_id, str):
            raise InvalidModuleError("module id must be a string", path="id")
        if module_id in self.registry:
            raise InvalidModuleError("module id already exists", path="id", detail={"id": module_id})
        record["id"] = module_id
        self._validate_fields(record, {*record.keys(), *REQUIRED_FIELDS}, exclude_id=module_id)
        _check_dependency_list(record.get("dependencies"))
        record["dependencies"] = normalize_dependencies(record.get("dependencies"))
        self._validate_initial_dependencies(module_id, record["dependencies"])
        now = _now()
        record["created_at"] = now
        record["updated_at"] = now

        def remote() -> dict | None:
            return self._store.create(copy.deepcopy(record)) if self._store is not None else None

        module = self._commit_optimistic(module_id, record, remote, operation="create")
        logger.info("module_created module_id=%s code=%s", module["id"], module.get("code"))
        self._record(module["id"], "create", actor, reason)
        self._publish(MODULE_CREATED, {"module": module}, module["id"], actor)
        return module

    def update_module(self, module_id: str, fields: dict, actor: dict | None = None, reason: str = "update") -> dict:
        validate_actor(actor)
        current = self._require(module_id)
        if not isinstance(fields, dict):
            raise InvalidModuleError("fields must be an object", path="fields")
        patch = {k: copy.deepcopy(v) for k, v in fields.items() if k not in SYSTEM_FIELDS}
        if "id" in patch:
            if patch["id"] != module_id:
                raise ProtectedFieldError("module id cannot be changed", path="id")
            del patch["id"]
        if "dependencies" in patch:
            _check_dependency_list(patch["dependencies"])
            if normalize_dependencies(patch["dependencies"]) != current["dependencies"]:
                raise ProtectedFieldError(
                    "dependencies are edited with add_dependency/remove_dependency", path="dependencies"
                )
            del patch["dependencies"]
        self._reject_unknown_fields(patch)
        patch = {k: v for k, v in patch.items() if current.get(k) != v}
        if not patch:
            return current
        self._validate_fields(patch, patch.keys(), exclude_id=module_id)
        patch["updated_at"] = _now()
        record = {**current, **patch}

        def remote() -> dict | None:
            return self._store.update(module_id, copy.deepcopy(patch)) if self._store is not None else None

        module = self._commit_optimistic(module_id, record, remote, operation="update")
        changed = sorted(k for k in patch if k != "updated_at")
        logger.info("module_updated module_id=%s fields=%s", module_id, ",".join(changed))
        self._record(module_id, "update", actor, reason, detail={"fields": changed})
        self._publish(MODULE_UPDATED, {"module": module, "fields": changed}, module_id, actor)
        return module

    def add_dependency(self, module_id: str, dependency_id: str, actor: dict | None = None) -> dict:
        validate_actor(actor)
        current = self._require(module_id)
        if dependency_id == module_id:
            logger.info("dependency_rejected module_id=%s reason=self", module_id)
            raise SelfDependencyError("a module cannot depend on itself", detail={"module_id": module_id})
        self._require(dependency_id, path="dependency_id")
        if dependency_id in current["dependencies"]:
            logger.info("dependency_add_noop module_id=%s dependency_id=%s", module_id, dependency_id)
            return current
        graph = self.registry.adjacency()
        if would_create_cycle(graph, module_id, dependency_id):
            cycle = [module_id, *(find_path(graph, dependency_id, module_id) or [dependency_id, module_id])]
            logger.info("dependency_rejected module_id=%s dependency_id=%s reason=cycle", module_id, dependency_id)
            raise CircularDependencyError(
                "circular dependency: " + " -> ".join(self._label(mid) for mid in cycle),
                detail={"cycle": cycle},
            )
        dependencies = sorted([*current["dependencies"], dependency_id])
        module = self._commit_dependencies(current, dependencies)
        logger.info("dependency_added module_id=%s dependency_id=%s", module_id, dependency_id)
        self._record(module_id, "dependency_add", actor, "add dependency", detail={"dependency_id": dependency_id})
        self._publish(DEPENDENCY_ADDED, {"module_id": module_id, "dependency_id": dependency_id}, module_id, actor)
        return module

    def remove_dependency(self, module_id: str, dependency_id: str, actor: dict | None = None) -> dict:
        validate_actor(actor)
        current = self._require(module_id)
        if dependency_id not in current["dependencies"]:
            return current
        dependencies = [dep for dep in current["dependencies"] if dep != dependency_id]
        module = self._commit_dependencies(current, dependencies)
        logger.info("dependency_removed module_id=%s dependency_id=%s", module_id, dependency_id)
        self._record(module_id, "dependency_remove", actor, "remove dependency", detail={"dependency_id": dependency_id})
        self._publish(DEPENDENCY_REMOVED, {"module_id": module_id, "dependency_id": dependency_id}, module_id, actor)
        return module

    def delete_module(self, module_id: str, actor: dict | None = None, reason: str = "delete") -> dict:
        validate_actor(actor)
        current = self._require(module_id)
        blockers = self.guard.direct_dependents(module_id)
        if blockers:
            logger.info("module_delete_blocked module_id=%s dependents=%s", module_id, ",".join(blockers))
        self.guard.check(module_id)
        if self._store is not None:
            try:
                self._store.delete(module_id)
            except Exception as exc:
                logger.warning("module_sync_failed op=delete module_id=%s error=%s", module_id, exc)
                raise PersistenceSyncError(f"could not delete module: {exc}", path="module_id", operation="delete") from exc
        self.registry.discard(module_id)
        logger.info("module_deleted module_id=%s code=%s", module_id, current.get("code"))
        self._record(module_id, "delete", actor, reason)
        self._publish(MODULE_DELETED, {"module": current}, module_id, actor)
        return current

    def required_modules(self, module_ids: Iterable[str]) -> list[dict]:
        """Everything the given modules need, dependencies first."""
        ids = list(module_ids)
        for module_id in ids:
            self._require(module_id)
        graph = self.registry.adjacency()
        closure = set(ids)
        for module_id in ids:
            closure |= transitive_dependencies(graph, module_id)
        try:
            order = topological_order(graph, closure)
        except GraphCycleError as exc:
            raise CircularDependencyError(str(exc), detail={"cycle": exc.cycle}) from exc
        return [self.registry.summary(mid) for mid in order]

    def _require(self, module_id: Any, path: str = "module_id") -> dict:
        module = self.registry.get(module_id) if isinstance(module_id, str) else None
        if module is None:
            raise UnknownModuleError("module not found", path=path, module_id=module_id)
        return module

    def _reject_unknown_fields(self, values: dict) -> None:
        unknown = sorted(k for k in values if k not in MODULE_FIELDS)
        if unknown:
            raise InvalidModuleError(f"unknown module fields: {', '.join(unknown)}", path=unknown[0])

    def _label(self, module_id: str) -> str:
        module = self.registry.summary(module_id)
        return module.get("code") or module_id

    def _validate_fields(self, values: dict, keys: Iterable[str], exclude_id: str | None) -> None:
        keys = set(keys)
        if "name" in keys:
            name = values.get("name")
            if not isinstance(name, str) or len(name.strip()) < NAME_MIN_LENGTH:
                raise InvalidModuleError(f"module name must be at least {NAME_MIN_LENGTH} characters", path="name")
        if "code" in keys:
            code = values.get("code")
            if not is_code(code):
                raise InvalidModuleError(
                    f"module code must be at least {CODE_MIN_LENGTH} characters of lowercase letters, numbers and underscores",
                    path="code",
                )
            if self.registry.code_taken(code, exclude_id=exclude_id):
                raise DuplicateCodeError(f"module code already in use: {code}", detail={"code": code})
        if "version" in keys and not is_version(values.get("version")):
            raise InvalidVersionError(f"version must be in format x.y.z: {values.get('version')!r}")
        if "status" in keys and values.get("status") not in STATUSES:
            raise InvalidModuleError(f"status must be one of {', '.join(STATUSES)}", path="status")
        if "vertical_id" in keys:
            vertical_id = values.get("vertical_id")
            if not isinstance(vertical_id, str) or not vertical_id:
                raise InvalidModuleError("vertical is required", path="vertical_id")
            if self.registry.has_verticals() and self.registry.get_vertical(vertical_id) is None:
                raise InvalidModuleError("unknown vertical", path="vertical_id", detail={"vertical_id": vertical_id})
        for key in ("description", "icon"):
            if key in keys and values.get(key) is not None and not isinstance(values.get(key), str):
                raise InvalidModuleError(f"{key} must be a string", path=key)
        if "config_schema" in keys:
            try:
                values["config_schema"] = parse_config_schema(values.get("config_schema"))
            except ConfigSchemaTypeError as exc:
                raise InvalidModuleError(str(exc), path="config_schema") from exc

    def _validate_initial_dependencies(self, module_id: str, dependencies: List[str]) -> None:
        if module_id in dependencies:
            raise SelfDependencyError("a module cannot depend on itself", path="dependencies")
        for dep in dependencies:
            if dep not in self.registry:
                raise UnknownModuleError("dependency not found", path="dependencies", module_id=dep)
        graph = self.registry.adjacency()
        graph[module_id] = set(dependencies)
        cycle = find_cycle(graph)
        if cycle and module_id in cycle:
            raise CircularDependencyError(
                "circular dependency: " + " -> ".join(self._label(mid) for mid in cycle),
                path="dependencies",
                detail={"cycle": cycle},
            )

    def _commit_dependencies(self, current: dict, dependencies: List[str]) -> dict:
        module_id = current["id"]
        patch = {"dependencies": dependencies, "updated_at": _now()}
        record = {**current, **patch}

        def remote() -> dict | None:
            return self._store.update(module_id, copy.deepcopy(patch)) if self._store is not None else None

        return self._commit_optimistic(module_id, record, remote, operation="update")

    def _commit_optimistic(self, module_id: str, record: dict, remote, operation: str) -> dict:
        """Apply locally, sync, and restore the prior snapshot if the store fails."""
        before = self.registry.snapshot()
        self.registry.apply(record)
        try:
            persisted = remote()
        except Exception as exc:
            self.registry.restore(before)
            logger.warning("module_sync_failed op=%s module_id=%s error=%s rolled_back=1", operation, module_id, exc)
            raise PersistenceSyncError(
                f"could not {operation} module: {exc}", path="module_id", detail={"module_id": module_id}, operation=operation
            ) from exc
        if not isinstance(persisted, dict):
            return self.registry.get(module_id)
        merged = {**record, **persisted, "dependencies": record["dependencies"]}
        new_id = merged.get("id") if operation == "create" and merged.get("id") else module_id
        if new_id != module_id:
            # store-assigned id; a new module has no dependents yet
            self.registry.discard(module_id)
        merged["id"] = new_id
        return self.registry.apply(merged)

    def _record(self, module_id: str, action: str, actor: dict | None, reason: str, detail: dict | None = None) -> None:
        entry = {
            "audit_id": str(uuid.uuid4()),
            "module_id": module_id,
            "action": action,
            "actor": copy.deepcopy(actor),
            "reason": reason,
            "detail": detail,
            "at": _now(),
        }
        self._audit.setdefault(module_id, []).insert(0, entry)

    def _publish(self, name: str, payload: dict, module_id: str | None, actor: dict | None) -> None:
        if self._events is None:
            return
        try:
            event = make_event(name, payload, module_id=module_id, actor=actor)
        except EventValidationError:
            # the mutation is already committed
            logger.exception("module_event_invalid event=%s module_id=%s", name, module_id)
            return
        self._events.publish(event)
