"""Error kinds raised by the module editor core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


Issue = Dict[str, Any]


@dataclass(eq=False)
class ModuleError(Exception):
    message: str
    code: str = "MODULE_ERROR"
    path: str | None = None
    detail: dict | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def issue(self) -> Issue:
        return {"code": self.code, "message": self.message, "path": self.path, "detail": self.detail}


@dataclass(eq=False)
class UnknownModuleError(ModuleError):
    module_id: str | None = None
    code: str = "MODULE_NOT_FOUND"


@dataclass(eq=False)
class InvalidModuleError(ModuleError):
    code: str = "MODULE_INVALID"


@dataclass(eq=False)
class InvalidVersionError(InvalidModuleError):
    code: str = "MODULE_INVALID_VERSION"
    path: str | None = "version"


@dataclass(eq=False)
class DuplicateCodeError(InvalidModuleError):
    code: str = "MODULE_DUPLICATE_CODE"
    path: str | None = "code"


@dataclass(eq=False)
class ProtectedFieldError(InvalidModuleError):
    code: str = "MODULE_PROTECTED_FIELD"


@dataclass(eq=False)
class SelfDependencyError(ModuleError):
    code: str = "MODULE_SELF_DEPENDENCY"
    path: str | None = "dependency_id"


@dataclass(eq=False)
class CircularDependencyError(ModuleError):
    code: str = "MODULE_CIRCULAR_DEPENDENCY"
    path: str | None = "dependency_id"


@dataclass(eq=False)
class BlockedDeletionError(ModuleError):
    """Deletion refused; ``dependents`` lists id, name and code of each blocker."""

    dependents: List[dict] = field(default_factory=list)
    code: str = "MODULE_DELETE_BLOCKED"
    path: str | None = "module_id"

    def __post_init__(self) -> None:
        if self.detail is None:
            self.detail = {"dependents": [dict(dep) for dep in self.dependents]}

    @property
    def dependent_ids(self) -> List[str]:
        return [dep.get("id") for dep in self.dependents]


@dataclass(eq=False)
class PersistenceSyncError(ModuleError):
    operation: str | None = None
    code: str = "MODULE_SYNC_FAILED"
