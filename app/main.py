"""FastAPI app for the superadmin module editor."""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

from app.module_store import build_store
from dependency_editor import DependencyEditor
from module_errors import (
    BlockedDeletionError,
    CircularDependencyError,
    DuplicateCodeError,
    ModuleError,
    PersistenceSyncError,
    UnknownModuleError,
)
from module_events import EventBus
from module_mutations import ModuleMutationService
from module_registry import ModuleRegistry


app = FastAPI(title="Module Editor")
logger = logging.getLogger("modgraph.api")
logging.basicConfig(level=logging.INFO)
_LOCAL_CORS_REGEX = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("MODGRAPH_CORS_ORIGINS", "").split(",")
    if origin.strip()
}

_STATUS_BY_ERROR = (
    (UnknownModuleError, 404),
    (BlockedDeletionError, 409),
    (CircularDependencyError, 409),
    (DuplicateCodeError, 409),
    (PersistenceSyncError, 502),
)

events = EventBus()
registry = ModuleRegistry()
store = build_store()
service = ModuleMutationService(registry, store=store, events=events)


def reset_session(new_store=None) -> ModuleMutationService:
    """Start a fresh editing session, optionally against another store."""
    global store, service
    if new_store is not None:
        store = new_store
    registry.load([], [])
    service = ModuleMutationService(registry, store=store, events=events)
    service.refresh()
    return service


try:
    service.refresh()
except PersistenceSyncError as exc:
    logger.warning("module_session_seed_failed error=%s", exc)


@app.middleware("http")
async def local_cors_fallback_middleware(request: Request, call_next):
    origin = request.headers.get("origin")
    if request.method == "OPTIONS":
        response = JSONResponse({}, status_code=200)
    else:
        response = await call_next(request)
    normalized_origin = origin.rstrip("/") if isinstance(origin, str) else origin
    if normalized_origin and (normalized_origin in _EXTRA_CORS_ORIGINS or _LOCAL_CORS_REGEX.match(normalized_origin)):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _module_error_response(exc: ModuleError) -> JSONResponse:
    status = 400
    for kind, kind_status in _STATUS_BY_ERROR:
        if isinstance(exc, kind):
            status = kind_status
            break
    return _error_response(exc.code, exc.message, exc.path, exc.detail, status=status)


@app.exception_handler(ModuleError)
async def _handle_module_error(request: Request, exc: ModuleError) -> JSONResponse:
    if isinstance(exc, PersistenceSyncError):
        logger.warning("module_request_sync_failed path=%s error=%s", request.url.path, exc.message)
    return _module_error_response(exc)


async def _safe_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _actor(request: Request) -> dict | None:
    actor_id = (request.headers.get("x-actor-id") or "").strip()
    return {"id": actor_id} if actor_id else None


def _decorate(module: dict) -> dict:
    module["vertical_name"] = registry.vertical_name(module.get("vertical_id") or "")
    return module


@app.get("/modules")
async def list_modules(vertical: str | None = None, status: str | None = None, query: str | None = None) -> JSONResponse:
    modules = [_decorate(m) for m in registry.filter(vertical=vertical, status=status, query=query)]
    return _ok_response({"modules": modules, "total": len(modules)})


@app.post("/modules/refresh")
async def refresh_modules(request: Request) -> JSONResponse:
    modules = service.refresh(actor=_actor(request))
    warnings = []
    cycle = registry.audit_cycles()
    if cycle:
        warnings.append({"code": "MODULE_GRAPH_CYCLE", "message": "stored dependencies contain a cycle", "path": None, "detail": {"cycle": cycle}})
    return _ok_response({"modules": [_decorate(m) for m in modules]}, warnings=warnings)


@app.get("/modules/dependencies/by-code")
async def dependencies_by_code() -> JSONResponse:
    return _ok_response({"dependencies": registry.dependencies_by_code()})


@app.post("/modules/required")
async def required_modules(request: Request) -> JSONResponse:
    body = await _safe_json(request)
    module_ids = body.get("module_ids")
    if not isinstance(module_ids, list) or not all(isinstance(mid, str) for mid in module_ids):
        return _error_response("MODULE_INVALID", "module_ids must be a list of strings", "module_ids")
    return _ok_response({"modules": service.required_modules(module_ids)})


@app.get("/verticals")
async def list_verticals() -> JSONResponse:
    return _ok_response({"verticals": registry.verticals()})


@app.post("/modules")
async def create_module(request: Request) -> JSONResponse:
    body = await _safe_json(request)
    data = body.get("module") if isinstance(body.get("module"), dict) else body
    module = service.create_module(data, actor=_actor(request))
    return _ok_response({"module": _decorate(module)}, status=201)


@app.get("/modules/{module_id}")
async def get_module(module_id: str) -> JSONResponse:
    module = registry.get(module_id)
    if module is None:
        return _error_response("MODULE_NOT_FOUND", "module not found", "module_id", status=404)
    return _ok_response({"module": _decorate(module)})


@app.patch("/modules/{module_id}")
async def update_module(module_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    fields = body.get("module") if isinstance(body.get("module"), dict) else body
    module = service.update_module(module_id, fields, actor=_actor(request))
    return _ok_response({"module": _decorate(module)})


@app.delete("/modules/{module_id}")
async def delete_module(module_id: str, request: Request) -> JSONResponse:
    module = service.delete_module(module_id, actor=_actor(request))
    return _ok_response({"module": module})


@app.get("/modules/{module_id}/dependents")
async def module_dependents(module_id: str) -> JSONResponse:
    return _ok_response(service.guard.impact(module_id))


@app.get("/modules/{module_id}/dependencies")
async def module_dependencies(module_id: str) -> JSONResponse:
    if module_id not in registry:
        return _error_response("MODULE_NOT_FOUND", "module not found", "module_id", status=404)
    editor = DependencyEditor(service, module_id)
    return _ok_response({"dependencies": editor.attached()})


@app.get("/modules/{module_id}/dependency-candidates")
async def dependency_candidates(module_id: str) -> JSONResponse:
    if module_id not in registry:
        return _error_response("MODULE_NOT_FOUND", "module not found", "module_id", status=404)
    editor = DependencyEditor(service, module_id)
    return _ok_response({"options": editor.candidates()})


@app.post("/modules/{module_id}/dependencies")
async def add_dependency(module_id: str, request: Request) -> JSONResponse:
    body = await _safe_json(request)
    dependency_id = body.get("dependency_id")
    if not isinstance(dependency_id, str) or not dependency_id:
        return _error_response("MODULE_INVALID", "dependency_id required", "dependency_id")
    module = DependencyEditor(service, module_id).add(dependency_id, actor=_actor(request))
    return _ok_response({"module": _decorate(module)})


@app.delete("/modules/{module_id}/dependencies/{dependency_id}")
async def remove_dependency(module_id: str, dependency_id: str, request: Request) -> JSONResponse:
    module = DependencyEditor(service, module_id).remove(dependency_id, actor=_actor(request))
    return _ok_response({"module": _decorate(module)})


@app.get("/modules/{module_id}/history")
async def module_history(module_id: str) -> JSONResponse:
    return _ok_response({"module_id": module_id, "history": service.history(module_id)})
