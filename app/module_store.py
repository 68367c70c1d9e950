"""Persistence collaborators for module records."""

from __future__ import annotations

import copy
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict

import httpx


logger = logging.getLogger("modgraph.store")

FILTER_KEYS = ("vertical_id", "status", "code")


def _supabase_url() -> str:
    return (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")


def _supabase_service_role_key() -> str:
    return (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()


def _store_timeout() -> float:
    return float(os.getenv("MODGRAPH_STORE_TIMEOUT", "30"))


def store_backend() -> str:
    return (os.getenv("MODGRAPH_STORE") or "memory").strip().lower() or "memory"


def modules_table() -> str:
    return (os.getenv("MODGRAPH_MODULES_TABLE") or "modules").strip()


def verticals_table() -> str:
    return (os.getenv("MODGRAPH_VERTICALS_TABLE") or "verticals").strip()


def _matches(record: dict, filters: dict | None) -> bool:
    for key, value in (filters or {}).items():
        if key in FILTER_KEYS and value and record.get(key) != value:
            return False
    return True


class MemoryModuleStore:
    def __init__(self, modules: list[dict] | None = None, verticals: list[dict] | None = None) -> None:
        self._modules: Dict[str, dict] = {}
        self._verticals: Dict[str, dict] = {}
        self.seed(modules or [], verticals or [])

    def seed(self, modules: list[dict], verticals: list[dict]) -> None:
        for record in modules:
            self._modules[record["id"]] = copy.deepcopy(record)
        for vertical in verticals:
            self._verticals[vertical["id"]] = copy.deepcopy(vertical)

    def list(self, filters: dict | None = None) -> list[dict]:
        return [copy.deepcopy(r) for r in self._modules.values() if _matches(r, filters)]

    def get(self, module_id: str) -> dict | None:
        record = self._modules.get(module_id)
        return copy.deepcopy(record) if record else None

    def create(self, module: dict) -> dict:
        record = copy.deepcopy(module)
        record.setdefault("id", str(uuid.uuid4()))
        if record["id"] in self._modules:
            raise KeyError("module already exists")
        self._modules[record["id"]] = record
        return copy.deepcopy(record)

    def update(self, module_id: str, patch: dict) -> dict:
        if module_id not in self._modules:
            raise KeyError("module not found")
        self._modules[module_id].update(copy.deepcopy(patch))
        return copy.deepcopy(self._modules[module_id])

    def delete(self, module_id: str) -> None:
        self._modules.pop(module_id, None)

    def list_verticals(self) -> list[dict]:
        return [copy.deepcopy(v) for v in self._verticals.values()]


class SupabaseModuleStore:
    """PostgREST-backed store; ``dependencies`` is a json/array column on the modules row."""

    def __init__(
        self,
        url: str | None = None,
        service_role_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._url = (url or _supabase_url()).rstrip("/")
        self._key = service_role_key if service_role_key is not None else _supabase_service_role_key()
        if not self._url or not self._key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required when MODGRAPH_STORE=supabase")
        self._timeout = timeout if timeout is not None else _store_timeout()
        self._transport = transport

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._key}",
            "apikey": self._key,
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=f"{self._url}/rest/v1", timeout=self._timeout, transport=self._transport)

    def _request(self, method: str, table: str, op: str, params: dict | None = None, body: Any = None) -> Any:
        with self._client() as client:
            res = client.request(method, f"/{table}", params=params, json=body, headers=self._headers())
        if res.status_code >= 400:
            logger.warning("supabase_request_failed op=%s status=%s", op, res.status_code)
            raise RuntimeError(f"supabase_{op}_failed:{res.status_code}:{res.text}")
        if not res.content:
            return None
        return res.json()

    def _single(self, rows: Any, op: str) -> dict:
        if not isinstance(rows, list) or not rows:
            raise LookupError(f"supabase_{op}_empty")
        return rows[0]

    def list(self, filters: dict | None = None) -> list[dict]:
        params = {"select": "*", "order": "name"}
        for key, value in (filters or {}).items():
            if key in FILTER_KEYS and value:
                params[key] = f"eq.{value}"
        return self._request("GET", modules_table(), "list", params=params) or []

    def create(self, module: dict) -> dict:
        return self._single(self._request("POST", modules_table(), "create", body=module), "create")

    def update(self, module_id: str, patch: dict) -> dict:
        rows = self._request("PATCH", modules_table(), "update", params={"id": f"eq.{module_id}"}, body=patch)
        return self._single(rows, "update")

    def delete(self, module_id: str) -> None:
        rows = self._request("DELETE", modules_table(), "delete", params={"id": f"eq.{module_id}"})
        if not rows:
            # already gone remotely; a retried delete succeeds
            logger.info("supabase_delete_noop module_id=%s", module_id)

    def list_verticals(self) -> list[dict]:
        return self._request("GET", verticals_table(), "list_verticals", params={"select": "*", "order": "name"}) or []


def load_seed_file(path: str | Path) -> tuple[list[dict], list[dict]]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("seed file must contain an object with modules and verticals")
    return list(data.get("modules") or []), list(data.get("verticals") or [])


def build_store():
    backend = store_backend()
    if backend == "supabase":
        logger.info("module_store backend=supabase url=%s", _supabase_url())
        return SupabaseModuleStore()
    if backend != "memory":
        raise RuntimeError(f"unknown MODGRAPH_STORE backend: {backend}")
    store = MemoryModuleStore()
    seed_path = (os.getenv("MODGRAPH_SEED_FILE") or "").strip()
    if seed_path:
        modules, verticals = load_seed_file(seed_path)
        store.seed(modules, verticals)
        logger.info("module_store backend=memory seeded modules=%s verticals=%s", len(modules), len(verticals))
    return store
