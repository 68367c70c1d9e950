import json
import os
import sys
import tempfile
import unittest
from unittest.mock import patch

import httpx


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.module_store import MemoryModuleStore, SupabaseModuleStore, build_store, load_seed_file
from module_errors import PersistenceSyncError
from module_mutations import ModuleMutationService
from module_registry import ModuleRegistry


class TestMemoryModuleStore(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryModuleStore(
            [{"id": "core", "code": "core", "vertical_id": "v1", "status": "active"}],
            [{"id": "v1", "name": "Real Estate"}],
        )

    def test_crud(self) -> None:
        created = self.store.create({"code": "crm", "vertical_id": "v1", "status": "draft"})
        self.assertTrue(created["id"])
        updated = self.store.update(created["id"], {"status": "active"})
        self.assertEqual(updated["status"], "active")
        self.store.delete(created["id"])
        self.assertIsNone(self.store.get(created["id"]))

    def test_missing_and_duplicate_rows(self) -> None:
        with self.assertRaises(KeyError):
            self.store.create({"id": "core"})
        with self.assertRaises(KeyError):
            self.store.update("ghost", {"status": "active"})
        self.store.delete("ghost")
        self.assertIsNotNone(self.store.get("core"))

    def test_list_filters(self) -> None:
        self.store.create({"id": "crm", "code": "crm", "vertical_id": "v2", "status": "draft"})
        self.assertEqual([m["id"] for m in self.store.list({"vertical_id": "v2"})], ["crm"])
        self.assertEqual(len(self.store.list({"status": None})), 2)
        self.assertEqual(self.store.list_verticals(), [{"id": "v1", "name": "Real Estate"}])

    def test_returns_copies(self) -> None:
        self.store.get("core")["code"] = "changed"
        self.assertEqual(self.store.get("core")["code"], "core")


class TestSupabaseModuleStore(unittest.TestCase):
    def setUp(self) -> None:
        self.requests = []
        self.rows = {"core": {"id": "core", "code": "core", "name": "Core", "dependencies": []}}

    def _handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        if table == "verticals":
            return httpx.Response(200, json=[{"id": "v1", "name": "Real Estate"}])
        match = request.url.params.get("id", "")
        module_id = match[3:] if match.startswith("eq.") else None
        if request.method == "GET":
            return httpx.Response(200, json=list(self.rows.values()))
        if request.method == "POST":
            row = {**json.loads(request.content), "id": "srv-1"}
            self.rows[row["id"]] = row
            return httpx.Response(201, json=[row])
        if module_id not in self.rows:
            return httpx.Response(200, json=[])
        if request.method == "PATCH":
            self.rows[module_id].update(json.loads(request.content))
            return httpx.Response(200, json=[self.rows[module_id]])
        if request.method == "DELETE":
            return httpx.Response(200, json=[self.rows.pop(module_id)])
        return httpx.Response(405)

    def _store(self, handler=None) -> SupabaseModuleStore:
        return SupabaseModuleStore(
            url="https://example.supabase.co/",
            service_role_key="service-key",
            timeout=5,
            transport=httpx.MockTransport(handler or self._handler),
        )

    def test_requires_credentials(self) -> None:
        with patch.dict(os.environ, {"SUPABASE_URL": "", "SUPABASE_SERVICE_ROLE_KEY": ""}):
            with self.assertRaises(RuntimeError):
                SupabaseModuleStore()

    def test_list_sends_filters_and_auth(self) -> None:
        rows = self._store().list({"vertical_id": "v1", "status": "", "unknown": "x"})
        self.assertEqual(rows[0]["id"], "core")
        request = self.requests[0]
        self.assertEqual(request.url.path, "/rest/v1/modules")
        self.assertEqual(request.url.params.get("vertical_id"), "eq.v1")
        self.assertNotIn("status", request.url.params)
        self.assertNotIn("unknown", request.url.params)
        self.assertEqual(request.headers["apikey"], "service-key")
        self.assertEqual(request.headers["authorization"], "Bearer service-key")

    def test_create_update_delete(self) -> None:
        store = self._store()
        created = store.create({"code": "crm", "dependencies": ["core"]})
        self.assertEqual(created["id"], "srv-1")
        updated = store.update("srv-1", {"dependencies": []})
        self.assertEqual(updated["dependencies"], [])
        self.assertEqual(self.requests[-1].url.params.get("id"), "eq.srv-1")
        store.delete("srv-1")
        self.assertNotIn("srv-1", self.rows)
        with self.assertRaises(LookupError):
            store.update("srv-1", {"dependencies": []})

    def test_delete_is_retriable(self) -> None:
        store = self._store()
        service = ModuleMutationService(ModuleRegistry(), store=store)
        service.refresh()
        # row removed remotely by another session
        self.rows.clear()
        store.delete("core")
        deleted = service.delete_module("core")
        self.assertEqual(deleted["id"], "core")
        self.assertNotIn("core", service.registry)

    def test_http_error_raises(self) -> None:
        store = self._store(lambda request: httpx.Response(503, text="unavailable"))
        with self.assertRaises(RuntimeError) as ctx:
            store.list()
        self.assertIn("supabase_list_failed:503", str(ctx.exception))

    def test_service_over_supabase_rolls_back(self) -> None:
        store = self._store()
        service = ModuleMutationService(ModuleRegistry(), store=store)
        service.refresh()
        self.assertEqual(service.registry.vertical_name("v1"), "Real Estate")
        self.rows.clear()
        with self.assertRaises(PersistenceSyncError):
            service.update_module("core", {"name": "Core Platform"})
        self.assertEqual(service.registry.get("core")["name"], "Core")


class TestBuildStore(unittest.TestCase):
    def test_memory_seed_file(self) -> None:
        seed = {
            "modules": [{"id": "core", "code": "core", "name": "Core", "vertical_id": "v1"}],
            "verticals": [{"id": "v1", "name": "Real Estate"}],
        }
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "seed.json")
            with open(path, "w", encoding="utf-8") as handle:
                json.dump(seed, handle)
            self.assertEqual(load_seed_file(path)[0][0]["id"], "core")
            with patch.dict(os.environ, {"MODGRAPH_STORE": "memory", "MODGRAPH_SEED_FILE": path}):
                store = build_store()
        self.assertIsInstance(store, MemoryModuleStore)
        self.assertEqual(store.get("core")["name"], "Core")

    def test_unknown_backend(self) -> None:
        with patch.dict(os.environ, {"MODGRAPH_STORE": "postgres"}):
            with self.assertRaises(RuntimeError):
                build_store()

    def test_supabase_backend(self) -> None:
        env = {"MODGRAPH_STORE": "supabase", "SUPABASE_URL": "https://x.supabase.co", "SUPABASE_SERVICE_ROLE_KEY": "k"}
        with patch.dict(os.environ, env):
            self.assertIsInstance(build_store(), SupabaseModuleStore)


if __name__ == "__main__":
    unittest.main()
