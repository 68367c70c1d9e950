import os
import sys
import unittest
from unittest.mock import MagicMock


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.module_store import MemoryModuleStore
from delete_dialog import BLOCKED, CANCELLED, CLOSED, CONFIRMING, DELETING, DeleteModuleDialog, DialogStateError
from deletion_guard import DeletionGuard
from module_errors import BlockedDeletionError, PersistenceSyncError, UnknownModuleError
from module_mutations import ModuleMutationService
from module_registry import ModuleRegistry


def _modules() -> list[dict]:
    def module(mid: str, name: str, deps: list[str]) -> dict:
        return {"id": mid, "code": mid, "name": name, "vertical_id": "v", "status": "active", "version": "1.0.0", "dependencies": deps}

    return [
        module("core", "Core Platform", []),
        module("contacts", "Contacts", ["core"]),
        module("crm", "CRM", ["contacts"]),
        module("invoices", "Invoices", ["contacts"]),
        module("chat", "Chat", []),
    ]


class TestDeletionGuard(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = ModuleRegistry(_modules())
        self.guard = DeletionGuard(self.registry)

    def test_direct_dependents(self) -> None:
        self.assertEqual(self.guard.direct_dependents("contacts"), ["crm", "invoices"])
        self.assertEqual(self.guard.direct_dependents("chat"), [])

    def test_check_allows_leaf(self) -> None:
        self.guard.check("crm")
        self.guard.check("chat")

    def test_check_names_every_blocker(self) -> None:
        with self.assertRaises(BlockedDeletionError) as ctx:
            self.guard.check("contacts")
        err = ctx.exception
        self.assertEqual(err.dependent_ids, ["crm", "invoices"])
        self.assertEqual(err.detail["dependents"][1], {"id": "invoices", "name": "Invoices", "code": "invoices"})
        self.assertIn('"CRM" (crm)', err.message)
        self.assertIn("required by 2 other modules", err.message)

    def test_impact_splits_direct_and_deep(self) -> None:
        impact = self.guard.impact("core")
        self.assertFalse(impact["can_delete"])
        self.assertEqual([d["id"] for d in impact["dependents"]], ["contacts"])
        self.assertEqual([d["id"] for d in impact["transitive_dependents"]], ["crm", "invoices"])
        self.assertTrue(self.guard.impact("chat")["can_delete"])

    def test_impact_unknown_module(self) -> None:
        with self.assertRaises(UnknownModuleError):
            self.guard.impact("ghost")


class TestDeleteModuleDialog(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryModuleStore(_modules())
        self.registry = ModuleRegistry()
        self.service = ModuleMutationService(self.registry, store=self.store)
        self.service.refresh()
        self.dialog = DeleteModuleDialog(self.service)

    def test_delete_leaf(self) -> None:
        impact = self.dialog.open("crm")
        self.assertTrue(impact["can_delete"])
        self.assertTrue(self.dialog.can_delete)
        self.assertTrue(self.dialog.confirm(actor={"id": "admin"}))
        self.assertEqual(self.dialog.trail, [CLOSED, CONFIRMING, DELETING, CLOSED])
        self.assertNotIn("crm", self.registry)
        self.assertIsNone(self.dialog.module)

    def test_blocked_never_reaches_deleting(self) -> None:
        self.dialog.open("contacts")
        self.assertFalse(self.dialog.can_delete)
        self.assertFalse(self.dialog.confirm())
        self.assertEqual(self.dialog.state, CONFIRMING)
        self.assertNotIn(DELETING, self.dialog.trail)
        self.assertIn(BLOCKED, self.dialog.trail)
        self.assertIsInstance(self.dialog.error, BlockedDeletionError)
        self.assertEqual([d["id"] for d in self.dialog.dependents], ["crm", "invoices"])
        self.assertIn("contacts", self.registry)

    def test_dependent_added_after_open_blocks_confirm(self) -> None:
        self.dialog.open("chat")
        self.assertTrue(self.dialog.can_delete)
        self.service.add_dependency("crm", "chat")
        self.assertFalse(self.dialog.confirm())
        self.assertEqual([d["id"] for d in self.dialog.dependents], ["crm"])
        self.assertIn("chat", self.registry)

    def test_blocker_removed_then_confirm(self) -> None:
        self.dialog.open("invoices")
        self.service.add_dependency("chat", "invoices")
        self.assertFalse(self.dialog.confirm())
        self.service.remove_dependency("chat", "invoices")
        self.assertTrue(self.dialog.confirm())
        self.assertEqual(self.dialog.state, CLOSED)

    def test_cancel(self) -> None:
        self.dialog.open("crm")
        self.dialog.cancel()
        self.assertEqual(self.dialog.trail[-2:], [CANCELLED, CLOSED])
        self.assertIn("crm", self.registry)

    def test_store_failure_returns_to_confirming(self) -> None:
        self.store.delete = MagicMock(side_effect=RuntimeError("down"))
        self.dialog.open("crm")
        self.assertFalse(self.dialog.confirm())
        self.assertEqual(self.dialog.state, CONFIRMING)
        self.assertIsInstance(self.dialog.error, PersistenceSyncError)
        self.assertIn("crm", self.registry)

    def test_invalid_transitions(self) -> None:
        with self.assertRaises(DialogStateError):
            self.dialog.confirm()
        self.dialog.open("crm")
        with self.assertRaises(DialogStateError):
            self.dialog.open("chat")

    def test_open_unknown_module_stays_closed(self) -> None:
        with self.assertRaises(UnknownModuleError):
            self.dialog.open("ghost")
        self.assertEqual(self.dialog.state, CLOSED)


if __name__ == "__main__":
    unittest.main()
