"""State machine for the delete-module confirmation dialog.

closed -> confirming -> deleting -> closed
                     -> blocked -> confirming
                     -> cancelled -> closed

A module with direct dependents can never reach ``deleting``; there is no
force delete.
"""

from __future__ import annotations

import logging

from module_errors import BlockedDeletionError, ModuleError
from module_mutations import ModuleMutationService


logger = logging.getLogger("modgraph.delete_dialog")

CLOSED = "closed"
CONFIRMING = "confirming"
BLOCKED = "blocked"
DELETING = "deleting"
CANCELLED = "cancelled"


class DialogStateError(RuntimeError):
    pass


class DeleteModuleDialog:
    def __init__(self, service: ModuleMutationService) -> None:
        self._service = service
        self.state = CLOSED
        self.trail: list[str] = [CLOSED]
        self._reset()

    def _reset(self) -> None:
        self.module: dict | None = None
        self.dependents: list[dict] = []
        self.transitive_dependents: list[dict] = []
        self.error: ModuleError | None = None

    def _move(self, state: str) -> None:
        self.state = state
        self.trail.append(state)

    def _expect(self, *states: str) -> None:
        if self.state not in states:
            raise DialogStateError(f"dialog is {self.state}, expected {' or '.join(states)}")

    @property
    def can_delete(self) -> bool:
        return self.state == CONFIRMING and not self.dependents

    def open(self, module_id: str) -> dict:
        self._expect(CLOSED)
        impact = self._service.guard.impact(module_id)
        self.module = impact["module"]
        self.dependents = impact["dependents"]
        self.transitive_dependents = impact["transitive_dependents"]
        self.error = None
        self._move(CONFIRMING)
        return impact

    def cancel(self) -> None:
        self._expect(CONFIRMING)
        self._move(CANCELLED)
        self._reset()
        self._move(CLOSED)

    def confirm(self, actor: dict | None = None) -> bool:
        """Attempt the delete. True when the dialog closed on success."""
        self._expect(CONFIRMING)
        module_id = self.module["id"]
        try:
            self._service.guard.check(module_id)
        except BlockedDeletionError as exc:
            self.dependents = exc.dependents
            self.error = exc
            self._move(BLOCKED)
            self._move(CONFIRMING)
            return False
        self.dependents = []
        self._move(DELETING)
        try:
            self._service.delete_module(module_id, actor=actor)
        except ModuleError as exc:
            logger.warning("module_delete_dialog_failed module_id=%s code=%s", module_id, exc.code)
            self.error = exc
            self._move(CONFIRMING)
            return False
        self._reset()
        self._move(CLOSED)
        return True
