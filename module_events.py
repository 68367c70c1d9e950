"""Change notifications for committed module mutations."""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from module_errors import ModuleError
from modgraph.config_schema import ConfigSchemaTypeError, schema_dumps


logger = logging.getLogger("modgraph.events")

Event = Dict[str, Any]
Handler = Callable[[Event], None]

MODULE_CREATED = "module.created"
MODULE_UPDATED = "module.updated"
MODULE_DELETED = "module.deleted"
DEPENDENCY_ADDED = "module.dependency_added"
DEPENDENCY_REMOVED = "module.dependency_removed"
MODULES_REFRESHED = "modules.refreshed"

EVENT_NAMES = {
    MODULE_CREATED,
    MODULE_UPDATED,
    MODULE_DELETED,
    DEPENDENCY_ADDED,
    DEPENDENCY_REMOVED,
    MODULES_REFRESHED,
}


@dataclass(eq=False)
class EventValidationError(ModuleError):
    code: str = "EVENT_INVALID"


def _raise(code: str, message: str, path: str | None = None) -> None:
    raise EventValidationError(message=message, code=code, path=path)


def validate_actor(actor: Any) -> None:
    if actor is None:
        return
    if not isinstance(actor, dict):
        _raise("META_ACTOR_INVALID", "actor must be object or null", "meta.actor")
    if not isinstance(actor.get("id"), str):
        _raise("META_ACTOR_INVALID", "actor.id must be string", "meta.actor.id")


def _validate_occurred_at(value: Any) -> None:
    if not isinstance(value, str) or not value.endswith("Z"):
        _raise("META_OCCURRED_AT_INVALID", "occurred_at must be ISO8601 ending with 'Z'", "meta.occurred_at")
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        _raise("META_OCCURRED_AT_INVALID", "occurred_at must be ISO8601", "meta.occurred_at")


def validate_event(event: Any) -> None:
    if not isinstance(event, dict):
        _raise("EVENT_INVALID", "event must be object")
    if event.get("name") not in EVENT_NAMES:
        _raise("EVENT_NAME_INVALID", "unknown event name", "name")

    payload = event.get("payload")
    if not isinstance(payload, dict):
        _raise("PAYLOAD_INVALID", "payload must be an object", "payload")
    try:
        schema_dumps(payload, root="payload")
    except ConfigSchemaTypeError as exc:
        _raise("PAYLOAD_INVALID", str(exc), "payload")

    meta = event.get("meta")
    if not isinstance(meta, dict):
        _raise("META_INVALID", "meta must be object", "meta")
    if not isinstance(meta.get("event_id"), str):
        _raise("META_EVENT_ID_INVALID", "event_id must be string", "meta.event_id")
    _validate_occurred_at(meta.get("occurred_at"))
    module_id = meta.get("module_id")
    if module_id is not None and not isinstance(module_id, str):
        _raise("META_MODULE_ID_INVALID", "module_id must be string or null", "meta.module_id")
    validate_actor(meta.get("actor"))
    if meta.get("schema_version") != "1":
        _raise("META_SCHEMA_VERSION_INVALID", "schema_version must be '1'", "meta.schema_version")


def make_event(name: str, payload: dict, module_id: str | None = None, actor: dict | None = None) -> Event:
    event = {
        "name": name,
        "payload": copy.deepcopy(payload),
        "meta": {
            "event_id": str(uuid.uuid4()),
            "occurred_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "module_id": module_id,
            "actor": copy.deepcopy(actor),
            "schema_version": "1",
        },
    }
    validate_event(event)
    return event


class EventBus:
    def __init__(self) -> None:
        self._subs: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        if name != "*" and name not in EVENT_NAMES:
            raise ValueError(f"unknown event name: {name}")
        self._subs.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> bool:
        handlers = self._subs.get(name)
        if not handlers:
            return False
        try:
            handlers.remove(handler)
        except ValueError:
            return False
        if not handlers:
            del self._subs[name]
        return True

    def publish(self, event: dict) -> None:
        validate_event(event)
        for handler in [*self._subs.get(event["name"], []), *self._subs.get("*", [])]:
            try:
                handler(copy.deepcopy(event))
            except Exception:
                logger.exception("event_handler_failed event=%s", event["name"])
