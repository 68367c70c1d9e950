"""Parseability checks for module configuration schemas.

The schema document itself is owned by the schema editor; here we only make
sure it is a JSON object that serializes deterministically.
"""

from __future__ import annotations

import json
import math
from typing import Any


class ConfigSchemaTypeError(TypeError):
    """Raised when a config schema cannot be represented as JSON."""


SCALARS = (str, int, bool, type(None))


def _walk(schema: Any, root: str = "config_schema") -> None:
    """Reject anything that has no JSON form.

    Errors name the offending location, e.g. ``config_schema.properties.seats.default``.
    """
    stack = [(root, schema)]
    while stack:
        where, node = stack.pop()
        if isinstance(node, dict):
            for key, child in node.items():
                if not isinstance(key, str):
                    raise ConfigSchemaTypeError(f"{where}: keys must be strings, got {key!r}")
                stack.append((f"{where}.{key}", child))
        elif isinstance(node, (list, tuple)):
            stack.extend((f"{where}[{idx}]", child) for idx, child in enumerate(node))
        elif isinstance(node, float):
            if not math.isfinite(node):
                raise ConfigSchemaTypeError(f"{where}: {node!r} has no JSON form")
        elif not isinstance(node, SCALARS):
            raise ConfigSchemaTypeError(f"{where}: {type(node).__name__} is not a JSON value")


def parse_config_schema(value: Any) -> dict:
    """Return the schema as a dict, accepting a JSON string or a mapping.

    ``None`` means "no options" and yields an empty schema.
    """
    if value is None:
        return {}
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise ConfigSchemaTypeError(f"config schema is not valid JSON: {exc}") from exc
    if not isinstance(value, dict):
        raise ConfigSchemaTypeError(f"config schema root must be an object, got {type(value).__name__}")
    return json.loads(schema_dumps(value))


def schema_dumps(schema: Any, root: str = "config_schema") -> str:
    """Sorted keys, no whitespace, non-ASCII preserved."""
    _walk(schema, root=root)
    return json.dumps(schema, sort_keys=True, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
