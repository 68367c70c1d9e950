"""Format rules for module codes and versions."""

from __future__ import annotations

import re
from typing import Any

VERSION_RE = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+")
CODE_RE = re.compile(r"[a-z0-9_]+")
CODE_MIN_LENGTH = 2


def is_version(value: Any) -> bool:
    return isinstance(value, str) and bool(VERSION_RE.fullmatch(value))


def is_code(value: Any) -> bool:
    return isinstance(value, str) and len(value) >= CODE_MIN_LENGTH and bool(CODE_RE.fullmatch(value))
