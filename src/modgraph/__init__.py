"""Module dependency graph kernel."""

from .config_schema import ConfigSchemaTypeError, parse_config_schema, schema_dumps
from .dependency_graph import (
    GraphCycleError,
    depends_on,
    direct_dependents,
    find_cycle,
    find_path,
    reverse_graph,
    topological_order,
    transitive_dependencies,
    transitive_dependents,
    would_create_cycle,
)
from .semver import is_code, is_version

__all__ = [
    "ConfigSchemaTypeError",
    "GraphCycleError",
    "depends_on",
    "direct_dependents",
    "find_cycle",
    "find_path",
    "is_code",
    "is_version",
    "parse_config_schema",
    "reverse_graph",
    "schema_dumps",
    "topological_order",
    "transitive_dependencies",
    "transitive_dependents",
    "would_create_cycle",
]
