"""Pure structural queries over a module dependency graph.

The graph is an adjacency mapping ``module id -> iterable of dependency ids``.
An edge ``a -> b`` means "a requires b". Ids that appear only as dependencies
are treated as leaf nodes. Every traversal is iterative and guarded by a
visited set, so a malformed (already cyclic) graph never causes
non-termination.
"""

from __future__ import annotations

import heapq
from collections import deque
from typing import Dict, Iterable, List, Mapping, Set


Graph = Mapping[str, Iterable[str]]


class GraphCycleError(ValueError):
    """Raised when an ordering is requested for a graph that contains a cycle."""

    def __init__(self, cycle: List[str]) -> None:
        self.cycle = cycle
        super().__init__("dependency cycle: " + " -> ".join(cycle))


def _deps(graph: Graph, node: str) -> Iterable[str]:
    return graph.get(node) or ()


def _reachable(graph: Graph, start: str) -> Set[str]:
    visited: Set[str] = set()
    stack = list(_deps(graph, start))
    while stack:
        node = stack.pop()
        if node in visited:
            continue
        visited.add(node)
        stack.extend(dep for dep in _deps(graph, node) if dep not in visited)
    return visited


def depends_on(graph: Graph, module_id: str, dependency_id: str) -> bool:
    """True if ``dependency_id`` is reachable from ``module_id`` along dependency edges."""
    visited: Set[str] = set()
    stack = list(_deps(graph, module_id))
    while stack:
        node = stack.pop()
        if node == dependency_id:
            return True
        if node in visited:
            continue
        visited.add(node)
        stack.extend(_deps(graph, node))
    return False


def find_path(graph: Graph, start: str, target: str) -> List[str] | None:
    """Shortest dependency path ``[start, ..., target]``, or None."""
    parents: Dict[str, str | None] = {start: None}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        for dep in sorted(_deps(graph, node)):
            if dep in parents:
                continue
            parents[dep] = node
            if dep == target:
                path = [dep]
                while parents[path[-1]] is not None:
                    path.append(parents[path[-1]])
                return path[::-1]
            queue.append(dep)
    return None


def would_create_cycle(graph: Graph, from_module_id: str, to_module_id: str) -> bool:
    """Would adding ``from_module_id -> to_module_id`` close a loop?

    It does iff ``to_module_id`` already reaches ``from_module_id``. A direct
    mutual dependency is the zero-length case of the same search.
    """
    if from_module_id == to_module_id:
        return True
    return depends_on(graph, to_module_id, from_module_id)


def transitive_dependencies(graph: Graph, module_id: str) -> Set[str]:
    return _reachable(graph, module_id)


def reverse_graph(graph: Graph) -> Dict[str, Set[str]]:
    reverse: Dict[str, Set[str]] = {node: set() for node in graph}
    for node, deps in graph.items():
        for dep in deps or ():
            reverse.setdefault(dep, set()).add(node)
    return reverse


def direct_dependents(graph: Graph, module_id: str) -> List[str]:
    return sorted(node for node, deps in graph.items() if node != module_id and module_id in set(deps or ()))


def transitive_dependents(graph: Graph, module_id: str) -> Set[str]:
    """Every module that has ``module_id`` anywhere in its dependency closure."""
    return _reachable(reverse_graph(graph), module_id)


def find_cycle(graph: Graph) -> List[str] | None:
    """Return one cycle as a closed path (``[a, b, a]``) or None."""
    WHITE, GREY, BLACK = 0, 1, 2
    color: Dict[str, int] = {}
    for root in sorted(graph):
        if color.get(root, WHITE) != WHITE:
            continue
        path: List[str] = [root]
        color[root] = GREY
        iters = [iter(sorted(_deps(graph, root)))]
        while iters:
            nxt = next(iters[-1], None)
            if nxt is None:
                color[path.pop()] = BLACK
                iters.pop()
                continue
            state = color.get(nxt, WHITE)
            if state == GREY:
                return path[path.index(nxt):] + [nxt]
            if state == WHITE:
                color[nxt] = GREY
                path.append(nxt)
                iters.append(iter(sorted(_deps(graph, nxt))))
    return None


def topological_order(graph: Graph, nodes: Iterable[str] | None = None) -> List[str]:
    """Dependencies first, ties broken lexicographically.

    When ``nodes`` is given the order is restricted to that subset; edges
    leaving the subset are ignored.
    """
    if nodes is None:
        scope: Set[str] = set(graph)
        for deps in graph.values():
            scope.update(deps or ())
    else:
        scope = set(nodes)
    pending: Dict[str, int] = {}
    dependents: Dict[str, List[str]] = {node: [] for node in scope}
    for node in scope:
        deps = {dep for dep in _deps(graph, node) if dep in scope}
        pending[node] = len(deps)
        for dep in deps:
            dependents[dep].append(node)
    ready = [node for node, count in pending.items() if count == 0]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        for dependent in dependents[node]:
            pending[dependent] -= 1
            if pending[dependent] == 0:
                heapq.heappush(ready, dependent)
    if len(order) != len(scope):
        done = set(order)
        remaining = {node: [d for d in _deps(graph, node) if d in scope] for node in scope if node not in done}
        raise GraphCycleError(find_cycle(remaining) or sorted(remaining))
    return order
