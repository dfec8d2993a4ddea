"""Dependency graph utilities."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

from infra_reconciler.engine.errors import DependencyCycleError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class DependencyGraph:
    """A directed graph where nodes depend on other nodes."""

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
    ) -> None:
        self._nodes = set(nodes)
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = {d for d in deps if d in self._nodes}
            for dep in self._deps[node]:
                self._dependents[dep].add(node)

    @property
    def nodes(self) -> set[str]:
        return set(self._nodes)

    def dependencies(self, node: str) -> set[str]:
        return set(self._deps.get(node, ()))

    def dependents(self, node: str) -> set[str]:
        return set(self._dependents.get(node, ()))

    def find_cycle(self) -> list[str] | None:
        """Depth-first search for a back-edge; return the cycle path or ``None``."""
        white, grey, black = 0, 1, 2
        color = dict.fromkeys(self._nodes, white)
        stack: list[str] = []

        def visit(node: str) -> list[str] | None:
            color[node] = grey
            stack.append(node)
            for dep in sorted(self._deps[node]):
                if color[dep] == grey:
                    start = stack.index(dep)
                    return [*stack[start:], dep]
                if color[dep] == white:
                    found = visit(dep)
                    if found is not None:
                        return found
            stack.pop()
            color[node] = black
            return None

        for node in sorted(self._nodes):
            if color[node] == white:
                found = visit(node)
                if found is not None:
                    return found
        return None

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (lexicographic tie-break)."""
        indegree: dict[str, int] = {n: len(deps) for n, deps in self._deps.items()}

        ready = [n for n, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for child in sorted(self._dependents[node]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, child)

        if len(order) != len(self._nodes):
            cycle = self.find_cycle()
            raise DependencyCycleError(cycle or sorted(self._nodes - set(order)))

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order

    def transitive_dependencies(self, nodes: Iterable[str]) -> set[str]:
        """Return *nodes* plus everything they depend on, directly or not."""
        seen: set[str] = set()
        pending = [n for n in nodes if n in self._nodes]
        while pending:
            node = pending.pop()
            if node in seen:
                continue
            seen.add(node)
            pending.extend(self._deps[node] - seen)
        return seen

    def transitive_dependents(self, node: str) -> set[str]:
        """Return everything that depends on *node*, excluding *node* itself."""
        seen: set[str] = set()
        pending = list(self._dependents.get(node, ()))
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self._dependents[current] - seen)
        return seen
