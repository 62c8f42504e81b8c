"""GraphStore: units and the "depends on" relation between them.

Edges point from a unit to the units it depends on: a target must be
verified before the unit is eligible. The store knows nothing about
status; it answers structural questions only (leaves, cycles,
reachability, order).

The graph is a static snapshot per session. ``from_specs`` builds,
validates and freezes it; re-parsing produces a fresh graph rather than
editing this one.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from collections.abc import Iterable, Iterator

from verisched.errors import (
    CycleDetected,
    DuplicateUnit,
    MalformedGraph,
    SelfLoop,
    UnknownEndpoint,
    UnknownUnit,
)
from verisched.schemas import Unit, UnitSpec

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


class GraphStore:
    """Holds units and directed dependency edges."""

    def __init__(self) -> None:
        self._units: dict[str, Unit] = {}
        self._frozen = False

    @classmethod
    def from_specs(cls, specs: Iterable[UnitSpec]) -> GraphStore:
        """Build a read-only graph from parser output.

        Raises MalformedGraph (duplicate id, self-loop, dangling dependency)
        or CycleDetected. Nothing is scheduled against a graph that fails.
        """
        graph = cls()
        for spec in specs:
            graph.add_unit(Unit.from_spec(spec))
        graph.validate()
        graph.freeze()
        logger.debug("Built graph: %d units, %d edges", len(graph), graph.edge_count())
        return graph

    # ── Construction ───────────────────────────────────────────────

    def add_unit(self, unit: Unit) -> None:
        self._check_mutable()
        if unit.id in self._units:
            raise DuplicateUnit(unit.id)
        if unit.id in unit.dependency_ids:
            raise SelfLoop(unit.id)
        self._units[unit.id] = unit

    def add_edge(self, from_id: str, to_id: str) -> None:
        """Record that ``from_id`` depends on ``to_id``."""
        self._check_mutable()
        for endpoint in (from_id, to_id):
            if endpoint not in self._units:
                raise UnknownEndpoint(from_id, to_id, endpoint)
        if from_id == to_id:
            raise SelfLoop(from_id)
        unit = self._units[from_id]
        self._units[from_id] = unit.model_copy(
            update={"dependency_ids": unit.dependency_ids | {to_id}},
        )

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise MalformedGraph("Graph is read-only once scheduling has started")

    # ── Lookup ─────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def __iter__(self) -> Iterator[Unit]:
        return iter(self.units())

    def get(self, unit_id: str) -> Unit:
        try:
            return self._units[unit_id]
        except KeyError:
            raise UnknownUnit(unit_id) from None

    def ids(self) -> list[str]:
        return sorted(self._units)

    def units(self) -> list[Unit]:
        """All units, ordered by id."""
        return [self._units[uid] for uid in sorted(self._units)]

    def dependencies(self, unit_id: str) -> frozenset[str]:
        return self.get(unit_id).dependency_ids

    def edge_count(self) -> int:
        return sum(len(u.dependency_ids) for u in self._units.values())

    # ── Structural queries ─────────────────────────────────────────

    def leaves(self) -> list[Unit]:
        """Units with no dependencies, ordered by id."""
        return [u for u in self.units() if not u.dependency_ids]

    def dependents_map(self) -> dict[str, set[str]]:
        """Reverse relation: unit id -> ids of units that depend on it."""
        reverse: dict[str, set[str]] = {uid: set() for uid in self._units}
        for unit in self._units.values():
            for dep in unit.dependency_ids:
                if dep in reverse:
                    reverse[dep].add(unit.id)
        return reverse

    def dependents(self, unit_id: str) -> set[str]:
        """Direct dependents of a unit."""
        self.get(unit_id)
        return {u.id for u in self._units.values() if unit_id in u.dependency_ids}

    def dependency_closure(self, unit_id: str) -> set[str]:
        """All units reachable through dependency edges (excluding the unit)."""
        queue = deque(self.dependencies(unit_id))
        seen: set[str] = set()
        while queue:
            uid = queue.popleft()
            if uid in seen or uid not in self._units:
                continue
            seen.add(uid)
            queue.extend(self._units[uid].dependency_ids - seen)
        return seen

    def check_references(self) -> None:
        """Raise UnknownEndpoint for the first dangling dependency (by id)."""
        for unit in self.units():
            for dep in sorted(unit.dependency_ids):
                if dep not in self._units:
                    raise UnknownEndpoint(unit.id, dep, dep)

    def detect_cycle(self) -> list[str] | None:
        """Return the first cycle found as an ordered id list, or None.

        Iterative three-colour DFS. Roots and neighbours are visited in id
        order so the reported cycle is deterministic. Dangling references
        are ignored here; ``check_references`` reports those.
        """
        color = {uid: _WHITE for uid in self._units}

        for root in sorted(self._units):
            if color[root] != _WHITE:
                continue
            color[root] = _GRAY
            path = [root]
            stack = [iter(sorted(self._units[root].dependency_ids))]

            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    stack.pop()
                    color[path.pop()] = _BLACK
                    continue
                if nxt not in color:
                    continue
                if color[nxt] == _GRAY:
                    return path[path.index(nxt):]
                if color[nxt] == _WHITE:
                    color[nxt] = _GRAY
                    path.append(nxt)
                    stack.append(iter(sorted(self._units[nxt].dependency_ids)))

        return None

    def validate(self) -> None:
        """Full structural check, run once before any scheduling."""
        self.check_references()
        cycle = self.detect_cycle()
        if cycle:
            raise CycleDetected(cycle)

    def topological_order(self) -> list[str]:
        """Unit ids with dependencies first; ties broken by id.

        Assumes a validated (acyclic) graph.
        """
        remaining = {
            uid: sum(1 for dep in u.dependency_ids if dep in self._units)
            for uid, u in self._units.items()
        }
        reverse = self.dependents_map()
        heap = [uid for uid, n in remaining.items() if n == 0]
        heapq.heapify(heap)

        order: list[str] = []
        while heap:
            uid = heapq.heappop(heap)
            order.append(uid)
            for dependent in reverse[uid]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(heap, dependent)
        return order
