"""ReadinessEngine: which non-terminal units may start.

A unit is ready when every dependency is verified (leaves always are).
Otherwise it is blocked, and the blocker list names each dependency that
is not yet verified. Classification is a single O(units + edges) pass
with no cache: call it again after every status change.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from verisched.graph import GraphStore
from verisched.schemas import TERMINAL_STATUSES, Status
from verisched.status import StatusStore


@dataclass(frozen=True)
class Readiness:
    """Disjoint partition of the non-terminal units."""
    ready: frozenset[str] = frozenset()
    blocked: dict[str, list[str]] = field(default_factory=dict)

    def is_ready(self, unit_id: str) -> bool:
        return unit_id in self.ready

    def blockers_of(self, unit_id: str) -> list[str]:
        return list(self.blocked.get(unit_id, []))

    @property
    def pending(self) -> set[str]:
        """All non-terminal units (ready or blocked)."""
        return set(self.ready) | set(self.blocked)


class ReadinessEngine:
    def __init__(self, graph: GraphStore, statuses: StatusStore) -> None:
        self.graph = graph
        self.statuses = statuses

    def classify(self) -> Readiness:
        ready: set[str] = set()
        blocked: dict[str, list[str]] = {}

        for unit in self.graph.units():
            if self.statuses.get(unit.id) in TERMINAL_STATUSES:
                continue
            blockers = sorted(
                dep for dep in unit.dependency_ids
                if self.statuses.get(dep) != Status.VERIFIED
            )
            if blockers:
                blocked[unit.id] = blockers
            else:
                ready.add(unit.id)

        return Readiness(ready=frozenset(ready), blocked=blocked)
