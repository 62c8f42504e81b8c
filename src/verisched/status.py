"""StatusStore: the only mutable ledger.

Transitions:
  unspecified → in_progress     (attempt loop starts)
  unspecified → skipped         (deferred without running)
  in_progress → verified | stuck | skipped | build_error
  in_progress → unspecified     (interrupted loop, via release())
  any         → unspecified     (explicit reset only, never via set())

Terminal states (verified, stuck, skipped, build_error) have no way out
except ``reset``. Every read and write is keyed by unit id; no two units
share mutable state.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from verisched.errors import InvalidTransition, UnknownUnit
from verisched.graph import GraphStore
from verisched.schemas import (
    TERMINAL_STATUSES,
    AttemptRecord,
    DecisionRecord,
    Status,
    StatusSnapshot,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[Status, frozenset[Status]] = {
    Status.UNSPECIFIED: frozenset({Status.IN_PROGRESS, Status.SKIPPED}),
    Status.IN_PROGRESS: frozenset({
        Status.VERIFIED, Status.STUCK, Status.SKIPPED, Status.BUILD_ERROR,
    }),
    Status.VERIFIED: frozenset(),
    Status.STUCK: frozenset(),
    Status.SKIPPED: frozenset(),
    Status.BUILD_ERROR: frozenset(),
}


class StatusStore:
    """Current status and attempt history per unit id."""

    def __init__(self, unit_ids: Iterable[str]) -> None:
        self._status: dict[str, Status] = {}
        self._history: dict[str, list[AttemptRecord]] = {}
        self._decisions: dict[str, list[DecisionRecord]] = {}
        self._resets: dict[str, int] = {}
        for uid in unit_ids:
            self._status[uid] = Status.UNSPECIFIED
            self._history[uid] = []
            self._decisions[uid] = []
            self._resets[uid] = 0

    @classmethod
    def for_graph(cls, graph: GraphStore) -> StatusStore:
        return cls(graph.ids())

    def _require(self, unit_id: str) -> None:
        if unit_id not in self._status:
            raise UnknownUnit(unit_id)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._status

    # ── Status ─────────────────────────────────────────────────────

    def get(self, unit_id: str) -> Status:
        self._require(unit_id)
        return self._status[unit_id]

    def set(self, unit_id: str, status: Status) -> None:
        """Move a unit to ``status``; raise InvalidTransition if not allowed."""
        current = self.get(unit_id)
        target = Status(status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(unit_id, current.value, target.value)
        self._status[unit_id] = target
        logger.debug("%s: %s -> %s", unit_id, current.value, target.value)

    def reset(self, unit_id: str) -> Status:
        """Explicit regenerate: back to unspecified. History is kept.

        Returns the status the unit had before the reset.
        """
        previous = self.get(unit_id)
        self._status[unit_id] = Status.UNSPECIFIED
        self._resets[unit_id] += 1
        logger.info("%s reset (%s -> unspecified)", unit_id, previous.value)
        return previous

    def release(self, unit_id: str) -> None:
        """Return an in-progress unit to unspecified after an interrupted loop."""
        current = self.get(unit_id)
        if current != Status.IN_PROGRESS:
            raise InvalidTransition(unit_id, current.value, Status.UNSPECIFIED.value)
        self._status[unit_id] = Status.UNSPECIFIED

    def is_terminal(self, unit_id: str) -> bool:
        return self.get(unit_id) in TERMINAL_STATUSES

    def statuses(self) -> dict[str, Status]:
        return dict(self._status)

    def counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in Status}
        for status in self._status.values():
            counts[status.value] += 1
        return counts

    # ── History ────────────────────────────────────────────────────

    def history(self, unit_id: str) -> tuple[AttemptRecord, ...]:
        self._require(unit_id)
        return tuple(self._history[unit_id])

    def append(self, unit_id: str, record: AttemptRecord) -> None:
        self._require(unit_id)
        self._history[unit_id].append(record)

    def record_decision(self, unit_id: str, decision: DecisionRecord) -> None:
        self._require(unit_id)
        self._decisions[unit_id].append(decision)

    def decisions(self, unit_id: str) -> tuple[DecisionRecord, ...]:
        self._require(unit_id)
        return tuple(self._decisions[unit_id])

    def attempt_count(self, unit_id: str) -> int:
        """Total recorded attempts for a unit, across resets."""
        self._require(unit_id)
        return len(self._history[unit_id])

    def reset_count(self, unit_id: str) -> int:
        self._require(unit_id)
        return self._resets[unit_id]

    # ── Persistence ────────────────────────────────────────────────

    def to_snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(
            statuses=dict(self._status),
            history={uid: list(records) for uid, records in self._history.items()},
            decisions={uid: list(d) for uid, d in self._decisions.items() if d},
            resets={uid: n for uid, n in self._resets.items() if n},
            saved_at=datetime.now().isoformat(),
        )

    @classmethod
    def from_snapshot(cls, graph: GraphStore, snapshot: StatusSnapshot) -> StatusStore:
        """Rebuild a store for ``graph`` and merge prior state by unit id.

        Ids in the snapshot that no longer exist in the graph are dropped.
        Ids new to the graph start at unspecified. A unit left in_progress
        by an interrupted run goes back to unspecified; its loop did not
        reach a terminal state.
        """
        store = cls.for_graph(graph)
        dropped = sorted(set(snapshot.statuses) - set(store._status))
        if dropped:
            logger.warning("Dropping status for %d unknown unit(s): %s", len(dropped), ", ".join(dropped))

        for uid in store._status:
            status = snapshot.statuses.get(uid, Status.UNSPECIFIED)
            if status == Status.IN_PROGRESS:
                logger.warning("%s was in progress when the session stopped; reverting", uid)
                status = Status.UNSPECIFIED
            store._status[uid] = status
            store._history[uid] = list(snapshot.history.get(uid, []))
            store._decisions[uid] = list(snapshot.decisions.get(uid, []))
            store._resets[uid] = snapshot.resets.get(uid, 0)
        return store
