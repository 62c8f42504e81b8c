"""Scheduler error taxonomy.

Structural errors (MalformedGraph and its subclasses, CycleDetected) are
fatal to a session: there is no partial graph to schedule against.
Per-unit errors (AttemptExhausted, WorkerError) never escape an attempt
loop; they are attached to its LoopResult and the session moves on.
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for every error raised by verisched."""


# ── Structural (fatal) ───────────────────────────────────────────────


class MalformedGraph(SchedulerError):
    """The unit inventory violates the parser contract."""


class DuplicateUnit(MalformedGraph):
    def __init__(self, unit_id: str) -> None:
        self.unit_id = unit_id
        super().__init__(f"Duplicate unit id: {unit_id!r}")


class UnknownEndpoint(MalformedGraph):
    """An edge references a unit that is not in the graph."""

    def __init__(self, from_id: str, to_id: str, missing: str) -> None:
        self.from_id = from_id
        self.to_id = to_id
        self.missing = missing
        super().__init__(
            f"Edge {from_id!r} -> {to_id!r} references unknown unit {missing!r}"
        )


class SelfLoop(MalformedGraph):
    def __init__(self, unit_id: str) -> None:
        self.unit_id = unit_id
        super().__init__(f"Unit {unit_id!r} depends on itself")


class CycleDetected(SchedulerError):
    """The dependency relation contains a cycle.

    ``cycle`` is the ordered list of ids on the cycle; the message closes
    the loop so the path can be read verbatim (A -> B -> C -> A).
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        path = " -> ".join(self.cycle + self.cycle[:1])
        super().__init__(f"Dependency cycle detected: {path}")


# ── Contract violations ──────────────────────────────────────────────


class InvalidTransition(SchedulerError):
    """A status change not permitted by the unit state machine."""

    def __init__(self, unit_id: str, current: str, target: str) -> None:
        self.unit_id = unit_id
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid transition for {unit_id!r}: {current} -> {target}"
        )


class UnknownUnit(SchedulerError):
    def __init__(self, unit_id: str) -> None:
        self.unit_id = unit_id
        super().__init__(f"Unknown unit: {unit_id!r}")


class NotReady(SchedulerError):
    """A unit was requested for scheduling while blocked or terminal."""

    def __init__(self, unit_id: str, blockers: list[str] | None = None, reason: str = "") -> None:
        self.unit_id = unit_id
        self.blockers = list(blockers or [])
        if not reason:
            reason = "blocked by " + ", ".join(self.blockers) if self.blockers else "not schedulable"
        super().__init__(f"Unit {unit_id!r} is not ready: {reason}")


class UnitBusy(SchedulerError):
    def __init__(self, unit_id: str) -> None:
        self.unit_id = unit_id
        super().__init__(f"Unit {unit_id!r} already has an attempt loop running")


# ── Per-unit (local) ─────────────────────────────────────────────────


class AttemptExhausted(SchedulerError):
    """Attempt budget ran out; the unit lands in ``stuck``."""

    def __init__(self, unit_id: str, attempts: int) -> None:
        self.unit_id = unit_id
        self.attempts = attempts
        super().__init__(
            f"Unit {unit_id!r} exhausted its attempt budget after {attempts} attempt(s)"
        )


class WorkerError(SchedulerError):
    """The worker faulted and local repair could not recover it."""

    def __init__(self, unit_id: str, report: str) -> None:
        self.unit_id = unit_id
        self.report = report
        super().__init__(f"Worker error on {unit_id!r}: {report}")
