"""Scheduler: pick, attempt, record, reclassify, repeat.

Composes GraphStore, StatusStore, ReadinessEngine, RankingEngine and
AttemptLoop. The graph is validated once in ``start()``; a cycle or a
malformed inventory aborts the session before anything runs.

Properties:
- One attempt loop per unit at a time (in-flight units are never picked)
- Sequential by default: the worker step is itself interactive
- Optional concurrency for ready units with disjoint dependency closures
- Readiness recomputation serialized behind a single lock
- Per-unit failures stay local; the session moves on to the next unit
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from verisched.attempt import (
    DEFAULT_MAX_ATTEMPTS,
    AttemptLoop,
    HumanChannel,
    LoopResult,
    Worker,
)
from verisched.errors import NotReady, SchedulerError, UnitBusy
from verisched.graph import GraphStore
from verisched.ranking import RankingEngine
from verisched.readiness import Readiness, ReadinessEngine
from verisched.repair import Repairer
from verisched.schemas import (
    AttemptRecord,
    RankedUnit,
    SchedulerSnapshot,
    Status,
    UnitSnapshot,
    is_terminal,
)
from verisched.status import StatusStore

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """What a ``run_until_exhausted`` call did."""
    results: list[LoopResult] = field(default_factory=list)
    stopped: bool = False
    blocked: dict[str, list[str]] = field(default_factory=dict)

    def by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for r in self.results:
            counts[r.status.value] = counts.get(r.status.value, 0) + 1
        return counts

    @property
    def failures(self) -> list[SchedulerError]:
        return [r.failure for r in self.results if r.failure is not None]


class Scheduler:
    """Orchestrates attempt loops over a validated unit graph."""

    def __init__(
        self,
        graph: GraphStore,
        statuses: StatusStore,
        worker: Worker | None = None,
        human: HumanChannel | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        repairer: Repairer | None = None,
        concurrent: bool = False,
        max_concurrent: int = 4,
        on_result: Callable[[LoopResult], None] | None = None,
    ) -> None:
        self.graph = graph
        self.statuses = statuses
        self.worker = worker
        self.human = human
        self.max_attempts = max_attempts
        self.repairer = repairer
        self.concurrent = concurrent
        self.max_concurrent = max(1, max_concurrent)
        self.on_result = on_result

        self.readiness_engine = ReadinessEngine(graph, statuses)
        self.ranking_engine = RankingEngine(graph)

        self._lock = asyncio.Lock()
        self._in_flight: set[str] = set()
        self._started = False
        self._stop_requested = False
        self.last_readiness: Readiness | None = None

    # ── Session start ──────────────────────────────────────────────

    def start(self) -> Readiness:
        """Validate the graph and compute the initial classification.

        Raises MalformedGraph or CycleDetected; no partial scheduling.
        """
        self.graph.validate()
        self.graph.freeze()
        self._started = True
        self.last_readiness = self.readiness_engine.classify()
        logger.info(
            "Session started: %d units, %d ready, %d blocked",
            len(self.graph), len(self.last_readiness.ready), len(self.last_readiness.blocked),
        )
        return self.last_readiness

    def _require_started(self) -> None:
        if not self._started:
            self.start()

    # ── Read-only accessors (for reporters) ────────────────────────

    def readiness(self) -> Readiness:
        self._require_started()
        return self.readiness_engine.classify()

    def ranked(self) -> list[RankedUnit]:
        return self.ranking_engine.rank(self.readiness().ready)

    def history(self, unit_id: str) -> tuple[AttemptRecord, ...]:
        return self.statuses.history(unit_id)

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def snapshot(self) -> SchedulerSnapshot:
        readiness = self.readiness()
        units = [
            UnitSnapshot(
                id=u.id,
                display_name=u.display_name,
                dependency_ids=sorted(u.dependency_ids),
                status=self.statuses.get(u.id),
                attempt_count=self.statuses.attempt_count(u.id),
                complexity_score=u.complexity_score,
                leverage_score=u.leverage_score,
                risk_score=u.risk_score,
            )
            for u in self.graph.units()
        ]
        return SchedulerSnapshot(
            units=units,
            ready=sorted(readiness.ready),
            blocked=dict(readiness.blocked),
            ranked=self.ranking_engine.rank(readiness.ready),
        )

    # ── Scheduling ─────────────────────────────────────────────────

    def next(self) -> str | None:
        """Top-ranked ready unit that is not already running, or None."""
        for ranked in self.ranked():
            if ranked.unit_id not in self._in_flight:
                return ranked.unit_id
        return None

    async def refresh(self) -> Readiness:
        """Recompute readiness; one recompute at a time."""
        async with self._lock:
            self.last_readiness = self.readiness_engine.classify()
            return self.last_readiness

    async def run_one(
        self,
        unit_id: str,
        max_attempts: int | None = None,
        force: bool = False,
    ) -> LoopResult:
        """Run the attempt loop for one unit, then reclassify.

        ``force`` runs a blocked unit anyway; terminal units always need an
        explicit reset first.
        """
        self._require_started()
        unit = self.graph.get(unit_id)
        if self.worker is None or self.human is None:
            raise SchedulerError("Scheduler has no worker or human channel; it can only report")
        if unit_id in self._in_flight:
            raise UnitBusy(unit_id)

        status = self.statuses.get(unit_id)
        if is_terminal(status):
            raise NotReady(unit_id, reason=f"status is {status.value}; reset it first")
        if not force:
            readiness = self.readiness()
            if not readiness.is_ready(unit_id):
                raise NotReady(unit_id, readiness.blockers_of(unit_id))

        self._in_flight.add(unit_id)
        try:
            loop = AttemptLoop(
                unit,
                self.statuses,
                self.worker,
                self.human,
                max_attempts=self.max_attempts if max_attempts is None else max_attempts,
                repairer=self.repairer,
            )
            result = await loop.run()
        finally:
            self._in_flight.discard(unit_id)

        if result.failure is not None:
            logger.warning("%s", result.failure)

        readiness = await self.refresh()
        newly_ready = sorted(
            uid for uid in readiness.ready
            if unit_id in self.graph.dependencies(uid)
        )
        if newly_ready:
            logger.info("Unblocked by %s: %s", unit_id, ", ".join(newly_ready))

        if self.on_result:
            self.on_result(result)
        return result

    async def run_until_exhausted(self, max_units: int | None = None) -> RunSummary:
        """Keep picking and running units until none are ready or stop() is called."""
        self._require_started()
        self._stop_requested = False
        summary = RunSummary()

        while not self._stop_requested:
            budget = None if max_units is None else max_units - len(summary.results)
            if budget is not None and budget <= 0:
                break

            if self.concurrent:
                batch = self.independent_batch(limit=budget)
            else:
                nxt = self.next()
                batch = [nxt] if nxt else []
            if not batch:
                break

            summary.results.extend(await self._run_batch(batch))

        summary.stopped = self._stop_requested
        summary.blocked = dict(self.readiness().blocked)
        logger.info(
            "Run finished: %d unit(s) processed, %d blocked%s",
            len(summary.results), len(summary.blocked), " (stopped)" if summary.stopped else "",
        )
        return summary

    def independent_batch(self, limit: int | None = None) -> list[str]:
        """Ranked ready units whose dependency closures are pairwise disjoint."""
        cap = self.max_concurrent if limit is None else min(limit, self.max_concurrent)
        batch: list[str] = []
        claimed: set[str] = set()

        for ranked in self.ranked():
            if len(batch) >= cap:
                break
            uid = ranked.unit_id
            if uid in self._in_flight:
                continue
            closure = self.graph.dependency_closure(uid) | {uid}
            if closure & claimed:
                continue
            claimed |= closure
            batch.append(uid)
        return batch

    async def _run_batch(self, batch: list[str]) -> list[LoopResult]:
        if len(batch) == 1:
            return [await self.run_one(batch[0])]

        sem = asyncio.Semaphore(self.max_concurrent)

        async def _guarded(uid: str) -> LoopResult:
            async with sem:
                return await self.run_one(uid)

        return list(await asyncio.gather(*[_guarded(uid) for uid in batch]))

    def stop(self) -> None:
        """Stop after the units currently running reach a terminal state."""
        self._stop_requested = True

    # ── Explicit commands ──────────────────────────────────────────

    def reset(self, unit_id: str) -> Status:
        """Regenerate a unit: back to unspecified, history kept."""
        self.graph.get(unit_id)
        if unit_id in self._in_flight:
            raise UnitBusy(unit_id)
        return self.statuses.reset(unit_id)

    def skip(self, unit_id: str) -> None:
        """Defer a unit that has not been attempted since its last reset."""
        self.graph.get(unit_id)
        if unit_id in self._in_flight:
            raise UnitBusy(unit_id)
        self.statuses.set(unit_id, Status.SKIPPED)
