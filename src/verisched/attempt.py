"""AttemptLoop: per-unit state machine driving one unit to a terminal status.

States:
  init → running → verified | stuck | skipped | error

Each iteration invokes the worker once and appends exactly one
AttemptRecord before anything else happens, so the attempt count is
always ``len(records)``. The human's answer goes to a separate decision
log; records are never rewritten. The loop suspends at one point per
iteration: awaiting the human after a ``proposed`` or ``stuck`` outcome.
There is no timeout there; ``skip`` is the only cancellation and always
lands the unit in ``skipped``.

Guardrails:
  - max_attempts is clamped to [0, MAX_ATTEMPTS_CEILING]; 0 skips at once
  - a proposal identical to the one before it counts as a failed repair
  - at most one local repair per run
  - the terminal status is written to the StatusStore exactly once
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from verisched.errors import AttemptExhausted, SchedulerError, WorkerError
from verisched.repair import NoRepair, Repairer
from verisched.schemas import (
    AttemptRecord,
    DecisionRecord,
    HumanResponse,
    Outcome,
    OutcomeKind,
    Status,
    StuckDecision,
    Unit,
)
from verisched.status import StatusStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_CEILING = 25
DEFAULT_MAX_ATTEMPTS = 5


# ── Collaborator interfaces ──────────────────────────────────────────


class Worker(Protocol):
    """One step of work on a unit. Inputs are frozen; no hidden session state."""

    async def attempt(self, unit: Unit, feedback: str, attempt_number: int) -> Outcome:
        ...


class HumanChannel(Protocol):
    """The supervising human, asked at fixed decision points."""

    async def after_proposal(self, unit: Unit, record: AttemptRecord) -> HumanResponse:
        """Choose from ProposalDecision: feedback (with text) or skip."""
        ...

    async def after_stuck(self, unit: Unit, record: AttemptRecord) -> HumanResponse:
        """Choose from StuckDecision: hint, retry, simplify or skip."""
        ...

    def notify(self, unit_id: str, message: str) -> None:
        ...


# ── Loop ─────────────────────────────────────────────────────────────


class LoopState(StrEnum):
    INIT = "init"
    RUNNING = "running"
    VERIFIED = "verified"
    STUCK = "stuck"
    SKIPPED = "skipped"
    ERROR = "error"


TERMINAL_STATUS_FOR: dict[LoopState, Status] = {
    LoopState.VERIFIED: Status.VERIFIED,
    LoopState.STUCK: Status.STUCK,
    LoopState.SKIPPED: Status.SKIPPED,
    LoopState.ERROR: Status.BUILD_ERROR,
}


def clamp_attempts(requested: int) -> int:
    """Clamp a caller-requested attempt budget to [0, MAX_ATTEMPTS_CEILING]."""
    return max(0, min(int(requested), MAX_ATTEMPTS_CEILING))


def stuck_feedback(response: HumanResponse) -> str:
    """Fold a stuck-report decision into the opaque feedback payload."""
    decision = response.decision.value
    if decision not in {d.value for d in StuckDecision}:
        decision = StuckDecision.HINT.value
    text = response.text.strip()
    return f"[{decision}] {text}" if text else f"[{decision}]"


@dataclass
class LoopResult:
    """Outcome of one attempt loop run."""
    unit_id: str
    status: Status
    records: list[AttemptRecord] = field(default_factory=list)
    decisions: list[DecisionRecord] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)
    failure: SchedulerError | None = None  # AttemptExhausted or WorkerError
    repaired: bool = False

    @property
    def attempts(self) -> int:
        return len(self.records)


class AttemptLoop:
    """Drives a single unit; instances run once."""

    def __init__(
        self,
        unit: Unit,
        statuses: StatusStore,
        worker: Worker,
        human: HumanChannel,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        repairer: Repairer | None = None,
    ) -> None:
        self.unit = unit
        self.statuses = statuses
        self.worker = worker
        self.human = human
        self.repairer = repairer or NoRepair()
        self.requested_attempts = max_attempts
        self.max_attempts = clamp_attempts(max_attempts)
        self.state = LoopState.INIT
        self.records: list[AttemptRecord] = []
        self.decisions: list[DecisionRecord] = []
        self.notices: list[str] = []
        self._failure: SchedulerError | None = None
        self._repaired = False
        self._last_proposal: str | None = None

    @property
    def attempt_count(self) -> int:
        return len(self.records)

    async def run(self) -> LoopResult:
        if self.state != LoopState.INIT:
            raise RuntimeError(f"Attempt loop for {self.unit.id!r} has already run")

        uid = self.unit.id
        if self.max_attempts != self.requested_attempts:
            self._notice(
                f"Requested {self.requested_attempts} attempts; "
                f"clamped to {self.max_attempts}"
            )

        if self.max_attempts == 0:
            self._notice("Attempt budget is zero; skipping without running the worker")
            self.state = LoopState.SKIPPED
            return self._commit()

        self.statuses.set(uid, Status.IN_PROGRESS)
        self.state = LoopState.RUNNING
        logger.info("%s: starting (max %d attempts)", uid, self.max_attempts)

        try:
            await self._drive()
        except BaseException:
            # Interrupted at the worker or human boundary: no terminal state.
            self.statuses.release(uid)
            raise

        if self.state == LoopState.RUNNING:
            self.state = LoopState.STUCK
            self._failure = AttemptExhausted(uid, self.attempt_count)
            self._notice(
                f"Guardrail: {self.attempt_count} attempt(s) used without verification; "
                "marking stuck"
            )

        return self._commit()

    async def _drive(self) -> None:
        feedback = ""
        while self.attempt_count < self.max_attempts and self.state == LoopState.RUNNING:
            number = self.attempt_count + 1
            outcome = await self._invoke(feedback, number)
            draft = AttemptRecord(
                attempt_number=number,
                outcome_kind=outcome.kind,
                feedback_in=feedback,
                proposal_out=outcome.payload,
            )
            self._append(draft)

            if outcome.kind == OutcomeKind.PROPOSED:
                if self._last_proposal is not None and outcome.content == self._last_proposal:
                    self._fail("worker repeated its previous proposal verbatim")
                    break
                self._last_proposal = outcome.content
                response = await self.human.after_proposal(self.unit, draft)
                self._decide(number, response)
                if response.is_skip:
                    self.state = LoopState.SKIPPED
                    break
                feedback = response.text

            elif outcome.kind == OutcomeKind.VERIFIED:
                self.state = LoopState.VERIFIED

            elif outcome.kind == OutcomeKind.STUCK:
                response = await self.human.after_stuck(self.unit, draft)
                self._decide(number, response)
                if response.is_skip:
                    self.state = LoopState.SKIPPED
                    break
                feedback = stuck_feedback(response)

            else:
                note = None if self._repaired else self.repairer.repair(self.unit, outcome.report)
                if note:
                    self._repaired = True
                    self._notice(f"Applied {self.repairer.name} repair after worker error")
                    feedback = note
                    continue
                self._fail(outcome.report or "worker reported an error")

    async def _invoke(self, feedback: str, number: int) -> Outcome:
        try:
            return await self.worker.attempt(self.unit, feedback, number)
        except Exception as e:
            logger.exception("%s: worker raised on attempt %d", self.unit.id, number)
            return Outcome.error(f"{type(e).__name__}: {e}")

    def _append(self, record: AttemptRecord) -> None:
        self.records.append(record)
        self.statuses.append(self.unit.id, record)
        logger.debug(
            "%s: attempt %d -> %s", self.unit.id, record.attempt_number, record.outcome_kind.value,
        )

    def _decide(self, number: int, response: HumanResponse) -> None:
        decision = DecisionRecord(
            attempt_number=number, decision=response.decision.value, text=response.text,
        )
        self.decisions.append(decision)
        self.statuses.record_decision(self.unit.id, decision)

    def _fail(self, report: str) -> None:
        self.state = LoopState.ERROR
        self._failure = WorkerError(self.unit.id, report)

    def _notice(self, message: str) -> None:
        self.notices.append(message)
        logger.warning("%s: %s", self.unit.id, message)
        self.human.notify(self.unit.id, message)

    def _commit(self) -> LoopResult:
        status = TERMINAL_STATUS_FOR[self.state]
        self.statuses.set(self.unit.id, status)
        logger.info("%s: %s after %d attempt(s)", self.unit.id, status.value, self.attempt_count)
        return LoopResult(
            unit_id=self.unit.id,
            status=status,
            records=list(self.records),
            decisions=list(self.decisions),
            notices=list(self.notices),
            failure=self._failure,
            repaired=self._repaired,
        )
