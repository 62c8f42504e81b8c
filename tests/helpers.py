"""Shared fakes for scheduler tests: scripted workers and humans."""

from __future__ import annotations

from collections.abc import Callable

from verisched.graph import GraphStore
from verisched.schemas import (
    AttemptRecord,
    HumanResponse,
    Outcome,
    ProposalDecision,
    StuckDecision,
    Unit,
    UnitSpec,
)


def make_graph(
    deps: dict[str, list[str]],
    scores: dict[str, tuple[int, int]] | None = None,
) -> GraphStore:
    """Build a frozen graph. scores maps id -> (risk, complexity)."""
    scores = scores or {}
    specs = []
    for uid, dep_ids in deps.items():
        risk, complexity = scores.get(uid, (None, None))
        specs.append(UnitSpec(
            id=uid,
            display_name=uid.upper(),
            dependency_ids=dep_ids,
            risk_score=risk,
            complexity_score=complexity,
        ))
    return GraphStore.from_specs(specs)


class ScriptedWorker:
    """Returns outcomes from a script; the last entry repeats forever.

    An entry may be a callable taking the attempt number.
    """

    def __init__(self, *script: Outcome | Callable[[int], Outcome]) -> None:
        self.script = list(script) or [Outcome.verified()]
        self.calls: list[tuple[str, str, int]] = []

    async def attempt(self, unit: Unit, feedback: str, attempt_number: int) -> Outcome:
        self.calls.append((unit.id, feedback, attempt_number))
        index = min(len(self.calls), len(self.script)) - 1
        entry = self.script[index]
        return entry(attempt_number) if callable(entry) else entry


def distinct_proposals(attempt_number: int) -> Outcome:
    return Outcome.proposed(f"proposal #{attempt_number}")


class RaisingWorker:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def attempt(self, unit: Unit, feedback: str, attempt_number: int) -> Outcome:
        raise self.exc


class ScriptedHuman:
    """Answers from fixed response lists; the last entry repeats."""

    def __init__(
        self,
        proposal: list[HumanResponse] | None = None,
        stuck: list[HumanResponse] | None = None,
    ) -> None:
        self.proposal = proposal or [HumanResponse(decision=ProposalDecision.FEEDBACK, text="keep going")]
        self.stuck = stuck or [HumanResponse(decision=StuckDecision.RETRY)]
        self.seen: list[tuple[str, AttemptRecord]] = []
        self.notices: list[tuple[str, str]] = []

    def _pick(self, responses: list[HumanResponse], kind: str) -> HumanResponse:
        count = sum(1 for k, _ in self.seen if k == kind)
        return responses[min(count - 1, len(responses) - 1)]

    async def after_proposal(self, unit: Unit, record: AttemptRecord) -> HumanResponse:
        self.seen.append(("proposal", record))
        return self._pick(self.proposal, "proposal")

    async def after_stuck(self, unit: Unit, record: AttemptRecord) -> HumanResponse:
        self.seen.append(("stuck", record))
        return self._pick(self.stuck, "stuck")

    def notify(self, unit_id: str, message: str) -> None:
        self.notices.append((unit_id, message))


def skip_human() -> ScriptedHuman:
    return ScriptedHuman(
        proposal=[HumanResponse(decision=ProposalDecision.SKIP)],
        stuck=[HumanResponse(decision=StuckDecision.SKIP)],
    )
