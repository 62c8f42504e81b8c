"""All Pydantic models: the data that crosses component boundaries.

Units are frozen snapshots built once from parser output. Status and
attempt history live in the StatusStore; everything here is either an
immutable input or a serializable view over scheduler state.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SCORE = 3


# ── Status ───────────────────────────────────────────────────────────


class Status(StrEnum):
    """Per-unit status. Terminal members have no automatic way out."""
    UNSPECIFIED = "unspecified"
    IN_PROGRESS = "in_progress"
    VERIFIED = "verified"
    STUCK = "stuck"
    SKIPPED = "skipped"
    BUILD_ERROR = "build_error"


TERMINAL_STATUSES: frozenset[Status] = frozenset({
    Status.VERIFIED,
    Status.STUCK,
    Status.SKIPPED,
    Status.BUILD_ERROR,
})


def is_terminal(status: Status) -> bool:
    return status in TERMINAL_STATUSES


# ── Units ────────────────────────────────────────────────────────────


class UnitSpec(BaseModel):
    """One parser-produced inventory entry: (id, display name, dependencies).

    Scores are optional; units without them rank as average (3).
    """
    id: str = Field(min_length=1)
    display_name: str = ""
    dependency_ids: list[str] = Field(default_factory=list)
    complexity_score: int | None = Field(default=None, ge=1, le=5)
    leverage_score: int | None = Field(default=None, ge=1, le=5)
    risk_score: int | None = Field(default=None, ge=1, le=5)


class Unit(BaseModel):
    """A named node representing one piece of verifiable work."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    display_name: str = ""
    dependency_ids: frozenset[str] = frozenset()
    complexity_score: int = Field(default=DEFAULT_SCORE, ge=1, le=5)
    leverage_score: int = Field(default=DEFAULT_SCORE, ge=1, le=5)
    risk_score: int = Field(default=DEFAULT_SCORE, ge=1, le=5)

    @property
    def label(self) -> str:
        return self.display_name or self.id

    @classmethod
    def from_spec(cls, spec: UnitSpec) -> Unit:
        return cls(
            id=spec.id,
            display_name=spec.display_name,
            dependency_ids=frozenset(spec.dependency_ids),
            complexity_score=spec.complexity_score or DEFAULT_SCORE,
            leverage_score=spec.leverage_score or DEFAULT_SCORE,
            risk_score=spec.risk_score or DEFAULT_SCORE,
        )


# ── Worker outcomes ──────────────────────────────────────────────────


class OutcomeKind(StrEnum):
    PROPOSED = "proposed"
    VERIFIED = "verified"
    STUCK = "stuck"
    ERROR = "error"


class Outcome(BaseModel):
    """Result of one Worker.attempt call.

    ``content`` carries a proposal, ``report`` carries a stuck/error
    report. Both are opaque to scheduling logic.
    """
    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind
    content: str = ""
    report: str = ""

    @property
    def payload(self) -> str:
        return self.content if self.kind == OutcomeKind.PROPOSED else self.report

    @classmethod
    def proposed(cls, content: str) -> Outcome:
        return cls(kind=OutcomeKind.PROPOSED, content=content)

    @classmethod
    def verified(cls) -> Outcome:
        return cls(kind=OutcomeKind.VERIFIED)

    @classmethod
    def stuck(cls, report: str = "") -> Outcome:
        return cls(kind=OutcomeKind.STUCK, report=report)

    @classmethod
    def error(cls, report: str = "") -> Outcome:
        return cls(kind=OutcomeKind.ERROR, report=report)


class AttemptRecord(BaseModel):
    """One entry per Worker invocation. Appended, never mutated."""
    model_config = ConfigDict(frozen=True)

    attempt_number: int = Field(ge=1)
    outcome_kind: OutcomeKind
    feedback_in: str = ""
    proposal_out: str = ""
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


# ── Human decisions ──────────────────────────────────────────────────


class ProposalDecision(StrEnum):
    """Choices offered after a ``proposed`` outcome."""
    FEEDBACK = "feedback"
    SKIP = "skip"


class StuckDecision(StrEnum):
    """Choices offered after a ``stuck`` outcome."""
    HINT = "hint"
    RETRY = "retry"
    SIMPLIFY = "simplify"
    SKIP = "skip"


class HumanResponse(BaseModel):
    """A decision from a fixed set plus an opaque free-text payload."""
    decision: ProposalDecision | StuckDecision
    text: str = ""

    @property
    def is_skip(self) -> bool:
        return self.decision == "skip"


class DecisionRecord(BaseModel):
    """The human's answer to one attempt, logged after the attempt record."""
    model_config = ConfigDict(frozen=True)

    attempt_number: int = Field(ge=1)
    decision: str
    text: str = ""
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


# ── Reporter views ───────────────────────────────────────────────────


class UnitSnapshot(BaseModel):
    """Read-only view of a unit joined with its current status."""
    id: str
    display_name: str = ""
    dependency_ids: list[str] = Field(default_factory=list)
    status: Status = Status.UNSPECIFIED
    attempt_count: int = 0
    complexity_score: int = DEFAULT_SCORE
    leverage_score: int = DEFAULT_SCORE
    risk_score: int = DEFAULT_SCORE


class RankedUnit(BaseModel):
    """A ready unit with the sort key used to place it."""
    unit_id: str
    position: int
    leverage: int
    risk: int
    complexity: int


class SchedulerSnapshot(BaseModel):
    """Everything a Reporter needs, captured at one instant."""
    units: list[UnitSnapshot] = Field(default_factory=list)
    ready: list[str] = Field(default_factory=list)
    blocked: dict[str, list[str]] = Field(default_factory=dict)
    ranked: list[RankedUnit] = Field(default_factory=list)
    taken_at: str = Field(default_factory=lambda: datetime.now().isoformat())

    def counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in Status}
        for u in self.units:
            counts[u.status.value] += 1
        return counts


# ── Persistence ──────────────────────────────────────────────────────


class StatusSnapshot(BaseModel):
    """Serialized StatusStore: status and attempt history per unit id."""
    statuses: dict[str, Status] = Field(default_factory=dict)
    history: dict[str, list[AttemptRecord]] = Field(default_factory=dict)
    decisions: dict[str, list[DecisionRecord]] = Field(default_factory=dict)
    resets: dict[str, int] = Field(default_factory=dict)
    saved_at: str = ""
