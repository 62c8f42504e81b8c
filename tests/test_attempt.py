"""Tests for the per-unit attempt loop."""

from __future__ import annotations

import asyncio

import pytest

from verisched.attempt import (
    MAX_ATTEMPTS_CEILING,
    AttemptLoop,
    clamp_attempts,
    stuck_feedback,
)
from verisched.errors import AttemptExhausted, WorkerError
from verisched.repair import TransientFaultRepair
from verisched.schemas import (
    HumanResponse,
    OutcomeKind,
    Outcome,
    ProposalDecision,
    Status,
    StuckDecision,
    Unit,
)
from verisched.status import StatusStore

from helpers import (
    RaisingWorker,
    ScriptedHuman,
    ScriptedWorker,
    distinct_proposals,
    skip_human,
)


class CountingStore(StatusStore):
    def __init__(self, unit_ids):
        super().__init__(unit_ids)
        self.writes: list[Status] = []

    def set(self, unit_id, status):
        super().set(unit_id, status)
        self.writes.append(status)


def _loop(worker, human=None, max_attempts=5, repairer=None, store=None):
    unit = Unit(id="lemma", display_name="Lemma")
    store = store or StatusStore([unit.id])
    loop = AttemptLoop(
        unit, store, worker, human or ScriptedHuman(),
        max_attempts=max_attempts, repairer=repairer,
    )
    return loop, store


class TestBudget:
    def test_clamp(self):
        assert clamp_attempts(3) == 3
        assert clamp_attempts(1000) == MAX_ATTEMPTS_CEILING
        assert clamp_attempts(-4) == 0

    def test_always_proposed_ends_stuck_after_budget(self):
        worker = ScriptedWorker(distinct_proposals)
        loop, store = _loop(worker, max_attempts=3)
        result = asyncio.run(loop.run())

        assert result.status == Status.STUCK
        assert result.attempts == 3
        assert len(store.history("lemma")) == 3
        assert isinstance(result.failure, AttemptExhausted)
        assert any("Guardrail" in n for n in result.notices)
        assert store.get("lemma") == Status.STUCK

    def test_excessive_request_is_clamped(self):
        worker = ScriptedWorker(distinct_proposals)
        human = ScriptedHuman()
        loop, _ = _loop(worker, human, max_attempts=1000)
        result = asyncio.run(loop.run())

        assert loop.max_attempts == MAX_ATTEMPTS_CEILING
        assert result.attempts == MAX_ATTEMPTS_CEILING
        assert len(worker.calls) == MAX_ATTEMPTS_CEILING
        assert any("clamped to 25" in n for n in result.notices)
        assert any("clamped" in msg for _, msg in human.notices)

    def test_zero_budget_skips_without_worker(self):
        worker = ScriptedWorker()
        loop, store = _loop(worker, max_attempts=0)
        result = asyncio.run(loop.run())

        assert result.status == Status.SKIPPED
        assert result.attempts == 0
        assert worker.calls == []
        assert store.get("lemma") == Status.SKIPPED

    def test_negative_budget_treated_as_zero(self):
        worker = ScriptedWorker()
        loop, _ = _loop(worker, max_attempts=-2)
        result = asyncio.run(loop.run())
        assert result.status == Status.SKIPPED
        assert worker.calls == []


class TestOutcomes:
    def test_verified_first_try(self):
        loop, store = _loop(ScriptedWorker(Outcome.verified()))
        result = asyncio.run(loop.run())

        assert result.status == Status.VERIFIED
        assert result.attempts == 1
        assert result.failure is None
        assert store.history("lemma")[0].outcome_kind == OutcomeKind.VERIFIED

    def test_stuck_then_skip(self):
        worker = ScriptedWorker(Outcome.stuck("no idea"))
        loop, store = _loop(worker, skip_human())
        result = asyncio.run(loop.run())

        assert result.status == Status.SKIPPED
        assert result.attempts == 1
        assert store.history("lemma")[0].proposal_out == "no idea"
        decision = store.decisions("lemma")[0]
        assert decision.decision == "skip"
        assert decision.attempt_number == 1
        assert result.decisions == [decision]

    def test_proposal_skip(self):
        worker = ScriptedWorker(Outcome.proposed("draft"))
        loop, _ = _loop(worker, skip_human())
        result = asyncio.run(loop.run())
        assert result.status == Status.SKIPPED
        assert result.attempts == 1

    def test_proposal_feedback_is_passed_on(self):
        worker = ScriptedWorker(Outcome.proposed("draft"), Outcome.verified())
        human = ScriptedHuman(proposal=[
            HumanResponse(decision=ProposalDecision.FEEDBACK, text="use induction"),
        ])
        loop, store = _loop(worker, human)
        result = asyncio.run(loop.run())

        assert result.status == Status.VERIFIED
        assert worker.calls == [("lemma", "", 1), ("lemma", "use induction", 2)]
        history = store.history("lemma")
        assert history[1].feedback_in == "use induction"
        decisions = store.decisions("lemma")
        assert [(d.attempt_number, d.decision, d.text) for d in decisions] == [
            (1, "feedback", "use induction"),
        ]

    def test_stuck_hint_becomes_feedback(self):
        worker = ScriptedWorker(Outcome.stuck("stuck here"), Outcome.verified())
        human = ScriptedHuman(stuck=[
            HumanResponse(decision=StuckDecision.HINT, text="try cases"),
        ])
        loop, _ = _loop(worker, human)
        result = asyncio.run(loop.run())

        assert result.status == Status.VERIFIED
        assert worker.calls[1][1] == "[hint] try cases"

    def test_attempt_numbers_match_records(self):
        worker = ScriptedWorker(distinct_proposals)
        loop, _ = _loop(worker, max_attempts=4)
        result = asyncio.run(loop.run())
        assert [c[2] for c in worker.calls] == [1, 2, 3, 4]
        assert [r.attempt_number for r in result.records] == [1, 2, 3, 4]


class TestErrors:
    def test_repeated_proposal_is_build_error(self):
        worker = ScriptedWorker(Outcome.proposed("same"))
        loop, store = _loop(worker)
        result = asyncio.run(loop.run())

        assert result.status == Status.BUILD_ERROR
        assert result.attempts == 2
        assert isinstance(result.failure, WorkerError)
        assert store.get("lemma") == Status.BUILD_ERROR

    def test_error_without_repair(self):
        worker = ScriptedWorker(Outcome.error("syntax error at line 3"))
        loop, _ = _loop(worker, repairer=TransientFaultRepair())
        result = asyncio.run(loop.run())

        assert result.status == Status.BUILD_ERROR
        assert result.attempts == 1
        assert not result.repaired
        assert "syntax error" in str(result.failure)

    def test_transient_error_repaired_once(self):
        worker = ScriptedWorker(Outcome.error("connection reset by peer"), Outcome.verified())
        loop, _ = _loop(worker, repairer=TransientFaultRepair())
        result = asyncio.run(loop.run())

        assert result.status == Status.VERIFIED
        assert result.repaired
        assert result.attempts == 2
        assert worker.calls[1][1].startswith("[repair:transient_fault]")

    def test_second_error_after_repair_is_final(self):
        worker = ScriptedWorker(Outcome.error("Worker command timed out after 5s"))
        loop, _ = _loop(worker, repairer=TransientFaultRepair())
        result = asyncio.run(loop.run())

        assert result.status == Status.BUILD_ERROR
        assert result.attempts == 2
        assert result.repaired

    def test_worker_exception_becomes_error(self):
        loop, store = _loop(RaisingWorker(RuntimeError("boom")))
        result = asyncio.run(loop.run())

        assert result.status == Status.BUILD_ERROR
        assert store.history("lemma")[0].proposal_out == "RuntimeError: boom"


class TestLifecycle:
    def test_terminal_status_written_once(self):
        store = CountingStore(["lemma"])
        worker = ScriptedWorker(distinct_proposals, distinct_proposals, Outcome.verified())
        loop, _ = _loop(worker, store=store)
        asyncio.run(loop.run())
        assert store.writes == [Status.IN_PROGRESS, Status.VERIFIED]

    def test_runs_once(self):
        loop, _ = _loop(ScriptedWorker())
        asyncio.run(loop.run())
        with pytest.raises(RuntimeError):
            asyncio.run(loop.run())

    def test_interrupted_human_releases_unit(self):
        store = StatusStore(["lemma"])
        seen_while_waiting: list[int] = []

        class Vanishing(ScriptedHuman):
            async def after_proposal(self, unit, record):
                seen_while_waiting.append(len(store.history(unit.id)))
                raise EOFError

        worker = ScriptedWorker(Outcome.proposed("draft"))
        loop, _ = _loop(worker, Vanishing(), store=store)
        with pytest.raises(EOFError):
            asyncio.run(loop.run())
        assert seen_while_waiting == [1]
        assert store.get("lemma") == Status.UNSPECIFIED
        history = store.history("lemma")
        assert len(history) == 1
        assert history[0].proposal_out == "draft"
        assert store.decisions("lemma") == ()

    def test_record_visible_before_stuck_decision(self):
        store = StatusStore(["lemma"])
        seen: list[tuple[int, str]] = []

        class Watching(ScriptedHuman):
            async def after_stuck(self, unit, record):
                latest = store.history(unit.id)[-1]
                seen.append((len(store.history(unit.id)), latest.proposal_out))
                return await super().after_stuck(unit, record)

        worker = ScriptedWorker(Outcome.stuck("goal open"), Outcome.verified())
        loop, _ = _loop(worker, Watching(), store=store)
        asyncio.run(loop.run())
        assert seen == [(1, "goal open")]


class TestStuckFeedback:
    def test_formats_decision_and_text(self):
        response = HumanResponse(decision=StuckDecision.SIMPLIFY, text=" drop case 2 ")
        assert stuck_feedback(response) == "[simplify] drop case 2"

    def test_no_text(self):
        assert stuck_feedback(HumanResponse(decision=StuckDecision.RETRY)) == "[retry]"

    def test_proposal_decision_folds_to_hint(self):
        response = HumanResponse(decision=ProposalDecision.FEEDBACK, text="look at b")
        assert stuck_feedback(response) == "[hint] look at b"
