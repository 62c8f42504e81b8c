"""Console human channel: asks the supervising human on stdin.

Every suspension point offers a fixed set of decisions. Free text is only
ever collected as the payload that follows a decision; it never selects
the control flow.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from enum import StrEnum

from verisched.schemas import (
    AttemptRecord,
    HumanResponse,
    ProposalDecision,
    StuckDecision,
    Unit,
)

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 2000

# Decisions that are followed by a free-text payload, and its prompt.
_PAYLOAD_PROMPTS = {
    "feedback": "Feedback for the next attempt: ",
    "hint": "Hint: ",
    "retry": "Note for the retry (optional): ",
    "simplify": "How should it be simplified? ",
}


def match_choice(answer: str, options: type[StrEnum]) -> StrEnum | None:
    """Resolve an answer to one option: exact value or unique prefix."""
    answer = answer.strip().lower()
    if not answer:
        return None
    values = [o for o in options]
    for option in values:
        if option.value == answer:
            return option
    prefixed = [o for o in values if o.value.startswith(answer)]
    return prefixed[0] if len(prefixed) == 1 else None


def _preview(text: str) -> str:
    if len(text) <= PREVIEW_CHARS:
        return text
    return text[:PREVIEW_CHARS] + f"\n... ({len(text) - PREVIEW_CHARS} more chars)"


class ConsoleHuman:
    """Blocking stdin prompts, run off the event loop thread.

    Each prompt reads on its own daemon thread rather than the default
    executor: when the waiting task is cancelled (Ctrl-C), the event loop
    can shut down while the abandoned read is still blocked in input().
    """

    def __init__(
        self,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ) -> None:
        self._input = input_fn
        self._output = output_fn

    async def _ask(self, prompt: str) -> str:
        loop = asyncio.get_running_loop()
        answer: asyncio.Future[str] = loop.create_future()

        def _deliver(value: str | None, error: BaseException | None) -> None:
            if answer.done():
                return
            if error is not None:
                answer.set_exception(error)
            else:
                answer.set_result(value or "")

        def _read() -> None:
            try:
                value, error = self._input(prompt), None
            except BaseException as e:
                value, error = None, e
            try:
                loop.call_soon_threadsafe(_deliver, value, error)
            except RuntimeError:
                # Loop already closed; nobody is waiting for this answer.
                logger.debug("Discarding console input read after shutdown")

        threading.Thread(target=_read, name="console-input", daemon=True).start()
        return await answer

    async def _choose(self, options: type[StrEnum]) -> StrEnum:
        labels = "/".join(o.value for o in options)
        while True:
            answer = await self._ask(f"Decision [{labels}]: ")
            choice = match_choice(answer, options)
            if choice is not None:
                return choice
            self._output(f"  '{answer.strip()}' is not one of: {labels}")

    async def _respond(self, options: type[StrEnum]) -> HumanResponse:
        decision = await self._choose(options)
        text = ""
        if decision.value in _PAYLOAD_PROMPTS:
            text = (await self._ask(_PAYLOAD_PROMPTS[decision.value])).strip()
        logger.debug("Human chose %s (%d chars of text)", decision.value, len(text))
        return HumanResponse(decision=decision, text=text)

    async def after_proposal(self, unit: Unit, record: AttemptRecord) -> HumanResponse:
        self._output(f"\n── {unit.label} ({unit.id}) · attempt {record.attempt_number}: proposal ──")
        self._output(_preview(record.proposal_out) or "(empty proposal)")
        return await self._respond(ProposalDecision)

    async def after_stuck(self, unit: Unit, record: AttemptRecord) -> HumanResponse:
        self._output(f"\n── {unit.label} ({unit.id}) · attempt {record.attempt_number}: stuck ──")
        self._output(_preview(record.proposal_out) or "(no report)")
        return await self._respond(StuckDecision)

    def notify(self, unit_id: str, message: str) -> None:
        self._output(f"[{unit_id}] {message}")
