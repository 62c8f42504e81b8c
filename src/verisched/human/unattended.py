"""Unattended human channel for batch runs.

Nobody is watching, so every suspension point resolves to ``skip``: a
unit either verifies outright or is deferred for a supervised session.
Notices go to the log.
"""

from __future__ import annotations

import logging

from verisched.schemas import (
    AttemptRecord,
    HumanResponse,
    ProposalDecision,
    StuckDecision,
    Unit,
)

logger = logging.getLogger(__name__)


class UnattendedHuman:
    def __init__(self) -> None:
        self.deferred: list[str] = []

    async def after_proposal(self, unit: Unit, record: AttemptRecord) -> HumanResponse:
        self.deferred.append(unit.id)
        return HumanResponse(decision=ProposalDecision.SKIP, text="unattended")

    async def after_stuck(self, unit: Unit, record: AttemptRecord) -> HumanResponse:
        self.deferred.append(unit.id)
        return HumanResponse(decision=StuckDecision.SKIP, text="unattended")

    def notify(self, unit_id: str, message: str) -> None:
        logger.info("[%s] %s", unit_id, message)
