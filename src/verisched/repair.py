"""Deterministic local repair for worker errors.

The attempt loop tries at most one repair per run. A repairer either
recognises the error report as a member of the fixable class it names
and returns a note to feed into the next attempt, or returns None.
"""

from __future__ import annotations

import re
from typing import Protocol

from verisched.schemas import Unit


class Repairer(Protocol):
    name: str

    def repair(self, unit: Unit, report: str) -> str | None:
        """Return a feedback note if the error was repaired, else None."""
        ...


class NoRepair:
    """Never repairs; every worker error is final."""
    name = "none"

    def repair(self, unit: Unit, report: str) -> str | None:
        return None


# Transient tool faults: the same command is expected to succeed on a
# clean rerun. Anything else (syntax errors, missing files) is permanent.
TRANSIENT_PATTERNS: tuple[str, ...] = (
    r"timed? ?out",
    r"connection (reset|refused|aborted)",
    r"resource temporarily unavailable",
    r"temporary failure",
    r"could not acquire (the )?lock",
    r"lock(file)? .*(held|busy|exists)",
    r"broken pipe",
    r"killed by signal",
)

_TRANSIENT_RE = re.compile("|".join(TRANSIENT_PATTERNS), re.IGNORECASE)


class TransientFaultRepair:
    """Repairs the "transient tool fault" class by requesting a clean rerun."""
    name = "transient_fault"

    def repair(self, unit: Unit, report: str) -> str | None:
        match = _TRANSIENT_RE.search(report)
        if not match:
            return None
        return f"[repair:{self.name}] previous run hit a transient fault ({match.group(0)}); rerunning clean"


def make_repairer(enabled: bool) -> Repairer:
    return TransientFaultRepair() if enabled else NoRepair()
