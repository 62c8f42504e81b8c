"""CommandWorker: one attempt = one run of an external command.

The command template is expanded per unit ({unit} → unit id, {name} →
display name). Attempt context travels in the environment:

  VERISCHED_UNIT       unit id
  VERISCHED_ATTEMPT    attempt number (1-based)
  VERISCHED_FEEDBACK   feedback from the previous round (may be empty)

Outcome selection, first match wins:
  1. last stdout line is a JSON object with an "outcome" key
     ({"outcome": "proposed", "content": ...} / "verified" / "stuck" / "error")
  2. exit code 0 → verified, anything else → stuck with stderr as the report
  3. timeout or launch failure → error
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from verisched.schemas import Outcome, OutcomeKind, Unit

logger = logging.getLogger(__name__)

MAX_REPORT_CHARS = 4000


def _tail(text: str, limit: int = MAX_REPORT_CHARS) -> str:
    text = text.strip()
    return text if len(text) <= limit else "..." + text[-limit:]


def parse_outcome_line(stdout: str) -> Outcome | None:
    """Read an explicit outcome from the last non-empty stdout line."""
    lines = [line for line in stdout.splitlines() if line.strip()]
    if not lines:
        return None
    try:
        data = json.loads(lines[-1])
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or "outcome" not in data:
        return None
    try:
        kind = OutcomeKind(str(data["outcome"]).lower())
    except ValueError:
        return Outcome.error(f"Unknown outcome {data['outcome']!r} in worker output")
    return Outcome(
        kind=kind,
        content=str(data.get("content", "")),
        report=str(data.get("report", "")),
    )


class CommandWorker:
    """Runs a command template per attempt; no state is kept between calls."""

    def __init__(
        self,
        command: list[str],
        timeout: int = 600,
        env: dict[str, str] | None = None,
        cwd: str | Path | None = None,
    ) -> None:
        if not command:
            raise ValueError("CommandWorker needs a non-empty command")
        self.command = list(command)
        self.timeout = timeout
        self.env = dict(env or {})
        self.cwd = Path(cwd) if cwd else None

    def build_command(self, unit: Unit) -> list[str]:
        return [
            part.replace("{unit}", unit.id).replace("{name}", unit.label)
            for part in self.command
        ]

    def build_env(self, unit: Unit, feedback: str, attempt_number: int) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.env)
        env["VERISCHED_UNIT"] = unit.id
        env["VERISCHED_ATTEMPT"] = str(attempt_number)
        env["VERISCHED_FEEDBACK"] = feedback
        return env

    async def attempt(self, unit: Unit, feedback: str, attempt_number: int) -> Outcome:
        cmd = self.build_command(unit)
        logger.debug("%s: running %s", unit.id, " ".join(cmd))

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_env(unit, feedback, attempt_number),
                cwd=str(self.cwd) if self.cwd else None,
            )
        except OSError as e:
            return Outcome.error(f"Could not start {cmd[0]}: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return Outcome.error(f"Worker command timed out after {self.timeout}s")

        stdout_text = stdout.decode(errors="replace")
        stderr_text = stderr.decode(errors="replace")

        explicit = parse_outcome_line(stdout_text)
        if explicit is not None:
            return explicit

        if proc.returncode == 0:
            return Outcome.verified()
        report = _tail(stderr_text or stdout_text) or f"exit code {proc.returncode}"
        return Outcome.stuck(report)
