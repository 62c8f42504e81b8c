"""Worker factory: builds the configured worker for a session.

Any object with ``async attempt(unit, feedback, attempt_number) -> Outcome``
is a worker (see verisched.attempt.Worker). The only built-in one runs an
external command per attempt.
"""

from __future__ import annotations

from pathlib import Path

from verisched.attempt import Worker
from verisched.config import RunConfig


def create_worker(config: RunConfig, cwd: str | Path | None = None) -> Worker:
    """Factory: create the worker described by a resolved run config."""
    if not config.worker_command:
        raise ValueError(
            "No worker configured. Set worker_command in verisched.yaml, "
            "e.g. worker_command: [lake, env, lean, \"{unit}.lean\"]"
        )
    from verisched.workers.command import CommandWorker
    return CommandWorker(
        config.worker_command,
        timeout=config.worker_timeout,
        env=config.worker_env,
        cwd=cwd,
    )
