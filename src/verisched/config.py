"""Configuration: GlobalConfig + ProjectConfig.

GlobalConfig: defaults from config.yaml.
ProjectConfig: per-project overrides from verisched.yaml (None = use global).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from verisched.attempt import DEFAULT_MAX_ATTEMPTS

PROJECT_CONFIG_FILE = "verisched.yaml"
GLOBAL_CONFIG_ENV = "VERISCHED_CONFIG"


@dataclass
class GlobalConfig:
    """Global verisched configuration."""
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    concurrent: bool = False
    max_concurrent: int = 4
    repair: bool = True

    # Worker: command template run once per attempt; {unit} is the unit id.
    worker_command: list[str] = field(default_factory=list)
    worker_timeout: int = 600

    inventory_file: str = "units.yaml"


@dataclass
class ProjectConfig:
    """Per-project configuration from verisched.yaml."""
    max_attempts: int | None = None
    concurrent: bool | None = None
    max_concurrent: int | None = None
    repair: bool | None = None
    worker_command: list[str] = field(default_factory=list)
    worker_timeout: int | None = None
    inventory_file: str = ""
    worker_env: dict[str, str] = field(default_factory=dict)


def _command(raw: object) -> list[str]:
    """Accept a command as a list or a whitespace-separated string."""
    if not raw:
        return []
    if isinstance(raw, str):
        return raw.split()
    return [str(part) for part in raw]


def load_global_config(config_path: str | Path | None = None) -> GlobalConfig:
    """Load global config from config.yaml (or $VERISCHED_CONFIG)."""
    if config_path is None:
        config_path = os.environ.get(GLOBAL_CONFIG_ENV) or (
            Path.home() / ".config" / "verisched" / "config.yaml"
        )

    config_path = Path(config_path)
    if not config_path.exists():
        return GlobalConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    return GlobalConfig(
        max_attempts=raw.get("max_attempts", GlobalConfig.max_attempts),
        concurrent=raw.get("concurrent", False),
        max_concurrent=raw.get("max_concurrent", 4),
        repair=raw.get("repair", True),
        worker_command=_command(raw.get("worker_command")),
        worker_timeout=raw.get("worker_timeout", GlobalConfig.worker_timeout),
        inventory_file=raw.get("inventory_file", GlobalConfig.inventory_file),
    )


def load_project_config(project_dir: str | Path) -> ProjectConfig:
    """Load per-project config from verisched.yaml."""
    config_path = Path(project_dir) / PROJECT_CONFIG_FILE

    if not config_path.exists():
        return ProjectConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    return ProjectConfig(
        max_attempts=raw.get("max_attempts"),
        concurrent=raw.get("concurrent"),
        max_concurrent=raw.get("max_concurrent"),
        repair=raw.get("repair"),
        worker_command=_command(raw.get("worker_command")),
        worker_timeout=raw.get("worker_timeout"),
        inventory_file=raw.get("inventory_file", ""),
        worker_env={str(k): str(v) for k, v in (raw.get("worker_env") or {}).items()},
    )


@dataclass
class RunConfig:
    """Resolved settings for one scheduling session."""
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    concurrent: bool = False
    max_concurrent: int = 4
    repair: bool = True
    worker_command: list[str] = field(default_factory=list)
    worker_timeout: int = 600
    worker_env: dict[str, str] = field(default_factory=dict)
    inventory_file: str = "units.yaml"


def resolve_run_config(
    project: ProjectConfig,
    global_cfg: GlobalConfig,
    max_attempts: int | None = None,
) -> RunConfig:
    """Resolve settings: CLI override > project > global default.

    The attempt budget is passed through as requested; AttemptLoop clamps
    it and tells the human when it does.
    """
    attempts = max_attempts
    if attempts is None:
        attempts = project.max_attempts if project.max_attempts is not None else global_cfg.max_attempts

    return RunConfig(
        max_attempts=attempts,
        concurrent=project.concurrent if project.concurrent is not None
            else global_cfg.concurrent,
        max_concurrent=project.max_concurrent if project.max_concurrent is not None
            else global_cfg.max_concurrent,
        repair=project.repair if project.repair is not None else global_cfg.repair,
        worker_command=project.worker_command or global_cfg.worker_command,
        worker_timeout=project.worker_timeout if project.worker_timeout is not None
            else global_cfg.worker_timeout,
        worker_env=dict(project.worker_env),
        inventory_file=project.inventory_file or global_cfg.inventory_file,
    )
