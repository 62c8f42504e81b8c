"""Project directory lifecycle: init, load, save, resume.

A session is one graph snapshot plus one StatusStore. The graph is never
persisted; it is rebuilt from a fresh parse of the inventory on every
load and prior status is merged back in by unit id.

  proj/
  ├── units.yaml            (inventory, parser output)
  ├── verisched.yaml        (project config)
  └── .verisched/
      ├── session.json      (StatusStore snapshot)
      └── audit.jsonl       (append-only audit log)
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path

import yaml

from verisched.attempt import LoopResult
from verisched.config import PROJECT_CONFIG_FILE, ProjectConfig, load_project_config
from verisched.graph import GraphStore
from verisched.inventory import build_graph
from verisched.schemas import StatusSnapshot
from verisched.status import StatusStore

logger = logging.getLogger(__name__)

STATE_DIR = ".verisched"
SESSION_FILE = "session.json"
AUDIT_FILE = "audit.jsonl"
DEFAULT_INVENTORY = "units.yaml"


class SessionManager:
    """Manages the on-disk side of a scheduling session."""

    def __init__(self, project_dir: str | Path, inventory_file: str = "") -> None:
        self.project_dir = Path(project_dir).resolve()
        self._state_dir = self.project_dir / STATE_DIR
        self._inventory_file = inventory_file

    # ── Paths ──────────────────────────────────────────────────────

    @property
    def config_path(self) -> Path:
        return self.project_dir / PROJECT_CONFIG_FILE

    @property
    def inventory_path(self) -> Path:
        name = self._inventory_file or self.load_config().inventory_file or DEFAULT_INVENTORY
        return self.project_dir / name

    @property
    def session_path(self) -> Path:
        return self._state_dir / SESSION_FILE

    @property
    def audit_path(self) -> Path:
        return self._state_dir / AUDIT_FILE

    # ── Init ───────────────────────────────────────────────────────

    def init(self, worker_command: str = "") -> None:
        """Scaffold a project directory. Existing files are left alone."""
        self.project_dir.mkdir(parents=True, exist_ok=True)
        self._state_dir.mkdir(exist_ok=True)

        if not self.inventory_path.exists():
            self.inventory_path.write_text(
                "# Unit inventory: one entry per piece of verifiable work.\n"
                "# Scores are 1-5 and optional.\n"
                "units:\n"
                "  - id: example_leaf\n"
                "    name: Example leaf unit\n"
                "    complexity: 1\n"
                "    risk: 1\n"
                "  - id: example_dependent\n"
                "    name: Example dependent unit\n"
                "    depends_on: [example_leaf]\n"
            )

        if not self.config_path.exists():
            config = {
                "max_attempts": 5,
                "repair": True,
                "worker_command": worker_command or "",
                "worker_timeout": 600,
            }
            with open(self.config_path, "w") as f:
                yaml.dump(config, f, default_flow_style=False, sort_keys=False)

        logger.info("Initialized project: %s", self.project_dir)

    def load_config(self) -> ProjectConfig:
        return load_project_config(self.project_dir)

    # ── Graph & status ─────────────────────────────────────────────

    def load_graph(self) -> GraphStore:
        """Parse the inventory into a validated, frozen graph."""
        return build_graph(self.inventory_path)

    def has_state(self) -> bool:
        return self.session_path.exists()

    def load_snapshot(self) -> StatusSnapshot | None:
        if not self.session_path.exists():
            return None
        return StatusSnapshot.model_validate_json(self.session_path.read_text())

    def load_status(self, graph: GraphStore) -> StatusStore:
        """StatusStore for ``graph``, merged with any saved session."""
        snapshot = self.load_snapshot()
        if snapshot is None:
            return StatusStore.for_graph(graph)
        return StatusStore.from_snapshot(graph, snapshot)

    def save_status(self, store: StatusStore) -> None:
        self._state_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.session_path.with_suffix(".json.tmp")
        tmp.write_text(store.to_snapshot().model_dump_json(indent=2))
        tmp.replace(self.session_path)

    def clear_state(self) -> None:
        """Remove all session state. Preserves inventory and config."""
        if self._state_dir.exists():
            shutil.rmtree(self._state_dir)
        self._state_dir.mkdir(parents=True, exist_ok=True)

    # ── Audit ──────────────────────────────────────────────────────

    def append_audit(self, action: str, detail: str = "", **kwargs: str) -> None:
        self._state_dir.mkdir(parents=True, exist_ok=True)
        entry = {
            "timestamp": datetime.now().isoformat(),
            "action": action,
            "detail": detail,
            **kwargs,
        }
        with open(self.audit_path, "a") as f:
            f.write(json.dumps(entry) + "\n")

    def load_audit(self) -> list[dict]:
        if not self.audit_path.exists():
            return []
        entries = []
        with open(self.audit_path) as f:
            for line in f:
                line = line.strip()
                if line:
                    entries.append(json.loads(line))
        return entries

    def record_result(self, result: LoopResult, store: StatusStore) -> None:
        """Persist after one unit reaches a terminal state."""
        self.save_status(store)
        self.append_audit(
            "attempt_loop",
            f"{result.unit_id}: {result.status.value} after {result.attempts} attempt(s)",
            unit_id=result.unit_id,
            status=result.status.value,
            failure=str(result.failure) if result.failure else "",
        )
