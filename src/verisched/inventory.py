"""Unit inventory loader: the file-based side of the parser contract.

An inventory is a YAML (or JSON) document listing units:

    units:
      - id: level_mem_iff
        name: "level_mem_iff"
        depends_on: [levelSet]
        complexity: 2
        risk: 1

A bare top-level list is accepted too. Aliases: ``name`` for
``display_name``, ``depends_on`` for ``dependency_ids``, and the short
score names ``complexity`` / ``leverage`` / ``risk``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from verisched.errors import MalformedGraph
from verisched.graph import GraphStore
from verisched.schemas import UnitSpec

logger = logging.getLogger(__name__)

_ALIASES = {
    "name": "display_name",
    "depends_on": "dependency_ids",
    "dependencies": "dependency_ids",
    "complexity": "complexity_score",
    "leverage": "leverage_score",
    "risk": "risk_score",
}


def _normalize(entry: dict[str, Any]) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for key, value in entry.items():
        data[_ALIASES.get(key, key)] = value
    deps = data.get("dependency_ids")
    if deps is None:
        data["dependency_ids"] = []
    elif isinstance(deps, str):
        data["dependency_ids"] = [deps]
    return data


def parse_inventory(raw: Any) -> list[UnitSpec]:
    """Turn a decoded inventory document into UnitSpecs.

    Raises MalformedGraph naming the offending entry on any shape error.
    """
    if raw is None:
        return []
    entries = raw.get("units", []) if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise MalformedGraph("Inventory must be a list of units or a mapping with a 'units' list")

    specs: list[UnitSpec] = []
    for index, entry in enumerate(entries):
        if isinstance(entry, str):
            entry = {"id": entry}
        if not isinstance(entry, dict):
            raise MalformedGraph(f"Inventory entry #{index} is not a mapping: {entry!r}")
        try:
            specs.append(UnitSpec.model_validate(_normalize(entry)))
        except ValidationError as e:
            label = entry.get("id", f"#{index}")
            raise MalformedGraph(f"Invalid inventory entry {label}: {e}") from e
    return specs


def load_inventory(path: str | Path) -> list[UnitSpec]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Inventory not found: {path}")
    with open(path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise MalformedGraph(f"Cannot parse inventory {path}: {e}") from e
    specs = parse_inventory(raw)
    logger.debug("Loaded %d unit(s) from %s", len(specs), path)
    return specs


def build_graph(path: str | Path) -> GraphStore:
    """Load, validate and freeze the graph described by an inventory file."""
    return GraphStore.from_specs(load_inventory(path))
