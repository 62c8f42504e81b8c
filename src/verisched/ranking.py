"""RankingEngine: total order over ready units.

Sort key, in priority:
  1. leverage descending   (unlocks more dependents first)
  2. risk ascending        (safest first)
  3. complexity ascending  (cheapest first)
  4. id ascending          (determinism)

Leverage is the number of other units that list a unit as a dependency.
It is recomputed from the graph on every call, never stored on the unit.
"""

from __future__ import annotations

from collections.abc import Iterable

from verisched.errors import UnknownUnit
from verisched.graph import GraphStore
from verisched.schemas import RankedUnit


class RankingEngine:
    def __init__(self, graph: GraphStore) -> None:
        self.graph = graph

    def leverage(self) -> dict[str, int]:
        return {uid: len(deps) for uid, deps in self.graph.dependents_map().items()}

    def rank(self, ready_ids: Iterable[str]) -> list[RankedUnit]:
        leverage = self.leverage()
        keyed = []
        for uid in set(ready_ids):
            if uid not in self.graph:
                raise UnknownUnit(uid)
            unit = self.graph.get(uid)
            keyed.append((
                -leverage[uid], unit.risk_score, unit.complexity_score, uid,
            ))
        keyed.sort()

        return [
            RankedUnit(
                unit_id=uid,
                position=i,
                leverage=-neg_leverage,
                risk=risk,
                complexity=complexity,
            )
            for i, (neg_leverage, risk, complexity, uid) in enumerate(keyed, start=1)
        ]
