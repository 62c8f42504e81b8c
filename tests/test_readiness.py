"""Tests for the ReadinessEngine partition."""

from __future__ import annotations

import random

from verisched.graph import GraphStore
from verisched.readiness import ReadinessEngine
from verisched.schemas import TERMINAL_STATUSES, Status, StatusSnapshot, UnitSpec
from verisched.status import StatusStore

from helpers import make_graph


def _force(store: StatusStore, uid: str, status: Status) -> None:
    """Drive a unit to ``status`` through legal transitions."""
    if status == Status.UNSPECIFIED:
        return
    if status == Status.SKIPPED:
        store.set(uid, Status.SKIPPED)
        return
    store.set(uid, Status.IN_PROGRESS)
    if status != Status.IN_PROGRESS:
        store.set(uid, status)


def _random_dag(rng: random.Random, size: int) -> GraphStore:
    specs = []
    for i in range(size):
        deps = [f"u{j}" for j in range(i) if rng.random() < 0.3]
        specs.append(UnitSpec(id=f"u{i}", dependency_ids=deps))
    return GraphStore.from_specs(specs)


class TestClassify:
    def test_leaves_are_ready(self):
        graph = make_graph({"a": [], "b": ["a"]})
        r = ReadinessEngine(graph, StatusStore.for_graph(graph)).classify()
        assert r.ready == {"a"}
        assert r.blocked == {"b": ["a"]}

    def test_dependent_ready_after_verify(self):
        graph = make_graph({"a": [], "b": ["a"]})
        store = StatusStore.for_graph(graph)
        _force(store, "a", Status.VERIFIED)
        r = ReadinessEngine(graph, store).classify()
        assert r.ready == {"b"}
        assert r.blocked == {}

    def test_non_verified_terminal_still_blocks(self):
        graph = make_graph({"a": [], "b": [], "c": ["a", "b"]})
        store = StatusStore.for_graph(graph)
        _force(store, "a", Status.VERIFIED)
        _force(store, "b", Status.STUCK)
        r = ReadinessEngine(graph, store).classify()
        assert r.blockers_of("c") == ["b"]
        assert not r.is_ready("c")

    def test_terminal_units_excluded(self):
        graph = make_graph({"a": [], "b": []})
        store = StatusStore.for_graph(graph)
        _force(store, "a", Status.SKIPPED)
        r = ReadinessEngine(graph, store).classify()
        assert r.pending == {"b"}

    def test_partition_over_random_graphs(self):
        rng = random.Random(7)
        statuses = list(Status)
        for _ in range(25):
            graph = _random_dag(rng, rng.randint(1, 12))
            store = StatusStore.for_graph(graph)
            for uid in graph.ids():
                _force(store, uid, rng.choice(statuses))

            r = ReadinessEngine(graph, store).classify()
            non_terminal = {
                uid for uid in graph.ids() if store.get(uid) not in TERMINAL_STATUSES
            }
            assert not (r.ready & set(r.blocked))
            assert r.pending == non_terminal
            for uid, blockers in r.blocked.items():
                assert blockers
                assert all(store.get(b) != Status.VERIFIED for b in blockers)

    def test_idempotent(self):
        graph = make_graph({"a": [], "b": ["a"], "c": ["b"]})
        store = StatusStore.for_graph(graph)
        _force(store, "a", Status.VERIFIED)
        engine = ReadinessEngine(graph, store)
        assert engine.classify() == engine.classify()

    def test_same_after_snapshot_roundtrip(self):
        graph = make_graph({"a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"]})
        store = StatusStore.for_graph(graph)
        _force(store, "a", Status.VERIFIED)
        _force(store, "b", Status.BUILD_ERROR)

        raw = store.to_snapshot().model_dump_json()
        restored = StatusStore.from_snapshot(graph, StatusSnapshot.model_validate_json(raw))

        before = ReadinessEngine(graph, store).classify()
        after = ReadinessEngine(graph, restored).classify()
        assert before == after
