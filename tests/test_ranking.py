"""Tests for RankingEngine ordering."""

from __future__ import annotations

import itertools

import pytest

from verisched.errors import UnknownUnit
from verisched.ranking import RankingEngine

from helpers import make_graph


class TestRank:
    def test_leverage_first(self):
        graph = make_graph({"a": [], "b": [], "x": ["b"], "y": ["b"], "z": ["a"]})
        ranked = RankingEngine(graph).rank({"a", "b"})
        assert [r.unit_id for r in ranked] == ["b", "a"]
        assert ranked[0].leverage == 2
        assert ranked[0].position == 1

    def test_risk_then_complexity(self):
        graph = make_graph(
            {"a": [], "b": [], "c": []},
            scores={"a": (4, 1), "b": (2, 5), "c": (2, 3)},
        )
        ranked = RankingEngine(graph).rank({"a", "b", "c"})
        assert [r.unit_id for r in ranked] == ["c", "b", "a"]

    def test_id_breaks_ties(self):
        graph = make_graph({"beta": [], "alpha": [], "gamma": []})
        ranked = RankingEngine(graph).rank(["gamma", "beta", "alpha"])
        assert [r.unit_id for r in ranked] == ["alpha", "beta", "gamma"]

    def test_deterministic_over_calls_and_input_order(self):
        graph = make_graph(
            {"p": [], "q": [], "r": [], "s": ["p"], "t": ["q"]},
            scores={"p": (3, 3), "q": (3, 3), "r": (1, 5)},
        )
        engine = RankingEngine(graph)
        expected = [r.unit_id for r in engine.rank(["p", "q", "r"])]
        assert expected == ["p", "q", "r"]
        for perm in itertools.permutations(["p", "q", "r"]):
            for _ in range(3):
                assert [r.unit_id for r in engine.rank(perm)] == expected

    def test_leverage_counts_direct_dependents(self):
        graph = make_graph({"a": [], "b": ["a"], "c": ["b"]})
        assert RankingEngine(graph).leverage() == {"a": 1, "b": 1, "c": 0}

    def test_empty(self):
        graph = make_graph({"a": []})
        assert RankingEngine(graph).rank([]) == []

    def test_unknown_unit(self):
        graph = make_graph({"a": []})
        with pytest.raises(UnknownUnit):
            RankingEngine(graph).rank(["a", "ghost"])
