"""
pytest suite for graph construction, invariant checks and metrics.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from cognimap.dag_validator import (
    build_graph,
    compute_metrics,
    is_valid,
    validate_graph,
)
from cognimap.exceptions import StructuralViolation
from cognimap.models import LearningGraph, LearningUnit


def _unit(uid, *deps):
    return {"id": uid, "title": f"Unit {uid}", "dependencies": list(deps)}


# =========================================================================
# Test: build_graph
# =========================================================================


class TestBuildGraph:
    """Tests for assembling a graph from generator output."""

    def test_links_materialised_from_dependencies(self):
        graph = build_graph([_unit("1"), _unit("2", "1"), _unit("3", "1", "2")])
        pairs = {(l.source, l.target) for l in graph.links}
        assert pairs == {("1", "2"), ("1", "3"), ("2", "3")}

    def test_insertion_order_preserved(self):
        graph = build_graph([_unit("b"), _unit("a"), _unit("c", "a")])
        assert list(graph.nodes) == ["b", "a", "c"]

    def test_edges_folded_into_dependencies(self):
        """An edge not mirrored in dependencies becomes one."""
        graph = build_graph(
            [_unit("1"), _unit("2")],
            edges=[{"source": "1", "target": "2"}],
        )
        assert graph.nodes["2"].dependencies == ["1"]
        assert len(graph.links) == 1

    def test_duplicate_dependencies_collapsed(self):
        graph = build_graph([_unit("1"), _unit("2", "1", "1")])
        assert graph.nodes["2"].dependencies == ["1"]
        assert len(graph.links) == 1

    def test_glossary_kept(self):
        graph = build_graph(
            [_unit("1")], glossary=[{"term": "DAG", "definition": "No cycles."}]
        )
        assert graph.glossary[0].term == "DAG"

    def test_duplicate_id_rejected(self):
        with pytest.raises(StructuralViolation) as exc:
            build_graph([_unit("1"), _unit("1")])
        assert exc.value.invariant == "id_uniqueness"

    def test_dangling_dependency_rejected(self):
        with pytest.raises(StructuralViolation) as exc:
            build_graph([_unit("1"), _unit("2", "99")])
        assert exc.value.invariant == "referential_closure"
        assert "99" in str(exc.value)

    def test_edge_to_unknown_target_rejected(self):
        with pytest.raises(StructuralViolation) as exc:
            build_graph([_unit("1")], edges=[{"source": "1", "target": "2"}])
        assert exc.value.invariant == "referential_closure"

    def test_cycle_rejected(self):
        with pytest.raises(StructuralViolation) as exc:
            build_graph([_unit("1", "3"), _unit("2", "1"), _unit("3", "2")])
        assert exc.value.invariant == "acyclicity"

    def test_self_dependency_rejected(self):
        with pytest.raises(StructuralViolation) as exc:
            build_graph([_unit("1", "1")])
        assert exc.value.invariant == "acyclicity"

    def test_statuses_resolved_against_completed(self):
        graph = build_graph([_unit("1"), _unit("2", "1")], completed={"1"})
        assert graph.nodes["1"].status == "COMPLETED"
        assert graph.nodes["2"].status == "AVAILABLE"


# =========================================================================
# Test: validate_graph
# =========================================================================


class TestValidateGraph:
    """Tests for invariant checks on existing graphs."""

    def test_key_must_match_unit_id(self):
        graph = LearningGraph(nodes={"1": LearningUnit(id="2", title="x")})
        with pytest.raises(StructuralViolation):
            validate_graph(graph)

    def test_nested_graph_may_not_reuse_ancestor_ids(self):
        root = build_graph([_unit("1"), _unit("2", "1")])
        root.nodes["1"].sub_graph = build_graph([_unit("2")])
        with pytest.raises(StructuralViolation) as exc:
            validate_graph(root)
        assert exc.value.invariant == "id_uniqueness"

    def test_nested_graph_may_not_depend_on_ancestor(self):
        root = build_graph([_unit("1")])
        root.nodes["1"].sub_graph = LearningGraph(
            nodes={"s1": LearningUnit(id="s1", title="s", dependencies=["1"])}
        )
        with pytest.raises(StructuralViolation) as exc:
            validate_graph(root)
        assert exc.value.invariant == "referential_closure"

    def test_is_valid(self):
        good = build_graph([_unit("1"), _unit("2", "1")])
        assert is_valid(good) is True
        good.nodes["1"].dependencies.append("2")
        assert is_valid(good) is False


# =========================================================================
# Test: Metrics
# =========================================================================


class TestMetrics:
    """Tests for graph metric computation."""

    def test_metrics_basic(self):
        graph = build_graph([_unit("1"), _unit("2", "1"), _unit("3", "2"), _unit("4")])
        m = compute_metrics(graph)
        assert m["total_units"] == 4
        assert m["total_edges"] == 2
        assert m["max_depth"] == 2
        assert m["root_units"] == ["1", "4"]
        assert m["leaf_units"] == ["3", "4"]
        assert m["nested_graphs"] == 0

    def test_metrics_empty(self):
        m = compute_metrics(build_graph([]))
        assert m["total_units"] == 0
        assert m["max_depth"] == 0
