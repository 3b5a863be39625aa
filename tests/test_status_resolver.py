"""
pytest suite for status resolution.

All graphs are small hand-built DAGs; no I/O.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from cognimap.dag_validator import build_graph
from cognimap.models import ACTIVE, AVAILABLE, COMPLETED, LOCKED
from cognimap.status_resolver import apply_statuses, resolve_statuses, resolve_unit


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture()
def diamond():
    """Diamond: 1 -> {2, 3} -> 4."""
    return build_graph([
        {"id": "1", "title": "Basics", "dependencies": []},
        {"id": "2", "title": "Left", "dependencies": ["1"]},
        {"id": "3", "title": "Right", "dependencies": ["1"]},
        {"id": "4", "title": "Join", "dependencies": ["2", "3"]},
    ])


# =========================================================================
# Test: Resolution rules
# =========================================================================


class TestResolveStatuses:
    """Tests for the pure resolver."""

    def test_initial_statuses(self, diamond):
        """Empty completed-set: only the root unit is available."""
        assert resolve_statuses(diamond, set()) == {
            "1": AVAILABLE, "2": LOCKED, "3": LOCKED, "4": LOCKED,
        }

    def test_partial_dependencies_stay_locked(self, diamond):
        """A unit with one of two dependencies met is still locked."""
        statuses = resolve_statuses(diamond, {"1", "2"})
        assert statuses["4"] == LOCKED
        assert statuses["3"] == AVAILABLE

    def test_all_dependencies_met(self, diamond):
        statuses = resolve_statuses(diamond, {"1", "2", "3"})
        assert statuses["4"] == AVAILABLE

    def test_deterministic(self, diamond):
        """Same graph and completed-set → identical results."""
        completed = {"1", "3"}
        assert resolve_statuses(diamond, completed) == resolve_statuses(diamond, completed)

    def test_every_unit_resolved_in_order(self, diamond):
        statuses = resolve_statuses(diamond, {"1"})
        assert list(statuses) == ["1", "2", "3", "4"]

    def test_zero_dependency_units(self):
        """Units with no dependencies are available unless completed."""
        graph = build_graph([
            {"id": "a", "title": "A"},
            {"id": "b", "title": "B"},
        ])
        assert resolve_statuses(graph, set()) == {"a": AVAILABLE, "b": AVAILABLE}
        assert resolve_statuses(graph, {"b"}) == {"a": AVAILABLE, "b": COMPLETED}

    def test_unknown_completed_ids_ignored(self, diamond):
        statuses = resolve_statuses(diamond, {"zzz"})
        assert statuses["1"] == AVAILABLE

    def test_resolve_unit_matches_bulk(self, diamond):
        completed = {"1", "2"}
        bulk = resolve_statuses(diamond, completed)
        for unit_id, unit in diamond.nodes.items():
            assert resolve_unit(unit, completed) == bulk[unit_id]


# =========================================================================
# Test: Active overlay
# =========================================================================


class TestActiveOverlay:
    """``ACTIVE`` is caller-assigned and never hides completion."""

    def test_active_overrides_available(self, diamond):
        statuses = resolve_statuses(diamond, {"1"}, active_id="2")
        assert statuses["2"] == ACTIVE
        assert statuses["3"] == AVAILABLE

    def test_active_never_replaces_completed(self, diamond):
        statuses = resolve_statuses(diamond, {"1"}, active_id="1")
        assert statuses["1"] == COMPLETED

    def test_unknown_active_id_is_ignored(self, diamond):
        assert ACTIVE not in resolve_statuses(diamond, set(), active_id="nope").values()


# =========================================================================
# Test: apply_statuses
# =========================================================================


class TestApplyStatuses:
    """Tests for writing resolved statuses onto a graph copy."""

    def test_returns_copy(self, diamond):
        resolved = apply_statuses(diamond, {"1"})
        assert resolved.nodes["1"].status == COMPLETED
        assert diamond.nodes["1"].status == AVAILABLE

    def test_overwrites_drifted_status(self, diamond):
        """A manually set status is corrected on the next resolution."""
        diamond.nodes["4"].status = AVAILABLE
        resolved = apply_statuses(diamond, set())
        assert resolved.nodes["4"].status == LOCKED

    def test_nested_sub_graph_resolved(self, diamond):
        sub = build_graph([
            {"id": "1-sub-a", "title": "A"},
            {"id": "1-sub-b", "title": "B", "dependencies": ["1-sub-a"]},
        ])
        diamond.nodes["1"].sub_graph = sub
        resolved = apply_statuses(diamond, {"1-sub-a"})
        nested = resolved.nodes["1"].sub_graph
        assert nested.nodes["1-sub-a"].status == COMPLETED
        assert nested.nodes["1-sub-b"].status == AVAILABLE
