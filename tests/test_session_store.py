"""
pytest suite for session repositories (in-memory and SQLite).

SQLite files live in ``tmp_path``.
"""

import json
import os
import sys
from datetime import timedelta

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from cognimap.dag_validator import build_graph
from cognimap.exceptions import StructuralViolation
from cognimap.models import AVAILABLE, COMPLETED, LOCKED, Session, UserContext
from cognimap.session_store import (
    InMemorySessionRepository,
    SQLiteSessionRepository,
    dump_session,
    get_connection,
    load_session,
)
from cognimap.subgraph import resync


def _session(session_id="s-1", completed=()):
    graph = build_graph([
        {"id": "1", "title": "Intro"},
        {"id": "2", "title": "Next", "dependencies": ["1"]},
    ])
    session = Session(
        id=session_id,
        context=UserContext(learning_goal="Go", existing_knowledge="Python"),
        root_graph=graph,
        completed_unit_ids=list(completed),
    )
    return resync(session)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionRepository()
    return SQLiteSessionRepository(str(tmp_path / "sessions.db"))


# =========================================================================
# Test: Serialisation
# =========================================================================


class TestSerialisation:
    """Tests for the persisted layout."""

    def test_camel_case_layout(self):
        data = json.loads(dump_session(_session(completed=["1"])))
        assert data["id"] == "s-1"
        assert data["completedUnitIds"] == ["1"]
        assert data["currentSubGraphId"] is None
        assert "rootGraph" in data
        assert data["context"]["learningGoal"] == "Go"

    def test_reload_rederives_status(self):
        """A tampered status field is ignored on load."""
        data = json.loads(dump_session(_session()))
        data["rootGraph"]["nodes"]["2"]["status"] = AVAILABLE
        data["rootGraph"]["nodes"]["1"]["status"] = COMPLETED
        session = load_session(json.dumps(data))
        assert session.root_graph.nodes["1"].status == AVAILABLE
        assert session.root_graph.nodes["2"].status == LOCKED

    def test_reload_rejects_broken_graph(self):
        data = json.loads(dump_session(_session()))
        data["rootGraph"]["nodes"]["1"]["dependencies"] = ["2"]
        with pytest.raises(StructuralViolation):
            load_session(json.dumps(data))

    def test_reload_resets_dangling_view(self):
        data = json.loads(dump_session(_session()))
        data["currentSubGraphId"] = "1"
        assert load_session(json.dumps(data)).current_sub_graph_id is None


# =========================================================================
# Test: Repository contract
# =========================================================================


class TestRepository:
    """Both repositories honour the same get/put/delete/list contract."""

    def test_put_and_get(self, repo):
        repo.put(_session(completed=["1"]))
        loaded = repo.get("s-1")
        assert loaded is not None
        assert loaded.completed_unit_ids == ["1"]
        assert loaded.root_graph.nodes["2"].status == AVAILABLE

    def test_get_unknown(self, repo):
        assert repo.get("missing") is None

    def test_put_replaces(self, repo):
        repo.put(_session())
        repo.put(_session(completed=["1"]))
        assert repo.get("s-1").completed_unit_ids == ["1"]
        assert len(repo.list()) == 1

    def test_delete(self, repo):
        repo.put(_session())
        assert repo.delete("s-1") is True
        assert repo.get("s-1") is None
        assert repo.delete("s-1") is False

    def test_returned_sessions_are_isolated(self, repo):
        """Mutating a loaded session does not touch the stored one."""
        repo.put(_session())
        loaded = repo.get("s-1")
        loaded.completed_unit_ids.append("1")
        assert repo.get("s-1").completed_unit_ids == []

    def test_list_most_recent_first(self, repo):
        older = _session("old")
        newer = _session("new")
        newer.last_accessed = older.last_accessed + timedelta(minutes=5)
        repo.put(older)
        repo.put(newer)
        assert [s.id for s in repo.list()] == ["new", "old"]


class TestSQLiteSchema:
    def test_table_created(self, tmp_path):
        db_path = str(tmp_path / "schema.db")
        SQLiteSessionRepository(db_path)
        conn = get_connection(db_path)
        tables = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        conn.close()
        assert "Sessions" in {r[0] for r in tables}
