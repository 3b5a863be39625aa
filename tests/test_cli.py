"""
pytest suite for the CLI and engine configuration.

Uses a temporary SQLite database; no network.
"""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from cognimap.cli import main
from cognimap.config import EngineConfig, load_config, save_config


_CURRICULUM = {
    "context": {"learningGoal": "Graphs", "existingKnowledge": "Python"},
    "nodes": [
        {"id": "1", "title": "Basics", "dependencies": []},
        {"id": "2", "title": "Next", "dependencies": ["1"]},
    ],
    "glossary": [],
}


@pytest.fixture()
def files(tmp_path):
    curriculum = tmp_path / "curriculum.json"
    curriculum.write_text(json.dumps(_CURRICULUM))
    suggestions = tmp_path / "suggestions.json"
    suggestions.write_text(json.dumps({"2": [{"title": "Beyond", "description": ""}]}))
    return {
        "db": str(tmp_path / "sessions.db"),
        "curriculum": str(curriculum),
        "suggestions": str(suggestions),
    }


def _run(capsys, *argv):
    main(list(argv))
    return capsys.readouterr().out


# =========================================================================
# Test: Commands
# =========================================================================


class TestCli:
    """End-to-end runs of the CLI against SQLite."""

    def test_start_complete_expand(self, capsys, files):
        session_id = _run(capsys, "--db", files["db"], "start", files["curriculum"]).strip()
        assert session_id

        out = json.loads(_run(capsys, "--db", files["db"], "complete", session_id, "1"))
        assert out["unlocked"] == ["2"]
        assert out["next"] == "2"

        out = json.loads(_run(capsys, "--db", files["db"], "complete", session_id, "2"))
        assert out["leaf"] is True

        out = json.loads(_run(
            capsys, "--db", files["db"], "--suggestions", files["suggestions"],
            "expand", session_id, "2",
        ))
        assert len(out["new_units"]) == 1

        shown = json.loads(_run(capsys, "--db", files["db"], "show", session_id))
        assert shown["step"] == "main"
        assert shown["units"]["1"] == "COMPLETED"
        assert shown["units"][out["new_units"][0]] == "AVAILABLE"
        assert "first-step" in shown["badges"]

        assert _run(capsys, "--db", files["db"], "progress", session_id).startswith("2/3")

    def test_list_and_delete(self, capsys, files):
        session_id = _run(capsys, "--db", files["db"], "start", files["curriculum"]).strip()
        assert session_id in _run(capsys, "--db", files["db"], "list")
        _run(capsys, "--db", files["db"], "delete", session_id)
        assert session_id not in _run(capsys, "--db", files["db"], "list")

    def test_validate(self, capsys, files):
        metrics = json.loads(_run(capsys, "--db", files["db"], "validate", files["curriculum"]))
        assert metrics["total_units"] == 2
        assert metrics["leaf_units"] == ["2"]

    def test_engine_error_exits_nonzero(self, capsys, files):
        session_id = _run(capsys, "--db", files["db"], "start", files["curriculum"]).strip()
        with pytest.raises(SystemExit) as exc:
            main(["--db", files["db"], "complete", session_id, "99"])
        assert exc.value.code == 1


# =========================================================================
# Test: Config
# =========================================================================


class TestConfig:
    def test_defaults_when_missing(self, tmp_path):
        config = load_config(str(tmp_path / "absent.json"))
        assert config == EngineConfig()

    def test_round_trip_with_override(self, tmp_path):
        path = str(tmp_path / "cfg" / "engine.json")
        save_config(EngineConfig(generator_retries=5), path)
        config = load_config(path, overrides={"db_path": "x.db", "log_level": None})
        assert config.generator_retries == 5
        assert config.db_path == "x.db"
        assert config.log_level == "INFO"

    def test_save_config_flag(self, tmp_path, capsys):
        path = str(tmp_path / "saved.json")
        main(["--db", str(tmp_path / "a.db"), "--save-config", path])
        with open(path) as fh:
            assert json.load(fh)["db_path"] == str(tmp_path / "a.db")
