"""
CogniMap CLI: drive learning sessions stored in SQLite.

Usage::

    python -m cognimap.cli start ./data/curriculum.json
    python -m cognimap.cli complete <session-id> 1
    python -m cognimap.cli --suggestions ./data/suggestions.json expand <session-id> 4
    python -m cognimap.cli validate ./data/curriculum.json

A curriculum file holds ``{"context": {...}, "nodes": [...],
"glossary": [...]}``. Generation-backed commands read recorded
generator output from ``--sub-graphs`` / ``--suggestions`` files.
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict

from cognimap.config import load_config, save_config
from cognimap.dag_validator import build_graph, compute_metrics
from cognimap.engine import LearningEngine, progress
from cognimap.exceptions import EngineError
from cognimap.generators import StaticGenerator, parse_graph_payload
from cognimap.models import Session
from cognimap.session_store import SQLiteSessionRepository
from cognimap.subgraph import current_graph
from cognimap.utils import setup_logging

logger = logging.getLogger(__name__)


def _read_json(path: str) -> Any:
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _session_summary(engine: LearningEngine, session: Session) -> Dict[str, Any]:
    graph = current_graph(session)
    prog = progress(session)
    return {
        "id": session.id,
        "goal": session.context.learning_goal,
        "step": session.step,
        "view": session.current_sub_graph_id or "root",
        "progress": f"{prog.completed}/{prog.total} ({prog.percent}%)",
        "units": {uid: u.status for uid, u in graph.nodes.items()},
        "badges": [b.id for b in session.earned_badges],
    }


# =========================================================================
# Commands
# =========================================================================


def _cmd_start(engine: LearningEngine, args: argparse.Namespace) -> None:
    data = _read_json(args.file)
    units, edges, glossary = parse_graph_payload(data)
    session = engine.create_session(
        build_graph(units, edges, glossary), data.get("context") or {}
    )
    engine.start_learning(session.id)
    print(session.id)


def _cmd_validate(engine: LearningEngine, args: argparse.Namespace) -> None:
    units, edges, glossary = parse_graph_payload(_read_json(args.file))
    _emit(compute_metrics(build_graph(units, edges, glossary)))


def _cmd_list(engine: LearningEngine, args: argparse.Namespace) -> None:
    for s in engine.list_sessions():
        print(f"{s.id}  {s.last_accessed:%Y-%m-%d %H:%M}  {s.context.learning_goal}")


def _cmd_show(engine: LearningEngine, args: argparse.Namespace) -> None:
    _emit(_session_summary(engine, engine.get_session(args.session)))


def _cmd_progress(engine: LearningEngine, args: argparse.Namespace) -> None:
    prog = engine.progress(args.session)
    print(f"{prog.completed}/{prog.total} ({prog.percent}%)")


def _cmd_open(engine: LearningEngine, args: argparse.Namespace) -> None:
    outcome = engine.open_unit(args.session, args.unit)
    _emit(_session_summary(engine, outcome.session))


def _cmd_complete(engine: LearningEngine, args: argparse.Namespace) -> None:
    outcome = engine.complete_unit(args.session, args.unit)
    _emit({
        "completed": args.unit,
        "already_completed": outcome.result.already_completed,
        "unlocked": outcome.result.newly_unlocked,
        "rolled_up": outcome.rolled_up_unit_id,
        "next": outcome.next_unit_id,
        "leaf": outcome.result.is_leaf,
    })


def _cmd_expand(engine: LearningEngine, args: argparse.Namespace) -> None:
    result = engine.expand(args.session, args.unit)
    _emit({"parent": result.parent_id, "new_units": result.new_unit_ids})


def _cmd_back(engine: LearningEngine, args: argparse.Namespace) -> None:
    _emit(_session_summary(engine, engine.leave_sub_graph(args.session)))


def _cmd_delete(engine: LearningEngine, args: argparse.Namespace) -> None:
    if not engine.delete_session(args.session):
        raise SystemExit(f"Unknown session: {args.session}")


_COMMANDS = {
    "start": _cmd_start,
    "validate": _cmd_validate,
    "list": _cmd_list,
    "show": _cmd_show,
    "progress": _cmd_progress,
    "open": _cmd_open,
    "complete": _cmd_complete,
    "expand": _cmd_expand,
    "back": _cmd_back,
    "delete": _cmd_delete,
}


# =========================================================================
# CLI
# =========================================================================


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="python -m cognimap.cli",
        description="Learning progression sessions.",
    )
    parser.add_argument("--db", default=None)
    parser.add_argument("--config", type=str, default=None, help="Engine config JSON.")
    parser.add_argument(
        "--save-config", type=str, default=None,
        help="Save current settings to a config JSON and exit.",
    )
    parser.add_argument("--sub-graphs", type=str, default=None,
                        help="JSON {unit_id: graph payload} for deep study.")
    parser.add_argument("--suggestions", type=str, default=None,
                        help="JSON {unit_id: [{title, description}]} for expansion.")
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command")
    for name in ("start", "validate"):
        p = sub.add_parser(name)
        p.add_argument("file")
    sub.add_parser("list")
    for name in ("show", "progress", "back", "delete"):
        p = sub.add_parser(name)
        p.add_argument("session")
    for name in ("open", "complete", "expand"):
        p = sub.add_parser(name)
        p.add_argument("session")
        p.add_argument("unit")
    return parser.parse_args(argv)


def main(argv=None):
    """CLI entry-point."""
    args = _parse_args(argv)
    config = load_config(args.config, overrides={"db_path": args.db})
    setup_logging(logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.INFO))

    if args.save_config:
        save_config(config, args.save_config)
        return

    if not args.command:
        raise SystemExit("No command given; see --help.")

    generator = StaticGenerator.from_files(
        sub_graphs_path=args.sub_graphs, suggestions_path=args.suggestions
    )
    engine = LearningEngine(SQLiteSessionRepository(config.db_path), generator, config)

    try:
        _COMMANDS[args.command](engine, args)
    except EngineError as exc:
        logger.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
