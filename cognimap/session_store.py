"""
Session repository: keyed storage for independent learning journeys.

Provides:
- ``SessionRepository``: the ``get / put / delete / list`` interface the
  engine calls through.
- ``InMemorySessionRepository``: process-local store (tests, embedding).
- ``SQLiteSessionRepository``: one ``Sessions`` row per journey, the
  session serialised as JSON.

Sessions are stored as serialised snapshots, so no two callers ever share
a mutable session object. Every load re-derives unit statuses from the
completed-set instead of trusting the persisted ``status`` fields.
"""

import abc
import logging
import os
import sqlite3
import time
from typing import Dict, List, Optional

from cognimap.dag_validator import validate_graph
from cognimap.models import Session
from cognimap.subgraph import resync

logger = logging.getLogger(__name__)


# =========================================================================
# Serialisation
# =========================================================================


def dump_session(session: Session) -> str:
    """Serialise to the persisted camelCase layout."""
    return session.model_dump_json(by_alias=True)


def load_session(payload: str) -> Session:
    """Parse, validate and re-resolve a persisted session.

    Raises:
        pydantic.ValidationError: the payload does not match the schema.
        StructuralViolation: the stored graph breaks a graph invariant.
    """
    session = Session.model_validate_json(payload)
    validate_graph(session.root_graph)
    if session.current_sub_graph_id is not None:
        parent = session.root_graph.unit(session.current_sub_graph_id)
        if parent is None or parent.sub_graph is None:
            logger.warning(
                "Session %s pointed at missing sub-graph '%s'; resetting view.",
                session.id, session.current_sub_graph_id,
            )
            session.current_sub_graph_id = None
    return resync(session)


# =========================================================================
# Interface
# =========================================================================


class SessionRepository(abc.ABC):
    """Keyed collection of sessions; no cross-session logic."""

    @abc.abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        """Return the session, or ``None`` when unknown."""

    @abc.abstractmethod
    def put(self, session: Session) -> None:
        """Insert or replace a session."""

    @abc.abstractmethod
    def delete(self, session_id: str) -> bool:
        """Remove a session; ``True`` if something was deleted."""

    @abc.abstractmethod
    def list(self) -> List[Session]:
        """Every session, most recently accessed first."""


class InMemorySessionRepository(SessionRepository):
    """Dict of serialised sessions; every ``get`` returns a fresh object."""

    def __init__(self) -> None:
        self._rows: Dict[str, str] = {}

    def get(self, session_id: str) -> Optional[Session]:
        payload = self._rows.get(session_id)
        return load_session(payload) if payload is not None else None

    def put(self, session: Session) -> None:
        self._rows[session.id] = dump_session(session)

    def delete(self, session_id: str) -> bool:
        return self._rows.pop(session_id, None) is not None

    def list(self) -> List[Session]:
        sessions = [load_session(p) for p in self._rows.values()]
        sessions.sort(key=lambda s: s.last_accessed, reverse=True)
        return sessions


# =========================================================================
# SQLite
# =========================================================================

_CREATE_SESSIONS = """\
CREATE TABLE IF NOT EXISTS Sessions (
    id             TEXT PRIMARY KEY,
    learning_goal  TEXT,
    payload        TEXT NOT NULL,
    last_accessed  TIMESTAMP NOT NULL
);
"""

_CREATE_IDX_ACCESSED = """\
CREATE INDEX IF NOT EXISTS idx_sessions_accessed
    ON Sessions(last_accessed);
"""

_SQLITE_LOCK_RETRIES = 5
_SQLITE_LOCK_BASE_DELAY = 0.1


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with WAL mode and row-factory enabled."""
    os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=10, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    return conn


def migrate_db(db_path: str) -> None:
    """Create (or verify) the ``Sessions`` table."""
    conn = get_connection(db_path)
    try:
        conn.execute(_CREATE_SESSIONS)
        conn.execute(_CREATE_IDX_ACCESSED)
        conn.commit()
        logger.info("Sessions migration OK at %s", os.path.abspath(db_path))
    finally:
        conn.close()


def _retry_on_lock(fn, *args, **kwargs):  # type: ignore[no-untyped-def]
    """Wrap *fn* with SQLite-lock retry."""
    for attempt in range(1, _SQLITE_LOCK_RETRIES + 1):
        try:
            return fn(*args, **kwargs)
        except sqlite3.OperationalError as exc:
            if "locked" in str(exc).lower() and attempt < _SQLITE_LOCK_RETRIES:
                delay = _SQLITE_LOCK_BASE_DELAY * (2 ** (attempt - 1))
                logger.warning(
                    "SQLite locked (attempt %d/%d), retrying in %.2fs",
                    attempt, _SQLITE_LOCK_RETRIES, delay,
                )
                time.sleep(delay)
            else:
                raise


class SQLiteSessionRepository(SessionRepository):
    """Sessions persisted in a single SQLite file."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        migrate_db(db_path)

    def get(self, session_id: str) -> Optional[Session]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT payload FROM Sessions WHERE id = ?", (session_id,)
            ).fetchone()
        finally:
            conn.close()
        return load_session(row["payload"]) if row else None

    def put(self, session: Session) -> None:
        conn = get_connection(self.db_path)

        def _do_upsert() -> None:
            conn.execute(
                """
                INSERT INTO Sessions (id, learning_goal, payload, last_accessed)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    learning_goal = excluded.learning_goal,
                    payload       = excluded.payload,
                    last_accessed = excluded.last_accessed
                """,
                (
                    session.id,
                    session.context.learning_goal,
                    dump_session(session),
                    session.last_accessed.isoformat(),
                ),
            )
            conn.commit()

        try:
            _retry_on_lock(_do_upsert)
        finally:
            conn.close()

    def delete(self, session_id: str) -> bool:
        conn = get_connection(self.db_path)

        def _do_delete() -> int:
            cursor = conn.execute("DELETE FROM Sessions WHERE id = ?", (session_id,))
            conn.commit()
            return cursor.rowcount

        try:
            return _retry_on_lock(_do_delete) > 0
        finally:
            conn.close()

    def list(self) -> List[Session]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT payload FROM Sessions ORDER BY last_accessed DESC"
            ).fetchall()
        finally:
            conn.close()
        return [load_session(r["payload"]) for r in rows]
