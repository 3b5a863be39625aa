"""
Learning engine: per-session orchestration of the progression graph.

Each public method is one learner event (start a journey, open a unit,
complete a unit, expand, go back) or one read of the query surface.

Concurrency model:
- Mutations of one session are serialised by a per-session lock; other
  sessions never block on it.
- Generator calls run *outside* the lock. Before the call the engine
  records the session's state signature ``(revision, current view)``;
  when the answer arrives it re-reads the session and drops the answer
  with :class:`StaleResponseError` if the signature moved on.
- Every mutation is computed on a copy and persisted in one ``put``, so
  readers only ever observe committed sessions.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from cognimap.completion import is_leaf
from cognimap.config import EngineConfig
from cognimap.dag_validator import build_graph
from cognimap.exceptions import (
    EngineError,
    ExternalFailure,
    InvalidTransitionError,
    SessionNotFoundError,
    StaleResponseError,
    UnitNotFoundError,
)
from cognimap.expansion import ExpansionResult, clean_suggestions, expand_graph
from cognimap.generators import CurriculumGenerator, parse_graph_payload
from cognimap.models import LearningGraph, Progress, Session, UnitStatus, UserContext
from cognimap.session_store import SessionRepository
from cognimap.status_resolver import resolve_statuses
from cognimap.subgraph import (
    SessionCompletion,
    check_can_enter,
    complete_in_view,
    current_graph,
    enter_sub_graph,
    leave_sub_graph,
    materialize_sub_graph,
    replace_glossary,
    resync,
    set_active,
    set_current_graph,
    view_scope,
)
from cognimap.utils import new_session_id, retry_with_backoff, timed

logger = logging.getLogger(__name__)

Signature = Tuple[int, Optional[str]]

# Generator errors that another attempt cannot fix.
_PERMANENT_ERRORS = (LookupError, NotImplementedError, TypeError)

# Errors raised while reading a generator answer of the wrong shape.
_MALFORMED_ERRORS = (KeyError, TypeError, ValueError, AttributeError, ValidationError)


# =========================================================================
# Query surface (pure, on a Session)
# =========================================================================


def current_view(session: Session) -> LearningGraph:
    return current_graph(session)


def status_of(session: Session, unit_id: str) -> UnitStatus:
    """Status of *unit_id*, looked up in the current view, then the root,
    then any nested sub-graph."""
    graphs = [current_graph(session), session.root_graph]
    graphs.extend(
        u.sub_graph for u in session.root_graph.nodes.values() if u.sub_graph is not None
    )
    for graph in graphs:
        if unit_id in graph.nodes:
            return resolve_statuses(
                graph, session.completed, session.active_unit_id
            )[unit_id]
    raise UnitNotFoundError(unit_id, view_scope(session))


def progress(session: Session) -> Progress:
    """``(completed, total)`` over the graph currently in view only."""
    graph = current_graph(session)
    done = sum(1 for uid in graph.nodes if uid in session.completed)
    return Progress(completed=done, total=len(graph.nodes))


def signature(session: Session) -> Signature:
    return (session.revision, session.current_sub_graph_id)


@dataclass
class OpenResult:
    """Outcome of a node click: either a unit opened or a sub-graph entered."""

    session: Session
    unit_id: str
    entered_sub_graph: bool = False


# =========================================================================
# Engine
# =========================================================================


class LearningEngine:
    """Applies learner events to sessions held in a :class:`SessionRepository`."""

    def __init__(
        self,
        repository: SessionRepository,
        generator: Optional[CurriculumGenerator] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.repository = repository
        self.generator = generator
        self.config = config or EngineConfig()
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock(self, session_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.RLock()
            return lock

    def _load(self, session_id: str) -> Session:
        session = self.repository.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _commit(self, session: Session) -> Session:
        session.touch()
        self.repository.put(session)
        return session

    def _generate(self, operation: str, target_id: Optional[str], method: str, *args: Any) -> Any:
        """Call generator *method* with retries; any failure becomes ExternalFailure."""
        fn: Optional[Callable[..., Any]] = getattr(self.generator, method, None)
        if fn is None:
            raise ExternalFailure(operation, target_id, RuntimeError("no generator configured"))
        try:
            with timed(operation, logger):
                return retry_with_backoff(
                    fn,
                    *args,
                    max_retries=self.config.generator_retries,
                    base_delay=self.config.retry_base_delay,
                    give_up_on=_PERMANENT_ERRORS,
                    logger=logger,
                )
        except Exception as exc:
            logger.error("%s failed for '%s': %s", operation, target_id, exc)
            raise ExternalFailure(operation, target_id, exc) from exc

    def _interpret(self, operation: str, target_id: Optional[str], fn: Callable[..., Any], *args: Any) -> Any:
        """Run *fn* over a generator answer; a malformed answer becomes ExternalFailure."""
        try:
            return fn(*args)
        except _MALFORMED_ERRORS as exc:
            logger.error("%s returned an unusable answer for '%s': %s", operation, target_id, exc)
            raise ExternalFailure(operation, target_id, exc) from exc

    def _graph_from(self, operation: str, payload: Any) -> LearningGraph:
        units, edges, glossary = self._interpret(operation, None, parse_graph_payload, payload)
        if not units:
            raise ExternalFailure(operation, None)
        return self._interpret(operation, None, build_graph, units, edges, glossary)

    def _reload_fresh(self, session_id: str, expected: Signature, target_id: Optional[str]) -> Session:
        session = self.repository.get(session_id)
        if session is None or signature(session) != expected:
            logger.warning(
                "Dropping stale response for '%s' in session %s.", target_id, session_id
            )
            raise StaleResponseError(session_id, target_id)
        return session

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def create_session(
        self,
        graph: LearningGraph,
        context: Union[UserContext, Mapping[str, Any], None] = None,
        session_id: Optional[str] = None,
    ) -> Session:
        """Wrap an already-built graph in a new session (step ``review``)."""
        if context is None:
            context = UserContext()
        elif not isinstance(context, UserContext):
            context = UserContext.model_validate(dict(context))
        session = Session(
            id=session_id or new_session_id(),
            context=context,
            root_graph=graph,
        )
        resync(session)
        self.repository.put(session)
        logger.info(
            "Created session %s (%d unit(s), deep_study=%s).",
            session.id, len(graph.nodes), context.is_deep_study,
        )
        return session

    def start_journey(self, context: Union[UserContext, Mapping[str, Any]]) -> Session:
        """Ask the generator for an initial curriculum and open a session on it."""
        if not isinstance(context, UserContext):
            context = UserContext.model_validate(dict(context))
        payload = self._generate(
            "learning path generation", None, "generate_learning_path", context
        )
        graph = self._graph_from("learning path generation", payload)
        return self.create_session(graph, context)

    def get_session(self, session_id: str) -> Session:
        return self._load(session_id)

    def list_sessions(self) -> List[Session]:
        return self.repository.list()

    def delete_session(self, session_id: str) -> bool:
        with self._lock(session_id):
            deleted = self.repository.delete(session_id)
        with self._locks_guard:
            self._locks.pop(session_id, None)
        if deleted:
            logger.info("Deleted session %s.", session_id)
        return deleted

    # ------------------------------------------------------------------
    # Review step
    # ------------------------------------------------------------------

    def refine_path(self, session_id: str, feedback: str) -> Session:
        """Replace the root graph with a regenerated one during review."""
        with self._lock(session_id):
            session = self._load(session_id)
            if session.step != "review" or session.completed_unit_ids:
                raise InvalidTransitionError(None, "path can only be refined before learning starts")
            expected = signature(session)
            graph, context = session.root_graph, session.context

        payload = self._generate(
            "learning path refinement", None,
            "refine_learning_path",
            graph, context, feedback,
        )
        refined = self._graph_from("learning path refinement", payload)

        with self._lock(session_id):
            session = self._reload_fresh(session_id, expected, None)
            session.root_graph = refined
            session.active_unit_id = None
            logger.info("Refined path of session %s (%d unit(s)).", session_id, len(refined.nodes))
            return self._commit(resync(session))

    def start_learning(self, session_id: str) -> Session:
        with self._lock(session_id):
            session = self._load(session_id)
            if session.step == "main":
                return session
            session.step = "main"
            return self._commit(session)

    # ------------------------------------------------------------------
    # Learner events
    # ------------------------------------------------------------------

    def open_unit(self, session_id: str, unit_id: str) -> OpenResult:
        """Node click: drill into a milestone or mark the unit ``ACTIVE``."""
        with self._lock(session_id):
            session = self._load(session_id)
            at_root = session.current_sub_graph_id is None
            if not (session.context.is_deep_study and at_root):
                session = self._commit(set_active(session, unit_id))
                return OpenResult(session=session, unit_id=unit_id)
        session = self.enter_sub_graph(session_id, unit_id)
        return OpenResult(session=session, unit_id=unit_id, entered_sub_graph=True)

    def enter_sub_graph(self, session_id: str, unit_id: str) -> Session:
        """``Root -> InSubGraph(unit_id)``, materialising the sub-graph if needed.

        Materialisation failure leaves the session at the root and raises
        :class:`ExternalFailure`.
        """
        with self._lock(session_id):
            session = self._load(session_id)
            check_can_enter(session, unit_id)
            unit = session.root_graph.nodes[unit_id]
            if unit.sub_graph is not None:
                return self._commit(enter_sub_graph(session, unit_id))
            expected = signature(session)
            context = session.context

        payload = self._generate(
            "sub-graph materialisation", unit_id,
            "generate_sub_graph",
            unit, context,
        )
        operation = "sub-graph materialisation"
        units, edges, glossary = self._interpret(operation, unit_id, parse_graph_payload, payload)
        try:
            sub_graph = self._interpret(
                operation, unit_id, materialize_sub_graph, unit_id, units, edges, glossary
            )
        except EngineError as exc:
            logger.error("Sub-graph for '%s' rejected: %s", unit_id, exc)
            raise

        with self._lock(session_id):
            session = self._reload_fresh(session_id, expected, unit_id)
            return self._commit(enter_sub_graph(session, unit_id, sub_graph))

    def leave_sub_graph(self, session_id: str) -> Session:
        with self._lock(session_id):
            session = self._load(session_id)
            if session.current_sub_graph_id is None and session.active_unit_id is None:
                return session
            return self._commit(leave_sub_graph(session))

    def complete_unit(self, session_id: str, unit_id: str) -> SessionCompletion:
        """Mark *unit_id* complete in the current view; idempotent."""
        with self._lock(session_id):
            session = self._load(session_id)
            outcome = complete_in_view(session, unit_id)
            if not outcome.result.already_completed:
                outcome.session = self._commit(outcome.session)
            return outcome

    def expand(self, session_id: str, unit_id: str) -> ExpansionResult:
        """Grow the current view with follow-ons to a completed leaf unit.

        Raises:
            InvalidTransitionError: the unit is not a completed leaf.
            ExternalFailure: the generator failed or suggested nothing.
            StaleResponseError: the session changed while generating.
        """
        with self._lock(session_id):
            session = self._load(session_id)
            graph = current_graph(session)
            unit = graph.unit(unit_id)
            if unit is None:
                raise UnitNotFoundError(unit_id, view_scope(session))
            if unit_id not in session.completed:
                raise InvalidTransitionError(unit_id, "only completed units can be expanded")
            if not is_leaf(graph, unit_id):
                raise InvalidTransitionError(unit_id, "unit already has follow-on units")
            expected = signature(session)
            context, titles = session.context, graph.titles()

        suggestions = self._generate(
            "follow-on suggestion", unit_id,
            "suggest_follow_ons",
            unit, context, titles,
        )
        items = self._interpret("follow-on suggestion", unit_id, clean_suggestions, suggestions)

        with self._lock(session_id):
            session = self._reload_fresh(session_id, expected, unit_id)
            result = expand_graph(
                current_graph(session), unit_id, items, session.completed,
                scope=view_scope(session),
                limit=self.config.max_expansion_units,
            )
            set_current_graph(session, result.graph)
            self._commit(resync(session))
            result.graph = current_graph(session)
            return result

    def update_glossary(self, session_id: str, terms: Iterable[Mapping[str, Any]]) -> Session:
        with self._lock(session_id):
            session = self._load(session_id)
            return self._commit(replace_glossary(session, list(terms)))

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    def current_view(self, session_id: str) -> LearningGraph:
        return current_view(self._load(session_id))

    def status_of(self, session_id: str, unit_id: str) -> UnitStatus:
        return status_of(self._load(session_id), unit_id)

    def progress(self, session_id: str) -> Progress:
        return progress(self._load(session_id))
