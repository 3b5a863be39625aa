"""
Sub-graph manager: nested deep-study graphs and the per-session view.

A session's view is either the root graph (``current_sub_graph_id is
None``) or the sub-graph owned by one root unit. Completing the last unit
of a sub-graph rolls up into completion of its owning milestone unit and
returns the view to the root.

Every function here takes a :class:`Session` and returns a modified deep
copy; the input session is never mutated.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from cognimap.completion import CompletionResult, complete_unit, next_available
from cognimap.dag_validator import build_graph, validate_graph
from cognimap.exceptions import (
    ExternalFailure,
    InvalidTransitionError,
    StructuralViolation,
    UnitNotFoundError,
)
from cognimap.models import (
    LOCKED,
    Badge,
    GlossaryTerm,
    LearningGraph,
    Session,
    utcnow,
)
from cognimap.status_resolver import apply_statuses, resolve_statuses, resolve_unit

logger = logging.getLogger(__name__)

SUB_ID_SEPARATOR = "-sub-"


# =========================================================================
# View helpers
# =========================================================================


def view_scope(session: Session) -> str:
    return session.current_sub_graph_id or "root"


def current_graph(session: Session) -> LearningGraph:
    """Graph currently in view: the root, or the viewed unit's sub-graph."""
    parent_id = session.current_sub_graph_id
    if parent_id is None:
        return session.root_graph
    parent = session.root_graph.unit(parent_id)
    if parent is None or parent.sub_graph is None:
        return session.root_graph
    return parent.sub_graph


def set_current_graph(session: Session, graph: LearningGraph) -> None:
    parent_id = session.current_sub_graph_id
    if parent_id is None:
        session.root_graph = graph
    else:
        session.root_graph.nodes[parent_id].sub_graph = graph


def resync(session: Session) -> Session:
    """Re-derive every status in the session from its completed-set."""
    session.root_graph = apply_statuses(
        session.root_graph, session.completed, session.active_unit_id
    )
    return session


def award_badge(session: Session, badge_id: str, label: str, description: str = "") -> bool:
    if session.has_badge(badge_id):
        return False
    session.earned_badges.append(
        Badge(id=badge_id, label=label, description=description, unlocked_at=utcnow())
    )
    logger.info("Session %s earned badge '%s'.", session.id, badge_id)
    return True


# =========================================================================
# Materialisation
# =========================================================================


def namespaced_id(parent_id: str, raw_id: str) -> str:
    return f"{parent_id}{SUB_ID_SEPARATOR}{raw_id}"


def materialize_sub_graph(
    parent_id: str,
    units: Iterable[Mapping[str, Any]],
    edges: Iterable[Mapping[str, Any]] = (),
    glossary: Iterable[Mapping[str, Any]] = (),
) -> LearningGraph:
    """Build a nested graph for *parent_id* from generator output.

    Unit ids and dependencies are namespaced under the parent so they never
    collide with root ids in the session's single completed-set. The first
    unit must have no dependencies so the fresh sub-graph opens with it
    ``AVAILABLE``.

    Raises:
        ExternalFailure: the generator returned no units.
        StructuralViolation: the generated graph is malformed.
    """
    raw_units = [dict(u) for u in units or []]
    if not raw_units:
        raise ExternalFailure("sub-graph materialisation", parent_id)

    prefixed = []
    for raw in raw_units:
        raw_id = str(raw.get("id", ""))
        prefixed.append({
            "id": namespaced_id(parent_id, raw_id),
            "title": raw.get("title", raw_id),
            "description": raw.get("description", ""),
            "dependencies": [
                namespaced_id(parent_id, str(d)) for d in raw.get("dependencies", [])
            ],
        })
    prefixed_edges = [
        {
            "source": namespaced_id(parent_id, str(e["source"])),
            "target": namespaced_id(parent_id, str(e["target"])),
        }
        for e in edges or []
    ]

    graph = build_graph(prefixed, prefixed_edges, glossary or [])

    first = next(iter(graph.nodes.values()))
    if first.dependencies:
        raise StructuralViolation(
            "sub_graph_bootstrap",
            f"first unit '{first.id}' of the sub-graph for '{parent_id}' has dependencies",
        )
    return graph


# =========================================================================
# View transitions
# =========================================================================


def check_can_enter(session: Session, parent_id: str) -> None:
    """Raise unless *parent_id* may be drilled into from the root view."""
    if not session.context.is_deep_study:
        raise InvalidTransitionError(parent_id, "session is not in deep-study mode")
    if session.current_sub_graph_id is not None:
        raise InvalidTransitionError(
            parent_id, f"already viewing sub-graph of '{session.current_sub_graph_id}'"
        )
    parent = session.root_graph.unit(parent_id)
    if parent is None:
        raise UnitNotFoundError(parent_id, "root")
    if resolve_unit(parent, session.completed) == LOCKED:
        raise InvalidTransitionError(parent_id, "unit is locked")


def enter_sub_graph(
    session: Session,
    parent_id: str,
    sub_graph: Optional[LearningGraph] = None,
) -> Session:
    """``Root -> InSubGraph(parent_id)``, attaching *sub_graph* if supplied.

    Raises:
        InvalidTransitionError: not in hierarchical mode, already inside a
            sub-graph, the parent is locked, or no sub-graph is available.
        UnitNotFoundError: *parent_id* is not a root unit.
    """
    check_can_enter(session, parent_id)

    updated = session.model_copy(deep=True)
    target = updated.root_graph.nodes[parent_id]
    if target.sub_graph is None:
        if sub_graph is None:
            raise InvalidTransitionError(parent_id, "sub-graph has not been materialised")
        validate_graph(sub_graph, reserved_ids=set(updated.root_graph.nodes))
        target.sub_graph = sub_graph.model_copy(deep=True)

    updated.current_sub_graph_id = parent_id
    updated.active_unit_id = None
    logger.info("Session %s entered sub-graph of '%s'.", session.id, parent_id)
    return resync(updated)


def leave_sub_graph(session: Session) -> Session:
    """``InSubGraph -> Root``. A no-op copy when already at the root."""
    updated = session.model_copy(deep=True)
    if updated.current_sub_graph_id is not None:
        logger.info(
            "Session %s left sub-graph of '%s'.", session.id, updated.current_sub_graph_id
        )
    updated.current_sub_graph_id = None
    updated.active_unit_id = None
    return resync(updated)


def sub_graph_complete(graph: LearningGraph, completed) -> bool:
    return bool(graph.nodes) and all(uid in completed for uid in graph.nodes)


def roll_up(session: Session) -> Optional[str]:
    """Complete the viewed milestone in place if its sub-graph is finished.

    Returns the milestone id when a roll-up happened, else ``None``.
    """
    parent_id = session.current_sub_graph_id
    if parent_id is None:
        return None
    parent = session.root_graph.unit(parent_id)
    if parent is None or parent.sub_graph is None:
        return None
    if parent_id in session.completed or not sub_graph_complete(parent.sub_graph, session.completed):
        return None

    session.completed_unit_ids.append(parent_id)
    session.current_sub_graph_id = None
    session.active_unit_id = None
    award_badge(
        session,
        f"milestone-{parent_id}",
        f"Milestone: {parent.title}",
        "Completed every module of a deep-study milestone.",
    )
    logger.info("Session %s rolled up milestone '%s'.", session.id, parent_id)
    return parent_id


# =========================================================================
# Session-level events
# =========================================================================


@dataclass
class SessionCompletion:
    """Completion of one unit in whatever graph the session has in view."""

    session: Session
    result: CompletionResult
    rolled_up_unit_id: Optional[str] = None
    next_unit_id: Optional[str] = None


def complete_in_view(session: Session, unit_id: str) -> SessionCompletion:
    """Complete *unit_id* in the current view and roll up if that finishes it.

    Raises:
        UnitNotFoundError / InvalidTransitionError: from :func:`complete_unit`,
            or when completing a root unit directly in deep-study mode.
    """
    if session.context.is_deep_study and session.current_sub_graph_id is None:
        if unit_id in session.root_graph.nodes and unit_id not in session.completed:
            raise InvalidTransitionError(
                unit_id, "milestone units complete only through their sub-graph"
            )

    result = complete_unit(
        current_graph(session), session.completed, unit_id, scope=view_scope(session)
    )
    updated = session.model_copy(deep=True)
    if result.already_completed:
        return SessionCompletion(
            session=updated, result=result, next_unit_id=result.next_unit_id
        )

    set_current_graph(updated, result.graph)
    updated.completed_unit_ids.append(unit_id)
    if updated.active_unit_id == unit_id:
        updated.active_unit_id = None
    if len(updated.completed_unit_ids) == 1:
        award_badge(updated, "first-step", "First Step", "Completed a first module.")

    next_id = result.next_unit_id
    rolled = roll_up(updated)
    resync(updated)
    if rolled is not None:
        next_id = next_available(
            resolve_statuses(updated.root_graph, updated.completed), updated.completed
        )

    logger.info(
        "Session %s completed '%s' (%s); next=%s",
        session.id, unit_id, view_scope(session), next_id,
    )
    return SessionCompletion(
        session=updated, result=result, rolled_up_unit_id=rolled, next_unit_id=next_id
    )


def set_active(session: Session, unit_id: str) -> Session:
    """Open *unit_id* in the current view (the ``ACTIVE`` overlay)."""
    graph = current_graph(session)
    unit = graph.unit(unit_id)
    if unit is None:
        raise UnitNotFoundError(unit_id, view_scope(session))
    if resolve_unit(unit, session.completed) == LOCKED:
        raise InvalidTransitionError(unit_id, "unit is locked")

    updated = session.model_copy(deep=True)
    updated.active_unit_id = unit_id
    return resync(updated)


def replace_glossary(session: Session, terms: List[Mapping[str, Any]]) -> Session:
    updated = session.model_copy(deep=True)
    graph = current_graph(updated)
    graph.glossary = [GlossaryTerm.model_validate(dict(t)) for t in terms]
    return updated
