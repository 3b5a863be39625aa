"""
Completion transition: apply one "unit completed" event to a graph.

The transition is pure. It returns the grown completed-set, a freshly
resolved copy of the graph, and the next unit worth opening. Duplicate
events are idempotent and report ``already_completed``.
"""

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, Dict, FrozenSet, List, Optional

from cognimap.exceptions import InvalidTransitionError, UnitNotFoundError
from cognimap.models import AVAILABLE, LOCKED, LearningGraph, UnitStatus
from cognimap.status_resolver import apply_statuses, resolve_statuses

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    """Outcome of a completion event against one graph."""

    unit_id: str
    graph: LearningGraph
    completed: FrozenSet[str]
    statuses: Dict[str, UnitStatus]
    next_unit_id: Optional[str] = None
    newly_unlocked: List[str] = field(default_factory=list)
    is_leaf: bool = False
    already_completed: bool = False


def next_available(
    statuses: Dict[str, UnitStatus],
    completed: AbstractSet[str],
) -> Optional[str]:
    """First unit, in insertion order, that is ``AVAILABLE`` and not completed."""
    for unit_id, status in statuses.items():
        if status == AVAILABLE and unit_id not in completed:
            return unit_id
    return None


def is_leaf(graph: LearningGraph, unit_id: str) -> bool:
    """``True`` when no unit of *graph* depends on *unit_id*."""
    return not any(unit_id in u.dependencies for u in graph.nodes.values())


def complete_unit(
    graph: LearningGraph,
    completed: AbstractSet[str],
    unit_id: str,
    scope: str = "root",
) -> CompletionResult:
    """Mark *unit_id* complete and re-resolve every unit of *graph*.

    Args:
        graph: The graph that owns the unit (root or a sub-graph).
        completed: The session's current completed-set.
        unit_id: The unit being completed.
        scope: Label used in error messages (``"root"`` or the parent id).

    Raises:
        UnitNotFoundError: *unit_id* is not in *graph*.
        InvalidTransitionError: the unit is still locked, or is a milestone
            whose completion can only come from its sub-graph.
    """
    unit = graph.unit(unit_id)
    if unit is None:
        raise UnitNotFoundError(unit_id, scope)

    if unit_id in completed:
        statuses = resolve_statuses(graph, completed)
        logger.debug("Unit '%s' already completed; no-op.", unit_id)
        return CompletionResult(
            unit_id=unit_id,
            graph=apply_statuses(graph, completed),
            completed=frozenset(completed),
            statuses=statuses,
            next_unit_id=next_available(statuses, completed),
            is_leaf=is_leaf(graph, unit_id),
            already_completed=True,
        )

    if unit.sub_graph is not None:
        raise InvalidTransitionError(
            unit_id, "milestone units complete only through their sub-graph"
        )

    before = resolve_statuses(graph, completed)
    if before[unit_id] == LOCKED:
        raise InvalidTransitionError(unit_id, "unit is locked")

    new_completed = frozenset(completed) | {unit_id}
    after = resolve_statuses(graph, new_completed)
    unlocked = [
        uid for uid, status in after.items()
        if before[uid] == LOCKED and status == AVAILABLE
    ]

    result = CompletionResult(
        unit_id=unit_id,
        graph=apply_statuses(graph, new_completed),
        completed=new_completed,
        statuses=after,
        next_unit_id=next_available(after, new_completed),
        newly_unlocked=unlocked,
        is_leaf=is_leaf(graph, unit_id),
    )
    logger.debug(
        "Completed '%s' (%s): unlocked=%s next=%s leaf=%s",
        unit_id, scope, unlocked, result.next_unit_id, result.is_leaf,
    )
    return result
