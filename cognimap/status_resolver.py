"""
Status resolution: the single place a unit's status is computed.

``resolve_statuses`` is pure and total: every unit gets exactly one status
derived from its dependencies and the completed-set. ``ACTIVE`` is an
overlay chosen by the caller and never hides ``COMPLETED``.
"""

import logging
from typing import AbstractSet, Dict, Optional

from cognimap.models import (
    ACTIVE,
    AVAILABLE,
    COMPLETED,
    LOCKED,
    LearningGraph,
    LearningUnit,
    UnitStatus,
)

logger = logging.getLogger(__name__)


def resolve_unit(unit: LearningUnit, completed: AbstractSet[str]) -> UnitStatus:
    if unit.id in completed:
        return COMPLETED
    if all(dep in completed for dep in unit.dependencies):
        return AVAILABLE
    return LOCKED


def resolve_statuses(
    graph: LearningGraph,
    completed: AbstractSet[str],
    active_id: Optional[str] = None,
) -> Dict[str, UnitStatus]:
    """Return ``{unit_id: status}`` for every unit of *graph*, in insertion order."""
    statuses: Dict[str, UnitStatus] = {}
    for unit_id, unit in graph.nodes.items():
        status = resolve_unit(unit, completed)
        if unit_id == active_id and status != COMPLETED:
            status = ACTIVE
        statuses[unit_id] = status
    return statuses


def apply_statuses(
    graph: LearningGraph,
    completed: AbstractSet[str],
    active_id: Optional[str] = None,
) -> LearningGraph:
    """Return a copy of *graph* with every status (nested ones too) re-derived.

    A nested sub-graph is resolved against the same completed-set; its
    units are namespaced so they never collide with root ids.
    """
    resolved = graph.model_copy(deep=True)
    _apply_in_place(resolved, completed, active_id)
    return resolved


def _apply_in_place(
    graph: LearningGraph,
    completed: AbstractSet[str],
    active_id: Optional[str],
) -> None:
    statuses = resolve_statuses(graph, completed, active_id)
    for unit_id, status in statuses.items():
        unit = graph.nodes[unit_id]
        unit.status = status
        if unit.sub_graph is not None:
            _apply_in_place(unit.sub_graph, completed, active_id)
    logger.debug(
        "Resolved %d unit(s): %d completed, %d available.",
        len(statuses),
        sum(1 for s in statuses.values() if s == COMPLETED),
        sum(1 for s in statuses.values() if s in (AVAILABLE, ACTIVE)),
    )
