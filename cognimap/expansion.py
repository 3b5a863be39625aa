"""
Expansion protocol: grow a graph after a leaf unit is completed.

Suggested follow-on units become children of the completed unit. The
append is all-or-nothing: ids are minted and the whole new graph is
validated on a copy before it is returned.
"""

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, Any, Iterable, List, Mapping, Optional, Set

from cognimap.dag_validator import validate_graph
from cognimap.exceptions import ExternalFailure, InvalidTransitionError, UnitNotFoundError
from cognimap.models import LearningGraph, LearningLink, LearningUnit
from cognimap.status_resolver import apply_statuses

logger = logging.getLogger(__name__)

_EXPANSION_MARK = "-x"


@dataclass
class ExpansionResult:
    parent_id: str
    graph: LearningGraph
    new_unit_ids: List[str] = field(default_factory=list)


def _generation(graph: LearningGraph, parent_id: str) -> int:
    """Next generation number for children minted under *parent_id*."""
    prefix = f"{parent_id}{_EXPANSION_MARK}"
    used = set()
    for unit_id in graph.nodes:
        if not unit_id.startswith(prefix):
            continue
        head = unit_id[len(prefix):].split("-", 1)[0]
        if head.isdigit():
            used.add(int(head))
    return max(used, default=0) + 1


def mint_unit_ids(graph: LearningGraph, parent_id: str, count: int) -> List[str]:
    """Return *count* fresh ids of the form ``{parent}-x{generation}-{n}``.

    The generation grows with every expansion of the same parent, so
    repeated expansions never collide; any id already taken is skipped.
    """
    taken: Set[str] = set(graph.nodes)
    generation = _generation(graph, parent_id)
    ids: List[str] = []
    n = 1
    while len(ids) < count:
        candidate = f"{parent_id}{_EXPANSION_MARK}{generation}-{n}"
        if candidate not in taken:
            ids.append(candidate)
            taken.add(candidate)
        n += 1
    return ids


def clean_suggestions(suggestions: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Keep suggestions that are mappings with a non-blank title."""
    cleaned = []
    for s in suggestions or []:
        if not isinstance(s, Mapping):
            logger.warning("Ignoring malformed suggestion: %r", s)
            continue
        title = str(s.get("title") or "").strip()
        if title:
            cleaned.append({"title": title, "description": str(s.get("description") or "")})
    return cleaned


def expand_graph(
    graph: LearningGraph,
    parent_id: str,
    suggestions: Iterable[Mapping[str, Any]],
    completed: AbstractSet[str],
    scope: str = "root",
    limit: Optional[int] = None,
) -> ExpansionResult:
    """Append one child unit per ``{title, description}`` suggestion.

    Each new unit depends on exactly ``[parent_id]`` and, because the
    parent is completed, resolves to ``AVAILABLE``. At most *limit*
    usable suggestions are taken, counted after blank ones are dropped.

    Raises:
        UnitNotFoundError: *parent_id* is not in *graph*.
        InvalidTransitionError: the parent is not completed yet.
        ExternalFailure: no usable suggestion was supplied.
        StructuralViolation: the grown graph would break an invariant.
    """
    if parent_id not in graph.nodes:
        raise UnitNotFoundError(parent_id, scope)
    if parent_id not in completed:
        raise InvalidTransitionError(parent_id, "only completed units can be expanded")

    items = clean_suggestions(suggestions)
    if limit is not None:
        items = items[:limit]
    if not items:
        raise ExternalFailure("expansion", parent_id)

    grown = graph.model_copy(deep=True)
    new_ids = mint_unit_ids(grown, parent_id, len(items))
    for unit_id, item in zip(new_ids, items):
        grown.nodes[unit_id] = LearningUnit(
            id=unit_id,
            title=item["title"],
            description=item["description"],
            dependencies=[parent_id],
        )
        grown.links.append(LearningLink(source=parent_id, target=unit_id))

    validate_graph(grown)
    grown = apply_statuses(grown, completed)

    logger.info(
        "Expanded '%s' (%s) with %d unit(s): %s",
        parent_id, scope, len(new_ids), new_ids,
    )
    return ExpansionResult(parent_id=parent_id, graph=grown, new_unit_ids=new_ids)
