"""
DAG validation: invariant checks, graph construction, and graph metrics.

Uses ``networkx.DiGraph`` for cycle detection and topological-sort
validation. Every check raises :class:`StructuralViolation` before any
state is changed.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

import networkx as nx

from cognimap.exceptions import StructuralViolation
from cognimap.models import GlossaryTerm, LearningGraph, LearningLink, LearningUnit
from cognimap.status_resolver import apply_statuses

logger = logging.getLogger(__name__)

UnitLike = Union[LearningUnit, Mapping[str, Any]]
LinkLike = Union[LearningLink, Mapping[str, Any]]
TermLike = Union[GlossaryTerm, Mapping[str, Any]]


# =========================================================================
# Graph conversion
# =========================================================================


def to_digraph(graph: LearningGraph) -> nx.DiGraph:
    """Build a ``dependency -> unit`` DiGraph, isolated units included."""
    G = nx.DiGraph()
    for unit in graph.nodes.values():
        G.add_node(unit.id)
        for dep in unit.dependencies:
            G.add_edge(dep, unit.id)
    return G


# =========================================================================
# Validation
# =========================================================================


def check_referential_closure(graph: LearningGraph) -> None:
    """Every dependency id must name a unit of the same graph."""
    for unit in graph.nodes.values():
        missing = [d for d in unit.dependencies if d not in graph.nodes]
        if missing:
            raise StructuralViolation(
                "referential_closure",
                f"unit '{unit.id}' depends on unknown id(s) {missing}",
            )
        if unit.id in unit.dependencies:
            raise StructuralViolation(
                "acyclicity", f"unit '{unit.id}' depends on itself"
            )


def check_acyclic(graph: LearningGraph) -> None:
    """Verify the dependency relation forms a DAG (topological sort succeeds)."""
    G = to_digraph(graph)
    try:
        list(nx.topological_sort(G))
    except nx.NetworkXUnfeasible:
        cycle = nx.find_cycle(G, orientation="original")
        path = " -> ".join(str(u) for u, _, _ in cycle)
        raise StructuralViolation("acyclicity", f"cycle through {path}")


def validate_graph(
    graph: LearningGraph,
    reserved_ids: Optional[Set[str]] = None,
) -> None:
    """Check invariants 1-3 on *graph* and, recursively, its sub-graphs.

    *reserved_ids* are the ids of every enclosing graph; a nested unit may
    neither reuse nor depend on them.
    """
    for key, unit in graph.nodes.items():
        if key != unit.id:
            raise StructuralViolation(
                "id_uniqueness", f"unit keyed '{key}' carries id '{unit.id}'"
            )
    reserved = reserved_ids or set()
    clashes = sorted(reserved & set(graph.nodes))
    if clashes:
        raise StructuralViolation(
            "id_uniqueness", f"nested unit id(s) {clashes} reuse an ancestor id"
        )

    check_referential_closure(graph)
    check_acyclic(graph)

    for unit in graph.nodes.values():
        if unit.sub_graph is not None:
            validate_graph(unit.sub_graph, reserved | set(graph.nodes))


def is_valid(graph: LearningGraph) -> bool:
    try:
        validate_graph(graph)
    except StructuralViolation:
        return False
    return True


# =========================================================================
# Construction
# =========================================================================


def _as_unit(raw: UnitLike) -> LearningUnit:
    if isinstance(raw, LearningUnit):
        return raw.model_copy(deep=True)
    return LearningUnit.model_validate(dict(raw))


def _as_link(raw: LinkLike) -> LearningLink:
    if isinstance(raw, LearningLink):
        return raw
    return LearningLink.model_validate(dict(raw))


def build_graph(
    units: Iterable[UnitLike],
    edges: Iterable[LinkLike] = (),
    glossary: Iterable[TermLike] = (),
    completed: Iterable[str] = (),
) -> LearningGraph:
    """Assemble and validate a :class:`LearningGraph`.

    ``dependencies`` are the ground truth: any supplied edge
    ``source -> target`` is folded into the target's dependencies and the
    link list is rebuilt from them. Statuses are resolved against
    *completed*.

    Raises:
        StructuralViolation: duplicate ids, dangling references or cycles.
    """
    nodes: Dict[str, LearningUnit] = {}
    for raw in units:
        unit = _as_unit(raw)
        if unit.id in nodes:
            raise StructuralViolation(
                "id_uniqueness", f"duplicate unit id '{unit.id}'"
            )
        nodes[unit.id] = unit

    for raw_link in edges:
        link = _as_link(raw_link)
        target = nodes.get(link.target)
        if target is None:
            raise StructuralViolation(
                "referential_closure",
                f"edge {link.source} -> {link.target} targets an unknown unit",
            )
        if link.source not in target.dependencies:
            target.dependencies.append(link.source)

    terms: List[GlossaryTerm] = [
        t if isinstance(t, GlossaryTerm) else GlossaryTerm.model_validate(dict(t))
        for t in glossary
    ]

    graph = LearningGraph(nodes=nodes, glossary=terms)
    graph.rebuild_links()
    validate_graph(graph)

    logger.debug(
        "Built graph: %d unit(s), %d link(s), %d glossary term(s).",
        len(graph.nodes), len(graph.links), len(graph.glossary),
    )
    return apply_statuses(graph, set(completed))


# =========================================================================
# Metrics
# =========================================================================


def compute_metrics(graph: LearningGraph) -> Dict[str, Any]:
    """Compute graph summary metrics.

    Returns dict with: total_units, total_edges, root_units, leaf_units,
    max_depth, nested_graphs.
    """
    G = to_digraph(graph)
    total_edges = G.number_of_edges()

    if total_edges > 0 and nx.is_directed_acyclic_graph(G):
        max_depth = nx.dag_longest_path_length(G)
    else:
        max_depth = 0

    return {
        "total_units": G.number_of_nodes(),
        "total_edges": total_edges,
        "root_units": sorted(n for n in G.nodes if G.in_degree(n) == 0),
        "leaf_units": sorted(n for n in G.nodes if G.out_degree(n) == 0),
        "max_depth": max_depth,
        "nested_graphs": sum(
            1 for u in graph.nodes.values() if u.sub_graph is not None
        ),
    }
