"""
Narrow interface to the content-generation collaborator.

The engine never produces curriculum text itself. It asks a
``CurriculumGenerator`` for an initial graph, a refined graph, a
deep-study sub-graph, or follow-on suggestions, and treats any exception
or empty answer as an external failure.

Graph payloads use the generator's JSON shape::

    {"nodes": [{"id", "title", "description", "dependencies"}],
     "links": [{"source", "target"}],   # optional
     "glossary": [{"term", "definition"}]}
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from cognimap.models import LearningGraph, LearningUnit, UserContext

logger = logging.getLogger(__name__)

GraphPayload = Mapping[str, Any]
Suggestion = Mapping[str, Any]


class CurriculumGenerator(Protocol):
    def generate_learning_path(self, context: UserContext) -> GraphPayload:
        ...

    def refine_learning_path(
        self, graph: LearningGraph, context: UserContext, feedback: str
    ) -> GraphPayload:
        ...

    def generate_sub_graph(self, unit: LearningUnit, context: UserContext) -> GraphPayload:
        ...

    def suggest_follow_ons(
        self, unit: LearningUnit, context: UserContext, existing_titles: Sequence[str]
    ) -> List[Suggestion]:
        ...


def parse_graph_payload(
    payload: Optional[GraphPayload],
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Split a generator payload into ``(units, edges, glossary)``.

    ``nodes`` may be a list or an id-keyed mapping. Status fields from the
    generator are dropped; the resolver owns status.
    """
    if not payload or not isinstance(payload, Mapping):
        return [], [], []
    raw_nodes = payload.get("nodes") or []
    if isinstance(raw_nodes, Mapping):
        raw_nodes = list(raw_nodes.values())

    units = []
    for raw in raw_nodes:
        unit = {k: v for k, v in dict(raw).items() if k != "status"}
        unit["id"] = str(unit.get("id", ""))
        unit["dependencies"] = [str(d) for d in unit.get("dependencies") or []]
        units.append(unit)

    edges = [
        {"source": str(link["source"]), "target": str(link["target"])}
        for link in payload.get("links") or []
    ]
    glossary = [dict(t) for t in payload.get("glossary") or []]
    return units, edges, glossary


class StaticGenerator:
    """Serves pre-recorded payloads; used offline by the CLI and in tests.

    Args:
        curriculum: Payload returned for new journeys and refinements.
        sub_graphs: ``{unit_id: payload}`` for deep-study drill-down.
        suggestions: ``{unit_id: [{title, description}]}`` for expansion.
    """

    def __init__(
        self,
        curriculum: Optional[GraphPayload] = None,
        sub_graphs: Optional[Mapping[str, GraphPayload]] = None,
        suggestions: Optional[Mapping[str, List[Suggestion]]] = None,
    ) -> None:
        self.curriculum = curriculum
        self.sub_graphs = dict(sub_graphs or {})
        self.suggestions = dict(suggestions or {})

    @classmethod
    def from_files(
        cls,
        curriculum_path: Optional[str] = None,
        sub_graphs_path: Optional[str] = None,
        suggestions_path: Optional[str] = None,
    ) -> "StaticGenerator":
        def _read(path: Optional[str]) -> Any:
            if not path:
                return None
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)

        return cls(_read(curriculum_path), _read(sub_graphs_path), _read(suggestions_path))

    def generate_learning_path(self, context: UserContext) -> GraphPayload:
        if self.curriculum is None:
            raise LookupError("no curriculum recorded")
        return self.curriculum

    def refine_learning_path(
        self, graph: LearningGraph, context: UserContext, feedback: str
    ) -> GraphPayload:
        return self.generate_learning_path(context)

    def generate_sub_graph(self, unit: LearningUnit, context: UserContext) -> GraphPayload:
        try:
            return self.sub_graphs[unit.id]
        except KeyError:
            raise LookupError(f"no sub-graph recorded for '{unit.id}'")

    def suggest_follow_ons(
        self, unit: LearningUnit, context: UserContext, existing_titles: Sequence[str]
    ) -> List[Suggestion]:
        taken = set(existing_titles)
        return [s for s in self.suggestions.get(unit.id, []) if s.get("title") not in taken]
