"""
Pydantic models for the CogniMap learning progression engine.

Graph: learning units, derived links, glossary terms.
Session: learner context, badges, completed-set and current view.
"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =========================================================================
# Literals
# =========================================================================

UnitStatus = Literal["LOCKED", "AVAILABLE", "ACTIVE", "COMPLETED"]

LOCKED: UnitStatus = "LOCKED"
AVAILABLE: UnitStatus = "AVAILABLE"
ACTIVE: UnitStatus = "ACTIVE"
COMPLETED: UnitStatus = "COMPLETED"

SessionStep = Literal["review", "main"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =========================================================================
# Graph models
# =========================================================================


class _CamelModel(BaseModel):
    """Accepts both field names and the camelCase persisted aliases."""

    model_config = ConfigDict(populate_by_name=True)


class GlossaryTerm(_CamelModel):
    term: str
    definition: str


class LearningLink(_CamelModel):
    """One ``dependency -> unit`` edge of the materialised link list."""

    source: str
    target: str


class LearningUnit(_CamelModel):
    """A single learning module node.

    ``status`` is always derived by the status resolver; values read from
    persisted data are overwritten on load.
    """

    id: str
    title: str
    description: str = ""
    dependencies: List[str] = Field(default_factory=list)
    status: UnitStatus = LOCKED
    sub_graph: Optional["LearningGraph"] = Field(default=None, alias="subGraph")

    @field_validator("dependencies")
    @classmethod
    def dedupe_dependencies(cls, deps: List[str]) -> List[str]:
        return list(dict.fromkeys(deps))


class LearningGraph(_CamelModel):
    """Units keyed by id (insertion order is display order) plus links."""

    nodes: Dict[str, LearningUnit] = Field(default_factory=dict)
    links: List[LearningLink] = Field(default_factory=list)
    glossary: List[GlossaryTerm] = Field(default_factory=list)

    def unit(self, unit_id: str) -> Optional[LearningUnit]:
        return self.nodes.get(unit_id)

    def titles(self) -> List[str]:
        return [u.title for u in self.nodes.values()]

    def rebuild_links(self) -> None:
        """Recompute ``links`` from every unit's ``dependencies``."""
        self.links = [
            LearningLink(source=dep, target=unit.id)
            for unit in self.nodes.values()
            for dep in unit.dependencies
        ]


LearningUnit.model_rebuild()


# =========================================================================
# Session models
# =========================================================================


class UserContext(_CamelModel):
    """What the learner told us when starting the journey."""

    existing_knowledge: str = Field(default="", alias="existingKnowledge")
    detailed_background: str = Field(default="", alias="detailedBackground")
    learning_goal: str = Field(default="", alias="learningGoal")
    is_deep_study: bool = Field(default=False, alias="isDeepStudy")


class Badge(_CamelModel):
    id: str
    label: str
    description: str = ""
    unlocked_at: Optional[datetime] = Field(default=None, alias="unlockedAt")


class Session(_CamelModel):
    """One learning journey: a root graph, its completed-set and view.

    Serialised (``by_alias=True``) as ``{id, context, rootGraph,
    completedUnitIds, currentSubGraphId, ...}``.
    """

    id: str
    context: UserContext = Field(default_factory=UserContext)
    root_graph: LearningGraph = Field(default_factory=LearningGraph, alias="rootGraph")
    completed_unit_ids: List[str] = Field(default_factory=list, alias="completedUnitIds")
    current_sub_graph_id: Optional[str] = Field(default=None, alias="currentSubGraphId")
    active_unit_id: Optional[str] = Field(default=None, alias="activeUnitId")
    step: SessionStep = "review"
    earned_badges: List[Badge] = Field(default_factory=list, alias="earnedBadges")
    revision: int = 0
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    last_accessed: datetime = Field(default_factory=utcnow, alias="lastAccessed")

    @field_validator("completed_unit_ids")
    @classmethod
    def dedupe_completed(cls, ids: List[str]) -> List[str]:
        return list(dict.fromkeys(ids))

    @property
    def completed(self) -> frozenset:
        return frozenset(self.completed_unit_ids)

    def has_badge(self, badge_id: str) -> bool:
        return any(b.id == badge_id for b in self.earned_badges)

    def touch(self) -> None:
        """Bump the revision and access time after a committed mutation."""
        self.revision += 1
        self.last_accessed = utcnow()


# =========================================================================
# Results
# =========================================================================


class Progress(BaseModel):
    """Completion counts over the graph currently in view."""

    completed: int = 0
    total: int = 0

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return round(self.completed / self.total * 100)
