"""Insight conflict domain records.

A Conflict is the aggregate root: it owns its ConflictItems, its latest
analysis, its resolutions and nothing else. Clusters, graph edges and audit
entries reference conflicts by id.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

ClaimValue = str | float | bool | None


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class ConflictType(enum.StrEnum):
    """Kinds of disagreement between insights."""

    CONTRADICTION = "contradiction"
    DIVERGENCE = "divergence"
    AMBIGUITY = "ambiguity"
    MISSING_DATA = "missing_data"
    INCONSISTENCY = "inconsistency"


class ConflictSeverity(enum.StrEnum):
    """Four-level ordinal severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_RANK: dict[ConflictSeverity, int] = {
    ConflictSeverity.LOW: 0,
    ConflictSeverity.MEDIUM: 1,
    ConflictSeverity.HIGH: 2,
    ConflictSeverity.CRITICAL: 3,
}


class ConflictStatus(enum.StrEnum):
    """Conflict lifecycle states."""

    DETECTED = "detected"
    ANALYZING = "analyzing"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


OPEN_STATUSES: frozenset[ConflictStatus] = frozenset({ConflictStatus.DETECTED, ConflictStatus.ANALYZING})


class ItemRole(enum.StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    CONTEXT = "context"


class ResolutionStrategy(enum.StrEnum):
    """How a resolution was produced."""

    AI_CONSENSUS = "ai_consensus"
    WEIGHTED_TRUTH = "weighted_truth"
    SOURCE_PRIORITY = "source_priority"
    HYBRID = "hybrid"


class GraphEdgeType(enum.StrEnum):
    """Relationship kinds between two conflicts."""

    RELATED = "related"
    CAUSED_BY = "caused_by"
    CONTRADICTS = "contradicts"
    SUPERSEDES = "supersedes"


class ActorType(enum.StrEnum):
    USER = "user"
    SYSTEM = "system"
    AI = "ai"


class ResolutionDifficulty(enum.StrEnum):
    EASY = "easy"
    MODERATE = "moderate"
    DIFFICULT = "difficult"


class ActionPriority(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ExportFormat(enum.StrEnum):
    JSON = "json"
    CSV = "csv"
    PDF = "pdf"


class AuditEventType(enum.StrEnum):
    """Event types written to the conflict audit log."""

    CREATED = "created"
    UPDATED = "updated"
    ITEM_ADDED = "item_added"
    ANALYZED = "analyzed"
    RESOLUTION_CREATED = "resolution_created"
    RESOLVED = "resolved"
    RESOLUTION_REVIEWED = "resolution_reviewed"
    RESOLUTION_SUPERSEDED = "resolution_superseded"
    DISMISSED = "dismissed"
    CLUSTER_ASSIGNED = "cluster_assigned"
    CLUSTER_CREATED = "cluster_created"
    CLUSTER_DEACTIVATED = "cluster_deactivated"
    EDGE_CREATED = "edge_created"
    REALITY_MAP_LINKED = "reality_map_linked"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class SourceEntityRef:
    """Reference to the entity a source subsystem reported on."""

    entity_type: str
    entity_id: str
    source_system: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.entity_type, self.entity_id)


@dataclass
class ConflictItem:
    """One normalized insight owned by exactly one conflict."""

    id: str
    conflict_id: str
    raw_insight: str
    source_system: str
    role: ItemRole = ItemRole.SECONDARY
    confidence: float | None = None
    source_entity_type: str | None = None
    source_entity_id: str | None = None
    processed_insight: str | None = None
    embedding: list[float] | None = None
    source_timestamp: datetime | None = None
    metric: str | None = None
    value: ClaimValue = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def text(self) -> str:
        """Text used for comparisons: processed when available."""
        return self.processed_insight or self.raw_insight

    @property
    def entity_key(self) -> tuple[str, str] | None:
        if self.source_entity_type and self.source_entity_id:
            return (self.source_entity_type, self.source_entity_id)
        return None

    @property
    def observed_at(self) -> datetime:
        return self.source_timestamp or self.created_at

    @property
    def declared_confidence(self) -> float:
        return 0.5 if self.confidence is None else self.confidence


@dataclass
class RootCause:
    cause: str
    confidence: float
    evidence: list[str] = field(default_factory=list)


@dataclass
class RelatedConflict:
    conflict_id: str
    edge_type: GraphEdgeType
    similarity: float


@dataclass
class AffectedSystemImpact:
    system: str
    impact_level: ConflictSeverity
    description: str


@dataclass
class VectorSimilarity:
    item_a_id: str
    item_b_id: str
    similarity: float
    approximate: bool = False


@dataclass
class ConflictAnalysisResult:
    """Output of one Analyzer run. Replaced wholesale on re-analysis."""

    severity_score: float
    severity: ConflictSeverity
    severity_rationale: str
    root_causes: list[RootCause] = field(default_factory=list)
    related_conflicts: list[RelatedConflict] = field(default_factory=list)
    suggested_strategy: ResolutionStrategy = ResolutionStrategy.AI_CONSENSUS
    difficulty: ResolutionDifficulty = ResolutionDifficulty.MODERATE
    affected_systems: list[AffectedSystemImpact] = field(default_factory=list)
    vector_similarities: list[VectorSimilarity] = field(default_factory=list)
    analyzed_at: datetime = field(default_factory=utcnow)


@dataclass
class RootCauseAnalysisResult:
    primary_cause: str
    contributing_causes: list[str] = field(default_factory=list)
    timeline: list[dict[str, Any]] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class Conflict:
    """Aggregate root for a detected disagreement between insights."""

    id: str
    organization_id: str
    conflict_type: ConflictType
    title: str
    severity: ConflictSeverity = ConflictSeverity.MEDIUM
    status: ConflictStatus = ConflictStatus.DETECTED
    summary: str | None = None
    source_entities: list[SourceEntityRef] = field(default_factory=list)
    affected_systems: list[str] = field(default_factory=list)
    analysis: ConflictAnalysisResult | None = None
    root_cause_analysis: RootCauseAnalysisResult | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    dismissed_at: datetime | None = None
    dismissed_by: str | None = None
    cluster_id: str | None = None
    cluster_similarity: float | None = None
    linked_reality_map_ids: list[str] = field(default_factory=list)
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def snapshot(self) -> dict[str, Any]:
        """State captured before/after a transition in the audit log."""
        return {
            "status": str(self.status),
            "severity": str(self.severity),
            "conflict_type": str(self.conflict_type),
            "title": self.title,
            "summary": self.summary,
            "affected_systems": list(self.affected_systems),
            "cluster_id": self.cluster_id,
            "resolved_at": self.resolved_at,
            "dismissed_at": self.dismissed_at,
        }


@dataclass
class RecommendedAction:
    action: str
    priority: ActionPriority = ActionPriority.MEDIUM
    target_system: str | None = None


@dataclass
class InsightConflictResolution:
    """A reconciled conclusion produced by one strategy."""

    id: str
    conflict_id: str
    strategy: ResolutionStrategy
    resolved_summary: str
    confidence: float
    rationale: str
    consensus_narrative: str | None = None
    resolved_value: ClaimValue = None
    recommended_actions: list[RecommendedAction] = field(default_factory=list)
    source_weights: dict[str, float] | None = None
    priority_order: list[str] | None = None
    model_name: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    is_reviewed: bool = False
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    is_accepted: bool = False
    accepted_at: datetime | None = None
    accepted_by: str | None = None
    superseded_at: datetime | None = None
    superseded_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class InsightConflictCluster:
    """Group of semantically similar conflicts tracked by a centroid."""

    id: str
    organization_id: str
    name: str
    description: str | None = None
    dominant_type: ConflictType | None = None
    average_severity: float = 0.0
    member_count: int = 0
    centroid: list[float] | None = None
    is_auto_generated: bool = False
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ConflictGraphEdge:
    """Persisted, directional edge between two conflicts."""

    id: str
    organization_id: str
    source_conflict_id: str
    target_conflict_id: str
    edge_type: GraphEdgeType
    weight: float = 1.0
    label: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class AuditLogEntry:
    """Append-only record of one state-changing operation."""

    id: str
    conflict_id: str | None
    event_type: AuditEventType
    actor_id: str | None
    actor_type: ActorType
    previous_state: Mapping[str, Any] | None
    new_state: Mapping[str, Any] | None
    details: Mapping[str, Any]
    created_at: datetime


@dataclass
class TrackedEntity:
    """An entity expected to receive insights on a fixed cadence."""

    organization_id: str
    entity_type: str
    entity_id: str
    expected_cadence: timedelta
    min_sources: int = 1
    source_systems: list[str] = field(default_factory=list)
    registered_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.entity_type, self.entity_id)


@dataclass
class InsightRecord:
    """An insight remembered after detection, used for comparison and backfill."""

    id: str
    organization_id: str
    raw_insight: str
    source_system: str
    confidence: float | None = None
    source_entity_type: str | None = None
    source_entity_id: str | None = None
    processed_insight: str | None = None
    embedding: list[float] | None = None
    source_timestamp: datetime | None = None
    metric: str | None = None
    value: ClaimValue = None
    metadata: dict[str, Any] = field(default_factory=dict)
    conflict_id: str | None = None
    recorded_at: datetime = field(default_factory=utcnow)

    @property
    def text(self) -> str:
        return self.processed_insight or self.raw_insight

    @property
    def entity_key(self) -> tuple[str, str] | None:
        if self.source_entity_type and self.source_entity_id:
            return (self.source_entity_type, self.source_entity_id)
        return None

    @property
    def observed_at(self) -> datetime:
        return self.source_timestamp or self.recorded_at
