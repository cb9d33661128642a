"""Pydantic schemas for the insight conflict API.

Read models are built from the engine's dataclass records with
``from_attributes``. Request bodies that map one-to-one onto an engine
input reuse the input model from ``src.core.models.inputs``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.core.models.conflict import (
    ActionPriority,
    ActorType,
    AuditEventType,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    ExportFormat,
    GraphEdgeType,
    ItemRole,
    ResolutionDifficulty,
    ResolutionStrategy,
)
from src.core.models.inputs import AnalyzeOptions, DetectionConfig, ResolveOptions, TimeRange

# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


class SourceEntityRefRead(BaseModel):
    model_config = {"from_attributes": True}

    entity_type: str
    entity_id: str
    source_system: str | None = None


class ConflictItemRead(BaseModel):
    """Schema for reading one insight attached to a conflict."""

    model_config = {"from_attributes": True}

    id: str
    conflict_id: str
    raw_insight: str
    processed_insight: str | None = None
    source_system: str
    role: ItemRole
    confidence: float | None = None
    source_entity_type: str | None = None
    source_entity_id: str | None = None
    source_timestamp: datetime | None = None
    metric: str | None = None
    value: bool | float | str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class RootCauseRead(BaseModel):
    model_config = {"from_attributes": True}

    cause: str
    confidence: float
    evidence: list[str] = Field(default_factory=list)


class RelatedConflictRead(BaseModel):
    model_config = {"from_attributes": True}

    conflict_id: str
    edge_type: GraphEdgeType
    similarity: float


class AffectedSystemImpactRead(BaseModel):
    model_config = {"from_attributes": True}

    system: str
    impact_level: ConflictSeverity
    description: str


class VectorSimilarityRead(BaseModel):
    model_config = {"from_attributes": True}

    item_a_id: str
    item_b_id: str
    similarity: float
    approximate: bool = False


class AnalysisRead(BaseModel):
    """Schema for the latest analysis of a conflict."""

    model_config = {"from_attributes": True}

    severity_score: float
    severity: ConflictSeverity
    severity_rationale: str
    root_causes: list[RootCauseRead] = Field(default_factory=list)
    related_conflicts: list[RelatedConflictRead] = Field(default_factory=list)
    suggested_strategy: ResolutionStrategy
    difficulty: ResolutionDifficulty
    affected_systems: list[AffectedSystemImpactRead] = Field(default_factory=list)
    vector_similarities: list[VectorSimilarityRead] = Field(default_factory=list)
    analyzed_at: datetime


class RootCauseAnalysisRead(BaseModel):
    model_config = {"from_attributes": True}

    primary_cause: str
    contributing_causes: list[str] = Field(default_factory=list)
    timeline: list[dict[str, Any]] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: float


class ConflictRead(BaseModel):
    """Schema for reading a conflict."""

    model_config = {"from_attributes": True}

    id: str
    organization_id: str
    conflict_type: ConflictType
    severity: ConflictSeverity
    status: ConflictStatus
    title: str
    summary: str | None = None
    source_entities: list[SourceEntityRefRead] = Field(default_factory=list)
    affected_systems: list[str] = Field(default_factory=list)
    analysis: AnalysisRead | None = None
    root_cause_analysis: RootCauseAnalysisRead | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    dismissed_at: datetime | None = None
    dismissed_by: str | None = None
    cluster_id: str | None = None
    cluster_similarity: float | None = None
    linked_reality_map_ids: list[str] = Field(default_factory=list)
    version: int
    created_at: datetime
    updated_at: datetime


class RecommendedActionRead(BaseModel):
    model_config = {"from_attributes": True}

    action: str
    priority: ActionPriority
    target_system: str | None = None


class ResolutionRead(BaseModel):
    """Schema for reading a resolution."""

    model_config = {"from_attributes": True}

    id: str
    conflict_id: str
    strategy: ResolutionStrategy
    resolved_summary: str
    resolved_value: bool | float | str | None = None
    confidence: float
    rationale: str
    consensus_narrative: str | None = None
    recommended_actions: list[RecommendedActionRead] = Field(default_factory=list)
    source_weights: dict[str, float] | None = None
    priority_order: list[str] | None = None
    model_name: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    is_reviewed: bool
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    is_accepted: bool
    accepted_at: datetime | None = None
    accepted_by: str | None = None
    superseded_at: datetime | None = None
    superseded_by: str | None = None
    created_at: datetime


class ClusterRead(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    organization_id: str
    name: str
    description: str | None = None
    dominant_type: ConflictType | None = None
    average_severity: float
    member_count: int
    is_auto_generated: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime


class GraphEdgeRecordRead(BaseModel):
    """Schema for reading a persisted conflict-to-conflict edge."""

    model_config = {"from_attributes": True}

    id: str
    organization_id: str
    source_conflict_id: str
    target_conflict_id: str
    edge_type: GraphEdgeType
    weight: float
    label: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class GraphNodeRead(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    type: str
    label: str
    data: dict[str, Any] = Field(default_factory=dict)


class GraphEdgeRead(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    source: str
    target: str
    type: str
    weight: float
    label: str | None = None
    persisted: bool = False


class GraphDataRead(BaseModel):
    model_config = {"from_attributes": True}

    nodes: list[GraphNodeRead]
    edges: list[GraphEdgeRead]
    metadata: dict[str, Any]


class AuditEntryRead(BaseModel):
    id: str
    conflict_id: str | None = None
    event_type: AuditEventType
    actor_id: str | None = None
    actor_type: ActorType
    previous_state: dict[str, Any] | None = None
    new_state: dict[str, Any] | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class TrackedEntityRead(BaseModel):
    model_config = {"from_attributes": True}

    organization_id: str
    entity_type: str
    entity_id: str
    min_sources: int
    source_systems: list[str] = Field(default_factory=list)
    registered_at: datetime


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class ReviewRequest(BaseModel):
    """Schema for accepting or rejecting a resolution."""

    accept: bool
    notes: str | None = Field(default=None, max_length=2000)


class DismissRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class SourcePayloadsRequest(BaseModel):
    """Raw subsystem payloads routed through the source normalizer."""

    organization_id: str = Field(min_length=1, max_length=255)
    payloads: list[dict[str, Any]] = Field(min_length=1, max_length=1000)


class DetectionRequest(BaseModel):
    organization_id: str = Field(min_length=1, max_length=255)
    config: DetectionConfig = Field(default_factory=DetectionConfig)
    target_systems: list[str] | None = None
    time_range: TimeRange | None = None


class BatchAnalyzeRequest(BaseModel):
    conflict_ids: list[str] = Field(min_length=1, max_length=100)
    options: AnalyzeOptions = Field(default_factory=AnalyzeOptions)


class BatchResolveRequest(BaseModel):
    conflict_ids: list[str] = Field(min_length=1, max_length=100)
    strategy: ResolutionStrategy | None = None
    options: ResolveOptions = Field(default_factory=ResolveOptions)


class BatchDismissRequest(BaseModel):
    conflict_ids: list[str] = Field(min_length=1, max_length=100)
    reason: str | None = Field(default=None, max_length=2000)


class RealityMapLinkRequest(BaseModel):
    reality_map_ids: list[str] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ConflictDetailResponse(BaseModel):
    """A conflict with its items, resolutions and related conflicts."""

    conflict: ConflictRead
    items: list[ConflictItemRead]
    resolutions: list[ResolutionRead]
    related_conflicts: list[RelatedConflictRead]


class ConflictListResponse(BaseModel):
    """Paginated response for conflict listings."""

    conflicts: list[ConflictRead]
    total: int
    has_more: bool
    limit: int
    offset: int


class InsightBatchResponse(BaseModel):
    conflicts_created: list[ConflictRead]
    conflicts_extended: list[ConflictRead]
    independent_count: int
    skipped_count: int


class AnalyzeResponse(BaseModel):
    conflict: ConflictRead
    analysis: AnalysisRead


class ResolveResponse(BaseModel):
    conflict: ConflictRead
    resolution: ResolutionRead


class BatchResult(BaseModel):
    conflict_id: str
    success: bool
    error: dict[str, Any] | None = None


class BatchResponse(BaseModel):
    """Per-id outcome of a batch operation."""

    results: list[BatchResult]
    total_processed: int
    success_count: int
    error_count: int


class DetectionError(BaseModel):
    source: str
    error: str
    timestamp: datetime


class DetectionResponse(BaseModel):
    conflicts_detected: int
    conflicts: list[ConflictRead]
    errors: list[DetectionError]
    processing_time_ms: float
    sources_scanned: int


class ConflictStatsResponse(BaseModel):
    total: int
    by_type: dict[str, int]
    by_severity: dict[str, int]
    by_status: dict[str, int]
    open_count: int
    cluster_count: int
    active_cluster_count: int
    average_resolution_time_hours: float | None = None
    resolution_rate: float


class AuditLogResponse(BaseModel):
    entries: list[AuditEntryRead]
    total: int
    has_more: bool


class ClusterRecomputeResponse(BaseModel):
    assigned: int
    created: int
    orphaned: int
    clusters: list[ClusterRead]


class ExportResponse(BaseModel):
    export_id: str
    url: str | None = None
    expires_at: datetime
    format: ExportFormat
    conflict_count: int
