"""Domain records for the insight conflict engine.

This package re-exports all records and enums from the domain modules
so that callers can use ``from src.core.models import X``.
"""

from src.core.models.conflict import (
    OPEN_STATUSES,
    SEVERITY_RANK,
    ActionPriority,
    ActorType,
    AffectedSystemImpact,
    AuditEventType,
    AuditLogEntry,
    ClaimValue,
    Conflict,
    ConflictAnalysisResult,
    ConflictGraphEdge,
    ConflictItem,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    ExportFormat,
    GraphEdgeType,
    InsightConflictCluster,
    InsightConflictResolution,
    InsightRecord,
    ItemRole,
    RecommendedAction,
    RelatedConflict,
    ResolutionDifficulty,
    ResolutionStrategy,
    RootCause,
    RootCauseAnalysisResult,
    SourceEntityRef,
    TrackedEntity,
    VectorSimilarity,
    new_id,
    utcnow,
)
from src.core.models.inputs import (
    AnalyzeOptions,
    ConflictItemInput,
    CreateClusterInput,
    CreateConflictInput,
    CreateGraphEdgeInput,
    DetectionConfig,
    ExportConfig,
    InsightBatchInput,
    ListConflictsQuery,
    ResolveOptions,
    SourceEntityRefInput,
    TimeRange,
    TrackEntityInput,
    UpdateConflictInput,
    parse_input,
)

__all__ = [
    "OPEN_STATUSES",
    "SEVERITY_RANK",
    "ActionPriority",
    "ActorType",
    "AffectedSystemImpact",
    "AnalyzeOptions",
    "AuditEventType",
    "AuditLogEntry",
    "ClaimValue",
    "Conflict",
    "ConflictAnalysisResult",
    "ConflictGraphEdge",
    "ConflictItem",
    "ConflictItemInput",
    "ConflictSeverity",
    "ConflictStatus",
    "ConflictType",
    "CreateClusterInput",
    "CreateConflictInput",
    "CreateGraphEdgeInput",
    "DetectionConfig",
    "ExportConfig",
    "ExportFormat",
    "GraphEdgeType",
    "InsightBatchInput",
    "InsightConflictCluster",
    "InsightConflictResolution",
    "InsightRecord",
    "ItemRole",
    "ListConflictsQuery",
    "RecommendedAction",
    "RelatedConflict",
    "ResolutionDifficulty",
    "ResolutionStrategy",
    "ResolveOptions",
    "RootCause",
    "RootCauseAnalysisResult",
    "SourceEntityRef",
    "SourceEntityRefInput",
    "TimeRange",
    "TrackEntityInput",
    "TrackedEntity",
    "UpdateConflictInput",
    "VectorSimilarity",
    "new_id",
    "parse_input",
    "utcnow",
]
