"""Insight conflict routes.

Exposes detection, analysis, resolution, review, dismissal, batch
operations, graph, statistics and export of insight conflicts. Every
handler delegates to the ConflictOrchestrator on ``app.state``; engine
errors are mapped to HTTP responses by the application's exception handler.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status

from src.api.deps import get_actor_id, get_orchestrator, get_timeout
from src.api.schemas.conflict import (
    AnalysisRead,
    AnalyzeResponse,
    AuditLogResponse,
    BatchAnalyzeRequest,
    BatchDismissRequest,
    BatchResolveRequest,
    BatchResponse,
    ConflictDetailResponse,
    ConflictItemRead,
    ConflictListResponse,
    ConflictRead,
    ConflictStatsResponse,
    DetectionRequest,
    DetectionResponse,
    DismissRequest,
    ExportResponse,
    GraphDataRead,
    GraphEdgeRecordRead,
    InsightBatchResponse,
    RealityMapLinkRequest,
    RelatedConflictRead,
    ResolutionRead,
    ResolveResponse,
    ReviewRequest,
    SourcePayloadsRequest,
    TrackedEntityRead,
)
from src.conflicts.audit import entry_to_dict
from src.conflicts.orchestrator import ConflictOrchestrator
from src.core.models import (
    ActorType,
    AnalyzeOptions,
    AuditEventType,
    Conflict,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    CreateConflictInput,
    CreateGraphEdgeInput,
    ExportConfig,
    InsightBatchInput,
    ResolveOptions,
    TrackEntityInput,
    UpdateConflictInput,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["conflicts"])


def _conflict_to_read(conflict: Conflict) -> ConflictRead:
    return ConflictRead.model_validate(conflict)


# ---------------------------------------------------------------------------
# POST /api/v1/conflicts
# ---------------------------------------------------------------------------


@router.post(
    "/conflicts",
    response_model=ConflictRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a conflict manually",
)
async def create_conflict(
    body: CreateConflictInput,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> Any:
    """Create a conflict from caller-supplied items without running detection."""
    conflict = await orchestrator.create_conflict(body, actor_id=actor_id, timeout=timeout)
    return _conflict_to_read(conflict)


# ---------------------------------------------------------------------------
# POST /api/v1/conflicts/insights
# ---------------------------------------------------------------------------


@router.post(
    "/conflicts/insights",
    response_model=InsightBatchResponse,
    summary="Push a batch of normalized insights through detection",
)
async def push_insights(
    body: InsightBatchInput,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> dict[str, Any]:
    result = await orchestrator.push_insight_batch(body, actor_id=actor_id, timeout=timeout)
    return {
        **result,
        "conflicts_created": [_conflict_to_read(c) for c in result["conflicts_created"]],
        "conflicts_extended": [_conflict_to_read(c) for c in result["conflicts_extended"]],
    }


@router.post(
    "/conflicts/sources/{source_system}",
    response_model=InsightBatchResponse,
    summary="Push raw subsystem payloads through normalization and detection",
)
async def push_source_payloads(
    source_system: str,
    body: SourcePayloadsRequest,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> dict[str, Any]:
    """Normalize payloads with the adapter registered for ``source_system``."""
    result = await orchestrator.push_source_payloads(
        body.organization_id, source_system, body.payloads, actor_id=actor_id, timeout=timeout
    )
    return {
        **result,
        "conflicts_created": [_conflict_to_read(c) for c in result["conflicts_created"]],
        "conflicts_extended": [_conflict_to_read(c) for c in result["conflicts_extended"]],
    }


# ---------------------------------------------------------------------------
# GET /api/v1/conflicts
# ---------------------------------------------------------------------------


@router.get(
    "/conflicts",
    response_model=ConflictListResponse,
    summary="List conflicts",
)
async def list_conflicts(
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    organization_id: str | None = Query(None, description="Filter by organization"),
    conflict_type: list[ConflictType] | None = Query(None, description="Filter by conflict type"),
    severity: list[ConflictSeverity] | None = Query(None, description="Filter by severity"),
    conflict_status: list[ConflictStatus] | None = Query(None, alias="status", description="Filter by status"),
    affected_system: str | None = Query(None, description="Filter by affected system"),
    cluster_id: str | None = Query(None, description="Filter by cluster"),
    has_resolution: bool | None = Query(None, description="Only conflicts with (or without) resolutions"),
    search: str | None = Query(None, max_length=255, description="Free text over title and summary"),
    sort_by: str = Query("created_at", pattern="^(created_at|updated_at|severity|status)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    limit: int = Query(20, ge=1, le=100, description="Page size"),
    offset: int = Query(0, ge=0, description="Page offset"),
) -> dict[str, Any]:
    """Return conflicts with filtering, sorting and pagination."""
    result = await orchestrator.list_conflicts({
        "organization_id": organization_id,
        "conflict_type": conflict_type,
        "severity": severity,
        "status": conflict_status,
        "affected_system": affected_system,
        "cluster_id": cluster_id,
        "has_resolution": has_resolution,
        "search": search,
        "sort_by": sort_by,
        "sort_order": sort_order,
        "limit": limit,
        "offset": offset,
    })
    return {
        "conflicts": [_conflict_to_read(c) for c in result["conflicts"]],
        "total": result["total"],
        "has_more": result["has_more"],
        "limit": limit,
        "offset": offset,
    }


# ---------------------------------------------------------------------------
# GET /api/v1/conflicts/stats
# ---------------------------------------------------------------------------


@router.get(
    "/conflicts/stats",
    response_model=ConflictStatsResponse,
    summary="Conflict statistics",
)
async def get_conflict_stats(
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    organization_id: str | None = Query(None, description="Filter by organization"),
) -> dict[str, Any]:
    return await orchestrator.get_conflict_stats(organization_id)


# ---------------------------------------------------------------------------
# GET /api/v1/conflicts/graph
# ---------------------------------------------------------------------------


@router.get(
    "/conflicts/graph",
    response_model=GraphDataRead,
    summary="Conflict graph for visualization",
)
async def get_conflict_graph(
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    conflict_ids: list[str] | None = Query(None, description="Conflicts to include"),
    organization_id: str | None = Query(None, description="Include every conflict of an organization"),
) -> Any:
    graph = await orchestrator.get_conflict_graph(conflict_ids, organization_id)
    return GraphDataRead.model_validate(graph)




# ---------------------------------------------------------------------------
# POST /api/v1/conflicts/detect
# ---------------------------------------------------------------------------


@router.post(
    "/conflicts/detect",
    response_model=DetectionResponse,
    summary="Run detection over remembered insights",
)
async def run_detection(
    body: DetectionRequest,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> dict[str, Any]:
    """Replay unconflicted insights and backfill missing-data conflicts.

    Per-source failures are reported in ``errors`` rather than failing
    the whole run.
    """
    result = await orchestrator.run_detection(
        body.organization_id,
        config=body.config,
        target_systems=body.target_systems,
        time_range=body.time_range,
        actor_id=actor_id,
        actor_type=ActorType.USER if actor_id else ActorType.SYSTEM,
        timeout=timeout,
    )
    return {**result, "conflicts": [_conflict_to_read(c) for c in result["conflicts"]]}


# ---------------------------------------------------------------------------
# POST /api/v1/conflicts/entities
# ---------------------------------------------------------------------------


@router.post(
    "/conflicts/entities",
    response_model=TrackedEntityRead,
    status_code=status.HTTP_201_CREATED,
    summary="Track an entity for missing-data detection",
)
async def track_entity(
    body: TrackEntityInput,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
) -> Any:
    tracked = await orchestrator.track_entity(body)
    return TrackedEntityRead.model_validate(tracked)


# ---------------------------------------------------------------------------
# POST /api/v1/conflicts/export
# ---------------------------------------------------------------------------


@router.post(
    "/conflicts/export",
    response_model=ExportResponse,
    summary="Export conflicts",
)
async def export_conflicts(
    body: ExportConfig,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return await orchestrator.export(body)


@router.get(
    "/conflicts/exports/{export_id}",
    summary="Download an export artifact",
    response_class=Response,
)
async def download_export(
    export_id: str,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Return the artifact body until it expires."""
    artifact = await orchestrator.get_export(export_id)
    return Response(
        content=artifact.content,
        media_type=artifact.content_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )


# ---------------------------------------------------------------------------
# POST /api/v1/conflicts/batch/{operation}
# ---------------------------------------------------------------------------


@router.post(
    "/conflicts/batch/analyze",
    response_model=BatchResponse,
    summary="Analyze several conflicts",
)
async def batch_analyze(
    body: BatchAnalyzeRequest,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> dict[str, Any]:
    return await orchestrator.batch_analyze(body.conflict_ids, body.options, actor_id=actor_id, timeout=timeout)


@router.post(
    "/conflicts/batch/resolve",
    response_model=BatchResponse,
    summary="Resolve several conflicts",
)
async def batch_resolve(
    body: BatchResolveRequest,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> dict[str, Any]:
    return await orchestrator.batch_resolve(
        body.conflict_ids, body.strategy, body.options, actor_id=actor_id, timeout=timeout
    )


@router.post(
    "/conflicts/batch/dismiss",
    response_model=BatchResponse,
    summary="Dismiss several conflicts",
)
async def batch_dismiss(
    body: BatchDismissRequest,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> dict[str, Any]:
    return await orchestrator.batch_dismiss(body.conflict_ids, body.reason, actor_id=actor_id, timeout=timeout)


# ---------------------------------------------------------------------------
# /api/v1/conflicts/edges
# ---------------------------------------------------------------------------


@router.post(
    "/conflicts/edges",
    response_model=GraphEdgeRecordRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create an edge between two conflicts",
)
async def create_graph_edge(
    body: CreateGraphEdgeInput,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
) -> Any:
    edge = await orchestrator.create_graph_edge(body, actor_id=actor_id)
    return GraphEdgeRecordRead.model_validate(edge)


@router.get(
    "/conflicts/edges",
    response_model=list[GraphEdgeRecordRead],
    summary="List persisted conflict edges",
)
async def list_graph_edges(
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    organization_id: str | None = Query(None, description="Filter by organization"),
    conflict_id: str | None = Query(None, description="Edges touching this conflict"),
) -> Any:
    edges = await orchestrator.list_graph_edges(organization_id, conflict_id)
    return [GraphEdgeRecordRead.model_validate(e) for e in edges]


# ---------------------------------------------------------------------------
# GET /api/v1/conflicts/{conflict_id}
# ---------------------------------------------------------------------------


@router.get(
    "/conflicts/{conflict_id}",
    response_model=ConflictDetailResponse,
    summary="Get a conflict with its items and resolutions",
)
async def get_conflict(
    conflict_id: str,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    detail = await orchestrator.get_conflict(conflict_id)
    return {
        "conflict": _conflict_to_read(detail["conflict"]),
        "items": [ConflictItemRead.model_validate(i) for i in detail["items"]],
        "resolutions": [ResolutionRead.model_validate(r) for r in detail["resolutions"]],
        "related_conflicts": [RelatedConflictRead.model_validate(r) for r in detail["related_conflicts"]],
    }


@router.patch(
    "/conflicts/{conflict_id}",
    response_model=ConflictRead,
    summary="Update conflict details",
)
async def update_conflict(
    conflict_id: str,
    body: UpdateConflictInput,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> Any:
    """Update title, summary, affected systems or source entities.

    Status and severity only change through analysis, resolution and
    dismissal.
    """
    conflict = await orchestrator.update_conflict(conflict_id, body, actor_id=actor_id, timeout=timeout)
    return _conflict_to_read(conflict)


@router.get(
    "/conflicts/{conflict_id}/items",
    response_model=list[ConflictItemRead],
    summary="List the insights of a conflict",
)
async def list_conflict_items(
    conflict_id: str,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
) -> Any:
    return [ConflictItemRead.model_validate(i) for i in await orchestrator.list_items(conflict_id)]


@router.get(
    "/conflicts/{conflict_id}/resolutions",
    response_model=list[ResolutionRead],
    summary="List the resolutions of a conflict",
)
async def list_conflict_resolutions(
    conflict_id: str,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
) -> Any:
    return [ResolutionRead.model_validate(r) for r in await orchestrator.list_resolutions(conflict_id)]


# ---------------------------------------------------------------------------
# GET /api/v1/conflicts/{conflict_id}/audit
# ---------------------------------------------------------------------------


@router.get(
    "/conflicts/{conflict_id}/audit",
    response_model=AuditLogResponse,
    summary="Audit trail of a conflict",
)
async def list_audit_log(
    conflict_id: str,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    event_type: list[AuditEventType] | None = Query(None, description="Filter by event type"),
    actor_type: ActorType | None = Query(None, description="Filter by actor type"),
    limit: int = Query(50, ge=1, le=500, description="Page size"),
    offset: int = Query(0, ge=0, description="Page offset"),
) -> dict[str, Any]:
    result = await orchestrator.list_audit_log(
        conflict_id,
        event_types=set(event_type) if event_type else None,
        actor_type=actor_type,
        limit=limit,
        offset=offset,
    )
    return {**result, "entries": [entry_to_dict(e) for e in result["entries"]]}


# ---------------------------------------------------------------------------
# POST /api/v1/conflicts/{conflict_id}/analyze
# ---------------------------------------------------------------------------


@router.post(
    "/conflicts/{conflict_id}/analyze",
    response_model=AnalyzeResponse,
    summary="Analyze a conflict",
)
async def analyze_conflict(
    conflict_id: str,
    body: AnalyzeOptions | None = None,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> dict[str, Any]:
    """Score severity, find root causes and related conflicts.

    Re-analysis replaces the previous result.
    """
    result = await orchestrator.analyze_conflict(
        conflict_id,
        body,
        actor_id=actor_id,
        actor_type=ActorType.USER if actor_id else ActorType.SYSTEM,
        timeout=timeout,
    )
    return {
        "conflict": _conflict_to_read(result["conflict"]),
        "analysis": AnalysisRead.model_validate(result["analysis"]),
    }


# ---------------------------------------------------------------------------
# POST /api/v1/conflicts/{conflict_id}/resolve
# ---------------------------------------------------------------------------


@router.post(
    "/conflicts/{conflict_id}/resolve",
    response_model=ResolveResponse,
    summary="Resolve a conflict",
)
async def resolve_conflict(
    conflict_id: str,
    body: ResolveOptions | None = None,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> dict[str, Any]:
    """Produce a resolution with the requested or suggested strategy.

    The resolution is accepted immediately only when ``auto_accept`` is set;
    otherwise it awaits review.
    """
    options = body or ResolveOptions()
    result = await orchestrator.resolve_conflict(
        conflict_id, options.strategy, options, actor_id=actor_id, timeout=timeout
    )
    return {
        "conflict": _conflict_to_read(result["conflict"]),
        "resolution": ResolutionRead.model_validate(result["resolution"]),
    }


# ---------------------------------------------------------------------------
# POST /api/v1/conflicts/{conflict_id}/dismiss
# ---------------------------------------------------------------------------


@router.post(
    "/conflicts/{conflict_id}/dismiss",
    response_model=ConflictRead,
    summary="Dismiss a conflict",
)
async def dismiss_conflict(
    conflict_id: str,
    body: DismissRequest | None = None,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> Any:
    reason = body.reason if body else None
    conflict = await orchestrator.dismiss_conflict(conflict_id, reason, actor_id=actor_id, timeout=timeout)
    return _conflict_to_read(conflict)


@router.post(
    "/conflicts/{conflict_id}/reality-maps",
    response_model=ConflictRead,
    summary="Link reality maps to a conflict",
)
async def link_reality_maps(
    conflict_id: str,
    body: RealityMapLinkRequest,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> Any:
    conflict = await orchestrator.link_reality_map(
        conflict_id, body.reality_map_ids, actor_id=actor_id, timeout=timeout
    )
    return _conflict_to_read(conflict)


# ---------------------------------------------------------------------------
# POST /api/v1/resolutions/{resolution_id}/review
# ---------------------------------------------------------------------------


@router.post(
    "/resolutions/{resolution_id}/review",
    response_model=ResolveResponse,
    summary="Accept or reject a resolution",
)
async def review_resolution(
    resolution_id: str,
    body: ReviewRequest,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
    timeout: float | None = Depends(get_timeout),
) -> dict[str, Any]:
    """Review a resolution.

    Accepting moves the conflict to resolved and supersedes any earlier
    accepted resolution. Rejecting leaves the conflict open.
    """
    result = await orchestrator.review_resolution(
        resolution_id, body.accept, body.notes, actor_id=actor_id, timeout=timeout
    )
    return {
        "conflict": _conflict_to_read(result["conflict"]),
        "resolution": ResolutionRead.model_validate(result["resolution"]),
    }
