"""Conflict cluster routes.

Manual clusters, deactivation and on-demand recompute. Automatic clusters
are also produced by the background worker started in the lifespan.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, status

from src.api.deps import get_actor_id, get_orchestrator
from src.api.schemas.conflict import ClusterRead, ClusterRecomputeResponse
from src.conflicts.orchestrator import ConflictOrchestrator
from src.core.models import CreateClusterInput

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["clusters"])


# ---------------------------------------------------------------------------
# GET /api/v1/clusters
# ---------------------------------------------------------------------------


@router.get(
    "/clusters",
    response_model=list[ClusterRead],
    summary="List conflict clusters",
)
async def list_clusters(
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    organization_id: str | None = Query(None, description="Filter by organization"),
    active_only: bool = Query(False, description="Only active clusters"),
) -> Any:
    clusters = await orchestrator.list_clusters(organization_id, active_only=active_only)
    return [ClusterRead.model_validate(c) for c in clusters]


# ---------------------------------------------------------------------------
# POST /api/v1/clusters
# ---------------------------------------------------------------------------


@router.post(
    "/clusters",
    response_model=ClusterRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a manual cluster",
)
async def create_cluster(
    body: CreateClusterInput,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
) -> Any:
    """Create a cluster and move the listed conflicts into it."""
    cluster = await orchestrator.create_cluster(body, actor_id=actor_id)
    return ClusterRead.model_validate(cluster)


# ---------------------------------------------------------------------------
# POST /api/v1/clusters/recompute
# ---------------------------------------------------------------------------


@router.post(
    "/clusters/recompute",
    response_model=ClusterRecomputeResponse,
    summary="Recompute cluster membership",
)
async def recompute_clusters(
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    organization_id: str | None = Query(None, description="Limit the pass to one organization"),
) -> dict[str, Any]:
    result = await orchestrator.recompute_clusters(organization_id)
    return {**result, "clusters": [ClusterRead.model_validate(c) for c in result["clusters"]]}


# ---------------------------------------------------------------------------
# POST /api/v1/clusters/{cluster_id}/deactivate
# ---------------------------------------------------------------------------


@router.post(
    "/clusters/{cluster_id}/deactivate",
    response_model=ClusterRead,
    summary="Deactivate a cluster",
)
async def deactivate_cluster(
    cluster_id: str,
    orchestrator: ConflictOrchestrator = Depends(get_orchestrator),
    actor_id: str | None = Depends(get_actor_id),
) -> Any:
    """Members of a deactivated cluster become unclustered on the next recompute."""
    cluster = await orchestrator.deactivate_cluster(cluster_id, actor_id=actor_id)
    logger.info("Cluster %s deactivated via API", cluster_id)
    return ClusterRead.model_validate(cluster)
