"""Health check endpoint.

Reports overall status, the background cluster worker state and the
conflict repository's reachability.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from src.api.version import API_VERSION
from src.core.errors import ConflictEngineError

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/api/v1/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Check the health of the engine.

    Returns:
        JSON object with overall status and per-component health:
        {
            "status": "healthy" | "degraded",
            "services": {
                "repository": "up" | "down",
                "cluster_worker": "up" | "down" | "disabled"
            },
            "version": "0.1.0",
            "timestamp": "..."
        }
    """
    services: dict[str, str] = {}

    try:
        orchestrator = request.app.state.orchestrator
        await orchestrator.repository.list_clusters()
        services["repository"] = "up"
    except (ConflictEngineError, AttributeError):
        logger.warning("Repository health check failed")
        services["repository"] = "down"

    tasks = getattr(request.app.state, "worker_tasks", [])
    if not tasks:
        services["cluster_worker"] = "disabled"
    elif all(not t.done() for t in tasks):
        services["cluster_worker"] = "up"
    else:
        services["cluster_worker"] = "down"

    overall = "healthy" if "down" not in services.values() else "degraded"
    return {
        "status": overall,
        "services": services,
        "version": API_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
    }
