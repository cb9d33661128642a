"""Background cluster recompute worker.

Runs ``ConflictOrchestrator.recompute_clusters`` on a fixed interval until
the shutdown event is set. Cluster recompute only writes cluster records
and assignments, so it runs alongside per-conflict mutations.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from src.conflicts.orchestrator import ConflictOrchestrator

logger = logging.getLogger(__name__)


async def run_cluster_pass(orchestrator: ConflictOrchestrator) -> dict[str, Any]:
    """Run one recompute pass over every organization."""
    result = await orchestrator.recompute_clusters()
    logger.info(
        "Cluster pass: %d assigned, %d created, %d orphaned",
        result["assigned"],
        result["created"],
        result["orphaned"],
    )
    return result


async def run_worker(
    orchestrator: ConflictOrchestrator,
    interval_seconds: float,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Run the cluster recompute loop.

    Stops when shutdown_event is set. A failed pass is logged and retried
    on the next interval.
    """
    if shutdown_event is None:
        shutdown_event = asyncio.Event()
    logger.info("Cluster worker started (interval %.0fs)", interval_seconds)

    while not shutdown_event.is_set():
        try:
            await run_cluster_pass(orchestrator)
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("Cluster pass failed, retrying in %.0fs", interval_seconds)

        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)

    logger.info("Cluster worker stopped")
