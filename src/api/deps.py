"""Shared FastAPI dependencies.

Provides the conflict orchestrator and the calling actor used by all route
files.
"""

from __future__ import annotations

from fastapi import Header, Query, Request

from src.conflicts.orchestrator import ConflictOrchestrator


def get_orchestrator(request: Request) -> ConflictOrchestrator:
    """Get the orchestrator created by the application lifespan."""
    return request.app.state.orchestrator


def get_actor_id(x_actor_id: str | None = Header(default=None, max_length=255)) -> str | None:
    """Identity of the caller, taken from the ``X-Actor-Id`` header.

    Authentication happens upstream; the engine records the id on audit
    entries and review fields.
    """
    return x_actor_id


def get_timeout(
    timeout: float | None = Query(None, gt=0, le=300, description="Operation timeout in seconds"),
) -> float | None:
    return timeout
