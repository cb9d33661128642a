"""Insight conflict engine FastAPI application entry point.

Configures the FastAPI app with:
- CORS middleware
- Lifespan events creating the orchestrator and the cluster worker
- Route registration (conflicts, clusters, health)
- Engine error to HTTP status mapping
- OpenAPI documentation at /docs (debug mode only)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.routes import clusters, conflicts, health
from src.api.version import API_VERSION
from src.conflicts.orchestrator import ConflictOrchestrator
from src.core.config import get_settings
from src.core.errors import ConflictEngineError
from src.core.logging_config import configure_logging

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[str, int] = {
    "validation_error": 422,
    "not_found": 404,
    "state_conflict": 409,
    "concurrency_error": 409,
    "generation_error": 502,
    "timeout": 504,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown.

    On startup: configure logging, build the orchestrator unless one was
    injected, start the cluster recompute worker.
    On shutdown: stop the worker gracefully.
    """
    settings = get_settings()
    configure_logging(settings)

    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = ConflictOrchestrator(settings)
        logger.info("Conflict orchestrator initialized")
    orchestrator = app.state.orchestrator

    # -- Cluster Worker ---
    shutdown_event = asyncio.Event()
    app.state.worker_shutdown = shutdown_event
    worker_tasks = []

    if settings.cluster_recompute_interval_seconds > 0:
        from src.conflicts.worker import run_worker

        task = asyncio.create_task(
            run_worker(orchestrator, settings.cluster_recompute_interval_seconds, shutdown_event)
        )
        worker_tasks.append(task)
        logger.info("Started cluster worker")

    app.state.worker_tasks = worker_tasks

    yield

    # -- Shutdown ---
    shutdown_event.set()
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        await asyncio.gather(*worker_tasks, return_exceptions=True)
        logger.info("Cluster worker stopped")


def create_app(orchestrator: ConflictOrchestrator | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    An ``orchestrator`` passed in is used instead of the one the lifespan
    would build, so tests can share one with the app.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Detects, analyzes and resolves conflicts between insights from independent subsystems",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Actor-Id", "Accept"],
    )

    app.include_router(health.router)
    app.include_router(conflicts.router)
    app.include_router(clusters.router)

    # -- Error Handlers ---
    @app.exception_handler(ConflictEngineError)
    async def engine_error_handler(request: Request, exc: ConflictEngineError) -> JSONResponse:
        status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
        if status_code >= 500:
            logger.warning("Engine error on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})

    @app.exception_handler(Exception)  # Intentionally broad: top-level global error handler
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": {"kind": "internal_error", "message": "Internal server error", "conflict_id": None}},
        )

    return app


# Application instance used by uvicorn
app = create_app()
