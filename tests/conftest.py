"""Shared test fixtures for the insight conflict engine test suite.

Provides test settings, a controllable clock, a stub narrative generator,
an orchestrator over the in-memory repository and a FastAPI test client
sharing that orchestrator.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from src.conflicts.generation import GenerationResult
from src.conflicts.orchestrator import ConflictOrchestrator
from src.conflicts.repository import InMemoryConflictRepository
from src.core.config import Settings
from src.core.models import ActionPriority, RecommendedAction

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock the tests move forward explicitly."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def _insight(
    text: str,
    source: str,
    embedding: list[float] | None = None,
    entity: tuple[str, str] | None = ("brand", "acme"),
    **fields: Any,
) -> dict[str, Any]:
    """Canonical insight payload for pushes and manual creation."""
    payload: dict[str, Any] = {"raw_insight": text, "source_system": source}
    if embedding is not None:
        payload["embedding"] = embedding
    if entity is not None:
        payload["source_entity_type"], payload["source_entity_id"] = entity
    payload.update(fields)
    return payload


@pytest.fixture
def make_insight() -> Any:
    """Factory for canonical insight payloads."""
    return _insight


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings that never reach the network or start workers."""
    return Settings(
        app_env="testing",
        debug=False,
        cors_origins=["http://localhost:3000"],
        cluster_recompute_interval_seconds=0,
        llm_retry_base_delay=0.0,
        llm_max_retries=1,
        lock_timeout_seconds=2.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def generation_result() -> GenerationResult:
    return GenerationResult(
        narrative="Both sources describe the launch; the positive reading is better supported.",
        confidence=0.8,
        resolved_summary="Coverage of Acme is positive",
        recommended_actions=[RecommendedAction("Re-check governance feed", ActionPriority.HIGH, "governance")],
        model_name="test-model",
        prompt_tokens=120,
        completion_tokens=40,
    )


@pytest.fixture
def mock_generator(generation_result: GenerationResult) -> AsyncMock:
    """Narrative generator stub returning a fixed consensus."""
    generator = AsyncMock()
    generator.generate = AsyncMock(return_value=generation_result)
    return generator


@pytest.fixture
def repository(test_settings: Settings) -> InMemoryConflictRepository:
    return InMemoryConflictRepository(test_settings.insight_history_limit)


@pytest.fixture
def orchestrator(
    test_settings: Settings,
    repository: InMemoryConflictRepository,
    mock_generator: AsyncMock,
    clock: FakeClock,
) -> ConflictOrchestrator:
    return ConflictOrchestrator(test_settings, repository=repository, generator=mock_generator, clock=clock)


@pytest.fixture
async def client(orchestrator: ConflictOrchestrator) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to an app sharing the test orchestrator.

    ASGITransport does not run the lifespan, so no worker is started.
    """
    from src.api.main import create_app

    app = create_app(orchestrator)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
