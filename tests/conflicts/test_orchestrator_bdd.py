"""BDD tests for the conflict lifecycle driven through the orchestrator.

Covers:
- Scenario 1: Opposite insights from two sources open a contradiction
- Scenario 2: A later insight joins the open conflict
- Scenario 3: Weighted resolution with auto-accept resolves the conflict
- Scenario 4: Review supersedes an accepted resolution
- Scenario 5: Timeouts commit nothing but an audit entry
- Scenario 6: Concurrent writers on one conflict
- Scenario 7: Batch operations report failures per id
- Scenario 8: Detection replay and missing-data backfill
- Scenario 9: Three sources split three ways on sentiment
- Scenario 10: Dismissal leaves pending resolutions untouched
- Scenario 11: Re-analysis of an unchanged conflict is stable over time
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.conflicts.audit import AuditLogger
from src.conflicts.generation import GenerationRequest, GenerationResult
from src.conflicts.orchestrator import ConflictOrchestrator
from src.conflicts.repository import InMemoryConflictRepository
from src.core.config import Settings
from src.core.errors import (
    ConcurrencyError,
    NotFoundError,
    OperationTimeoutError,
    StateConflictError,
    ValidationError,
)
from src.core.models import (
    AuditEventType,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    DetectionConfig,
    ItemRole,
    ResolutionStrategy,
)

ORG = "org-acme"
VECTOR = [1.0, 0.0, 0.0]


@pytest.fixture
async def contradiction_id(orchestrator: ConflictOrchestrator, clock: Any, make_insight: Any) -> str:
    """Push a positive media reading, then a negative governance reading of the same brand."""
    first = await orchestrator.push_insight_batch({
        "organization_id": ORG,
        "items": [make_insight("Coverage of Acme is positive", "media_monitoring", VECTOR, confidence=0.9)],
    })
    assert first["independent_count"] == 1
    clock.advance(minutes=5)
    second = await orchestrator.push_insight_batch({
        "organization_id": ORG,
        "items": [make_insight("Coverage of Acme is negative", "governance", VECTOR, confidence=0.6)],
    })
    assert len(second["conflicts_created"]) == 1
    return second["conflicts_created"][0].id


# ===========================================================================
# Scenario 1: Opposite insights from two sources open a contradiction
# ===========================================================================


class TestOpenContradiction:
    @pytest.mark.asyncio
    async def test_conflict_is_stored_with_both_items(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str
    ) -> None:
        """Given a positive media insight already on record,
        When governance reports the opposite for the same brand,
        Then a contradiction is opened with the earlier insight as primary."""
        found = await orchestrator.get_conflict(contradiction_id)
        conflict = found["conflict"]

        assert conflict.conflict_type == ConflictType.CONTRADICTION
        assert conflict.status == ConflictStatus.DETECTED
        assert conflict.title == "Contradiction on brand acme (sentiment)"
        assert sorted(conflict.affected_systems) == ["governance", "media_monitoring"]
        roles = {i.source_system: i.role for i in found["items"]}
        assert roles == {"media_monitoring": ItemRole.PRIMARY, "governance": ItemRole.SECONDARY}
        assert found["resolutions"] == []

    @pytest.mark.asyncio
    async def test_creation_is_audited(self, orchestrator: ConflictOrchestrator, contradiction_id: str) -> None:
        log = await orchestrator.list_audit_log(contradiction_id)
        events = [e.event_type for e in log["entries"]]
        assert events[0] == AuditEventType.CREATED
        assert AuditEventType.ITEM_ADDED in events
        assert log["entries"][0].details["origin"] == "detector"

    @pytest.mark.asyncio
    async def test_unknown_conflict(self, orchestrator: ConflictOrchestrator) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await orchestrator.get_conflict("missing")
        assert exc_info.value.to_dict() == {"kind": "not_found", "message": "conflict missing not found", "conflict_id": "missing"}

    @pytest.mark.asyncio
    async def test_mixed_embedding_dimensions_rejected(
        self, orchestrator: ConflictOrchestrator, make_insight: Any
    ) -> None:
        with pytest.raises(ValidationError, match="dimensionality"):
            await orchestrator.push_insight_batch({
                "organization_id": ORG,
                "items": [make_insight("a", "media_monitoring", [1.0, 0.0]), make_insight("b", "governance", [1.0])],
            })


# ===========================================================================
# Scenario 2: A later insight joins the open conflict
# ===========================================================================


class TestJoinOpenConflict:
    @pytest.mark.asyncio
    async def test_third_source_joins(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str, make_insight: Any
    ) -> None:
        result = await orchestrator.push_insight_batch({
            "organization_id": ORG,
            "items": [make_insight("Coverage of Acme is positive", "risk_radar", VECTOR, confidence=0.7)],
        })

        assert [c.id for c in result["conflicts_extended"]] == [contradiction_id]
        assert result["conflicts_created"] == []
        found = await orchestrator.get_conflict(contradiction_id)
        assert len(found["items"]) == 3
        assert "risk_radar" in found["conflict"].affected_systems


# ===========================================================================
# Scenario 3: Weighted resolution with auto-accept
# ===========================================================================


class TestResolveWithAutoAccept:
    @pytest.mark.asyncio
    async def test_weighted_truth_resolves(self, orchestrator: ConflictOrchestrator, contradiction_id: str) -> None:
        """Given an unanalyzed contradiction,
        When it is resolved by weighted truth with equal weights and auto-accept,
        Then it is analyzed first, the tie goes to the more confident source and it ends resolved."""
        result = await orchestrator.resolve_conflict(
            contradiction_id,
            ResolutionStrategy.WEIGHTED_TRUTH,
            {"source_weights": {"media_monitoring": 0.5, "governance": 0.5}, "auto_accept": True},
            actor_id="analyst-1",
        )
        resolution = result["resolution"]

        assert result["conflict"].status == ConflictStatus.RESOLVED
        assert resolution.resolved_value == "positive"
        assert resolution.confidence == pytest.approx(0.5)
        assert resolution.is_accepted is True
        assert resolution.accepted_by == "analyst-1"

        stored = await orchestrator.get_conflict(contradiction_id)
        assert stored["conflict"].analysis is not None
        assert stored["conflict"].resolved_by == "analyst-1"
        transitions = await AuditLogger(orchestrator.repository).status_transitions(contradiction_id)
        assert transitions == [("detected", "analyzing"), ("analyzing", "resolved")]

    @pytest.mark.asyncio
    async def test_resolved_conflict_cannot_be_resolved_again(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str
    ) -> None:
        await orchestrator.resolve_conflict(
            contradiction_id, ResolutionStrategy.SOURCE_PRIORITY, {"auto_accept": True}
        )
        with pytest.raises(StateConflictError) as exc_info:
            await orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.SOURCE_PRIORITY)
        assert exc_info.value.current_status == "resolved"

    @pytest.mark.asyncio
    async def test_ai_consensus_records_model_output(
        self, orchestrator: ConflictOrchestrator, mock_generator: AsyncMock, contradiction_id: str
    ) -> None:
        await orchestrator.analyze_conflict(contradiction_id)
        result = await orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.AI_CONSENSUS)

        assert result["conflict"].status == ConflictStatus.ANALYZING
        assert result["resolution"].model_name == "test-model"
        request: GenerationRequest = mock_generator.generate.call_args.args[0]
        assert request.conflict_id == contradiction_id
        assert request.analysis is not None


# ===========================================================================
# Scenario 4: Review supersedes an accepted resolution
# ===========================================================================


class TestReviewSupersession:
    @pytest.mark.asyncio
    async def test_accepting_second_resolution_supersedes_first(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str
    ) -> None:
        await orchestrator.analyze_conflict(contradiction_id)
        first = (await orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.SOURCE_PRIORITY))["resolution"]
        second = (await orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.WEIGHTED_TRUTH))["resolution"]

        accepted = await orchestrator.review_resolution(first.id, accept=True, notes="ok", actor_id="lead")
        assert accepted["conflict"].status == ConflictStatus.RESOLVED

        await orchestrator.review_resolution(second.id, accept=True, actor_id="lead")
        resolutions = {r.id: r for r in await orchestrator.list_resolutions(contradiction_id)}
        assert resolutions[second.id].is_accepted is True
        assert resolutions[first.id].is_accepted is False
        assert resolutions[first.id].superseded_by == second.id
        assert resolutions[first.id].review_notes == "ok"

        superseded = await orchestrator.list_audit_log(
            contradiction_id, event_types={AuditEventType.RESOLUTION_SUPERSEDED}
        )
        assert superseded["total"] == 1

    @pytest.mark.asyncio
    async def test_rejecting_accepted_resolution_of_resolved_conflict(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str
    ) -> None:
        result = await orchestrator.resolve_conflict(
            contradiction_id, ResolutionStrategy.SOURCE_PRIORITY, {"auto_accept": True}
        )
        with pytest.raises(StateConflictError):
            await orchestrator.review_resolution(result["resolution"].id, accept=False)

    @pytest.mark.asyncio
    async def test_reject_keeps_conflict_analyzing(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str
    ) -> None:
        await orchestrator.analyze_conflict(contradiction_id)
        resolution = (await orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.SOURCE_PRIORITY))["resolution"]
        result = await orchestrator.review_resolution(resolution.id, accept=False, notes="wrong source")
        assert result["conflict"].status == ConflictStatus.ANALYZING
        assert result["resolution"].is_reviewed is True

    @pytest.mark.asyncio
    async def test_unknown_resolution(self, orchestrator: ConflictOrchestrator) -> None:
        with pytest.raises(NotFoundError):
            await orchestrator.review_resolution("missing", accept=True)


# ===========================================================================
# Scenario 5: Timeouts
# ===========================================================================


class TestTimeout:
    @pytest.mark.asyncio
    async def test_expired_timeout_commits_only_audit_entry(
        self,
        orchestrator: ConflictOrchestrator,
        mock_generator: AsyncMock,
        generation_result: GenerationResult,
        contradiction_id: str,
    ) -> None:
        """Given a generative capability slower than the caller's timeout,
        When an AI consensus resolution is requested,
        Then the call times out, the conflict is unchanged and a timeout entry is logged."""

        async def slow(request: GenerationRequest) -> GenerationResult:
            await asyncio.sleep(1)
            return generation_result

        mock_generator.generate.side_effect = slow
        with pytest.raises(OperationTimeoutError) as exc_info:
            await orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.AI_CONSENSUS, timeout=0.05)

        assert exc_info.value.kind == "timeout"
        stored = await orchestrator.get_conflict(contradiction_id)
        assert stored["conflict"].status == ConflictStatus.DETECTED
        assert stored["conflict"].analysis is None
        assert stored["resolutions"] == []
        timeouts = await orchestrator.list_audit_log(contradiction_id, event_types={AuditEventType.TIMEOUT})
        assert timeouts["total"] == 1
        assert timeouts["entries"][0].details["operation"] == "resolve_conflict"


# ===========================================================================
# Scenario 6: Concurrent writers
# ===========================================================================


class TestConcurrentWriters:
    @pytest.mark.asyncio
    async def test_second_resolver_sees_resolved_conflict(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str
    ) -> None:
        options = {"auto_accept": True}
        results = await asyncio.gather(
            orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.WEIGHTED_TRUTH, options),
            orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.WEIGHTED_TRUTH, options),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        assert len(errors) == 1
        assert isinstance(errors[0], StateConflictError)
        assert len(await orchestrator.list_resolutions(contradiction_id)) == 1

    @pytest.mark.asyncio
    async def test_lock_wait_is_bounded(
        self,
        test_settings: Settings,
        mock_generator: AsyncMock,
        generation_result: GenerationResult,
        clock: Any,
        make_insight: Any,
    ) -> None:
        settings = test_settings.model_copy(update={"lock_timeout_seconds": 0.05})
        orchestrator = ConflictOrchestrator(
            settings, repository=InMemoryConflictRepository(), generator=mock_generator, clock=clock
        )
        conflict = await orchestrator.create_conflict({
            "organization_id": ORG,
            "conflict_type": "contradiction",
            "title": "Manual",
            "items": [make_insight("Coverage of Acme is positive", "media_monitoring")],
        })

        async def slow(request: GenerationRequest) -> GenerationResult:
            await asyncio.sleep(0.3)
            return generation_result

        mock_generator.generate.side_effect = slow
        resolve = asyncio.create_task(orchestrator.resolve_conflict(conflict.id, ResolutionStrategy.AI_CONSENSUS))
        await asyncio.sleep(0.01)
        with pytest.raises(ConcurrencyError):
            await orchestrator.dismiss_conflict(conflict.id)
        assert (await resolve)["resolution"].model_name == "test-model"
        assert orchestrator._locks == {}

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str, make_insight: Any
    ) -> None:
        """Given several writers queued on one conflict followed by an organization-wide push,
        When they all finish,
        Then no writer lock is retained."""
        await asyncio.gather(
            orchestrator.analyze_conflict(contradiction_id),
            orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.SOURCE_PRIORITY),
            orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.WEIGHTED_TRUTH),
        )
        await orchestrator.push_insight_batch({
            "organization_id": ORG,
            "items": [make_insight("Coverage of Acme is stable", "risk_radar", VECTOR)],
        })
        await orchestrator.dismiss_conflict(contradiction_id)

        assert orchestrator._locks == {}
        assert orchestrator._lock_users == {}


# ===========================================================================
# Scenario 7: Batch operations
# ===========================================================================


class TestBatchOperations:
    @pytest.mark.asyncio
    async def test_batch_dismiss_reports_each_id(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str
    ) -> None:
        result = await orchestrator.batch_dismiss([contradiction_id, "missing"], reason="duplicate")

        assert result["total_processed"] == 2
        assert result["success_count"] == 1
        assert result["error_count"] == 1
        failed = next(r for r in result["results"] if not r["success"])
        assert failed["conflict_id"] == "missing"
        assert failed["error"]["kind"] == "not_found"
        dismissed = (await orchestrator.get_conflict(contradiction_id))["conflict"]
        assert dismissed.status == ConflictStatus.DISMISSED
        assert dismissed.dismissed_at is not None

    @pytest.mark.asyncio
    async def test_batch_analyze_then_dismissed_conflicts_fail(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str
    ) -> None:
        analyzed = await orchestrator.batch_analyze([contradiction_id])
        assert analyzed["success_count"] == 1
        await orchestrator.dismiss_conflict(contradiction_id)

        resolved = await orchestrator.batch_resolve([contradiction_id], ResolutionStrategy.SOURCE_PRIORITY)
        assert resolved["results"][0]["error"]["kind"] == "state_conflict"
        assert resolved["results"][0]["error"]["current_status"] == "dismissed"


# ===========================================================================
# Scenario 8: Detection replay and missing-data backfill
# ===========================================================================


class TestRunDetection:
    @pytest.mark.asyncio
    async def test_replay_with_default_thresholds(
        self, orchestrator: ConflictOrchestrator, make_insight: Any
    ) -> None:
        """Given two opposite insights pushed under a strict join threshold,
        When detection is rerun with default thresholds,
        Then they form one conflict, and a further run finds nothing new."""
        pushed = await orchestrator.push_insight_batch(
            {
                "organization_id": ORG,
                "items": [
                    make_insight("Coverage of Acme is positive", "media_monitoring", [1.0, 0.0]),
                    make_insight("Coverage of Acme is negative", "governance", [0.8, 0.6]),
                ],
            },
            config=DetectionConfig(join_threshold=0.99),
        )
        assert pushed["independent_count"] == 2

        first = await orchestrator.run_detection(ORG)
        assert first["conflicts_detected"] == 1
        assert first["sources_scanned"] == 2
        assert first["errors"] == []
        assert first["conflicts"][0].conflict_type == ConflictType.CONTRADICTION

        again = await orchestrator.run_detection(ORG)
        assert again["conflicts_detected"] == 0

    @pytest.mark.asyncio
    async def test_target_systems_filter(self, orchestrator: ConflictOrchestrator, make_insight: Any) -> None:
        await orchestrator.push_insight_batch(
            {"organization_id": ORG, "items": [make_insight("Coverage of Acme is positive", "media_monitoring")]}
        )
        result = await orchestrator.run_detection(ORG, target_systems=["risk_radar"])
        assert result["sources_scanned"] == 0

    @pytest.mark.asyncio
    async def test_silent_tracked_entity_raises_missing_data(
        self, orchestrator: ConflictOrchestrator, clock: Any
    ) -> None:
        await orchestrator.track_entity({
            "organization_id": ORG,
            "entity_type": "brand",
            "entity_id": "acme",
            "expected_cadence_hours": 24,
            "source_systems": ["media_monitoring"],
        })
        clock.advance(days=4)

        result = await orchestrator.run_detection(ORG)
        assert result["conflicts_detected"] == 1
        conflict = result["conflicts"][0]
        assert conflict.conflict_type == ConflictType.MISSING_DATA
        assert conflict.severity == ConflictSeverity.HIGH

        assert (await orchestrator.run_detection(ORG))["conflicts_detected"] == 0

    @pytest.mark.asyncio
    async def test_disabled_missing_data_detection(self, orchestrator: ConflictOrchestrator, clock: Any) -> None:
        await orchestrator.track_entity(
            {"organization_id": ORG, "entity_type": "brand", "entity_id": "acme", "expected_cadence_hours": 1}
        )
        clock.advance(days=1)
        result = await orchestrator.run_detection(ORG, config={"enable_missing_data_detection": False})
        assert result["conflicts_detected"] == 0


# ===========================================================================
# Manual creation and edits
# ===========================================================================


class TestManualConflicts:
    @pytest.mark.asyncio
    async def test_create_update_and_link(self, orchestrator: ConflictOrchestrator, make_insight: Any) -> None:
        conflict = await orchestrator.create_conflict(
            {
                "organization_id": ORG,
                "conflict_type": "divergence",
                "title": "Risk forecasts diverge",
                "affected_systems": ["competitive_intelligence"],
                "items": [make_insight("Risk is 80", "risk_radar"), make_insight("Risk is 40", "competitive_intelligence")],
            },
            actor_id="analyst-1",
        )
        assert conflict.affected_systems == ["competitive_intelligence", "risk_radar"]
        items = await orchestrator.list_items(conflict.id)
        assert [i.role for i in items] == [ItemRole.PRIMARY, ItemRole.SECONDARY]

        updated = await orchestrator.update_conflict(conflict.id, {"title": "  Risk outlook diverges "})
        assert updated.title == "Risk outlook diverges"
        assert updated.version == 2

        linked = await orchestrator.link_reality_map(conflict.id, ["rm-1", "rm-1", "rm-2"])
        assert linked.linked_reality_map_ids == ["rm-1", "rm-2"]
        with pytest.raises(ValidationError):
            await orchestrator.link_reality_map(conflict.id, [" "])

    @pytest.mark.asyncio
    async def test_invalid_payload(self, orchestrator: ConflictOrchestrator) -> None:
        with pytest.raises(ValidationError, match="CreateConflictInput"):
            await orchestrator.create_conflict({"organization_id": ORG, "conflict_type": "contradiction", "title": "x", "items": []})


# ===========================================================================
# Scenario 9: Three sources split three ways on sentiment
# ===========================================================================


class TestThreeWaySentimentSplit:
    @pytest.mark.asyncio
    async def test_tie_goes_to_most_confident_source(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str, make_insight: Any
    ) -> None:
        """Given positive, negative and neutral readings of one brand from three sources,
        When the conflict is resolved by weighted truth with near-equal weights,
        Then the three-way tie goes to the most confident source and the rationale says so."""
        joined = await orchestrator.push_insight_batch({
            "organization_id": ORG,
            "items": [make_insight("Coverage of Acme is neutral", "risk_radar", VECTOR, confidence=0.7)],
        })
        assert [c.id for c in joined["conflicts_extended"]] == [contradiction_id]

        analyzed = await orchestrator.analyze_conflict(contradiction_id)
        assert analyzed["conflict"].conflict_type == ConflictType.CONTRADICTION
        assert len(await orchestrator.list_items(contradiction_id)) == 3
        assert analyzed["analysis"].severity in {
            ConflictSeverity.MEDIUM,
            ConflictSeverity.HIGH,
            ConflictSeverity.CRITICAL,
        }

        result = await orchestrator.resolve_conflict(
            contradiction_id,
            ResolutionStrategy.WEIGHTED_TRUTH,
            {"source_weights": {"media_monitoring": 0.33, "risk_radar": 0.33, "governance": 0.34}},
        )
        resolution = result["resolution"]

        assert resolution.resolved_value == "positive"
        assert resolution.resolved_summary == "Coverage of Acme is positive"
        assert "Tie between negative, neutral, positive" in resolution.rationale
        assert "reported by media_monitoring with higher source confidence 0.90" in resolution.rationale
        assert resolution.confidence == pytest.approx(1 - (0.33**2 + 0.33**2 + 0.34**2))
        assert resolution.is_accepted is False


# ===========================================================================
# Scenario 10: Dismissal leaves pending resolutions untouched
# ===========================================================================


class TestDismissWithPendingResolutions:
    @pytest.mark.asyncio
    async def test_resolutions_survive_and_conflict_is_closed(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str
    ) -> None:
        """Given an analyzed conflict with two unreviewed resolutions,
        When it is dismissed,
        Then both resolutions are unchanged and the conflict accepts no further resolution."""
        await orchestrator.analyze_conflict(contradiction_id)
        await orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.SOURCE_PRIORITY)
        await orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.WEIGHTED_TRUTH)
        before = await orchestrator.list_resolutions(contradiction_id)

        dismissed = await orchestrator.dismiss_conflict(contradiction_id, reason="duplicate feed", actor_id="lead")

        assert dismissed.status == ConflictStatus.DISMISSED
        assert dismissed.dismissed_by == "lead"
        after = await orchestrator.list_resolutions(contradiction_id)
        assert after == before
        assert [(r.is_accepted, r.is_reviewed) for r in after] == [(False, False), (False, False)]

        with pytest.raises(StateConflictError) as exc_info:
            await orchestrator.resolve_conflict(contradiction_id, ResolutionStrategy.SOURCE_PRIORITY)
        assert exc_info.value.current_status == "dismissed"
        assert len(await orchestrator.list_resolutions(contradiction_id)) == 2


# ===========================================================================
# Scenario 11: Re-analysis of an unchanged conflict is stable over time
# ===========================================================================


class TestStableReanalysis:
    @pytest.mark.asyncio
    async def test_severity_does_not_drift_with_the_clock(
        self, orchestrator: ConflictOrchestrator, contradiction_id: str, clock: Any
    ) -> None:
        """Given an analyzed conflict,
        When it is analyzed again six days later with no new evidence,
        Then score, band and root causes are the same and only the analysis time moves."""
        first = (await orchestrator.analyze_conflict(contradiction_id))["analysis"]
        clock.advance(days=6)
        second = (await orchestrator.analyze_conflict(contradiction_id))["analysis"]

        assert (second.severity_score, second.severity) == (first.severity_score, first.severity)
        assert second.severity_rationale == first.severity_rationale
        assert second.root_causes == first.root_causes
        assert second.analyzed_at == clock.now
        assert first.analyzed_at != second.analyzed_at
