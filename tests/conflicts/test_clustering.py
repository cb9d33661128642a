"""Tests for cluster recompute passes."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from src.conflicts.clustering import ClusterManager, average_severity, dominant_type, mean_embedding
from src.core.config import Settings
from src.core.models import (
    Conflict,
    ConflictItem,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    InsightConflictCluster,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
ORG = "org-acme"


def _conflict(
    conflict_id: str,
    offset: int = 0,
    conflict_type: ConflictType = ConflictType.CONTRADICTION,
    **fields: object,
) -> Conflict:
    return Conflict(
        id=conflict_id,
        organization_id=ORG,
        conflict_type=conflict_type,
        title=conflict_id,
        created_at=NOW + timedelta(minutes=offset),
        **fields,  # type: ignore[arg-type]
    )


def _items(conflict_id: str, *vectors: list[float]) -> list[ConflictItem]:
    return [
        ConflictItem(
            id=f"{conflict_id}-{n}",
            conflict_id=conflict_id,
            raw_insight=f"insight {n}",
            source_system="media_monitoring",
            embedding=vector,
        )
        for n, vector in enumerate(vectors)
    ]


@pytest.fixture
def manager(test_settings: Settings) -> ClusterManager:
    return ClusterManager(test_settings)


class TestHelpers:
    def test_mean_embedding_ignores_mismatched_dimensions(self) -> None:
        items = _items("c", [1.0, 0.0], [0.0, 1.0], [5.0, 5.0, 5.0])
        assert mean_embedding(items).tolist() == [0.5, 0.5]  # type: ignore[union-attr]
        assert mean_embedding(_items("c")) is None

    def test_dominant_type_tie_prefers_declaration_order(self) -> None:
        conflicts = [
            _conflict("a", conflict_type=ConflictType.DIVERGENCE),
            _conflict("b", conflict_type=ConflictType.CONTRADICTION),
        ]
        assert dominant_type(conflicts) == ConflictType.CONTRADICTION
        assert dominant_type([]) is None

    def test_average_severity_on_four_point_scale(self) -> None:
        conflicts = [
            _conflict("a", severity=ConflictSeverity.LOW),
            _conflict("b", severity=ConflictSeverity.CRITICAL),
        ]
        assert average_severity(conflicts) == 2.5


# ===========================================================================
# Scenario: Similar unclustered conflicts form an auto cluster
# ===========================================================================


class TestAutoClusters:
    def test_similar_conflicts_are_grouped(self, manager: ClusterManager) -> None:
        """Given three similar conflicts and one opposite conflict,
        When clusters are recomputed,
        Then one auto cluster holding the three similar conflicts is created."""
        conflicts = [_conflict("c-1", 0), _conflict("c-2", 1), _conflict("c-3", 2), _conflict("c-4", 3)]
        items = {
            "c-1": _items("c-1", [1.0, 0.0]),
            "c-2": _items("c-2", [0.95, 0.05]),
            "c-3": _items("c-3", [0.9, 0.1]),
            "c-4": _items("c-4", [-1.0, 0.0]),
        }

        plan = manager.recompute(ORG, conflicts, items, [], NOW)

        assert len(plan.created) == 1
        cluster = plan.created[0]
        assert cluster.name == "Auto cluster 2026-03-02 #1"
        assert cluster.is_auto_generated is True
        assert cluster.member_count == 3
        assert cluster.dominant_type == ConflictType.CONTRADICTION
        assert cluster.centroid == pytest.approx([0.95, 0.05])
        assert plan.assigned_count == 3
        assert {cid for cid, assigned, _ in plan.assignments if assigned == cluster.id} == {"c-1", "c-2", "c-3"}
        assert plan.orphaned == []

    def test_small_groups_stay_unclustered(self, manager: ClusterManager) -> None:
        conflicts = [_conflict("c-1"), _conflict("c-2")]
        items = {"c-1": _items("c-1", [1.0, 0.0]), "c-2": _items("c-2", [1.0, 0.0])}
        plan = manager.recompute(ORG, conflicts, items, [], NOW)
        assert plan.created == []
        assert plan.assignments == []

    def test_dismissed_and_embeddingless_conflicts_are_skipped(self, manager: ClusterManager) -> None:
        conflicts = [
            _conflict("c-1"),
            _conflict("c-2"),
            _conflict("c-3", status=ConflictStatus.DISMISSED),
            _conflict("c-4"),
        ]
        items = {
            "c-1": _items("c-1", [1.0, 0.0]),
            "c-2": _items("c-2", [1.0, 0.0]),
            "c-3": _items("c-3", [1.0, 0.0]),
            "c-4": _items("c-4"),
        }
        assert manager.recompute(ORG, conflicts, items, [], NOW).created == []


class TestExistingClusters:
    def test_assignment_to_nearest_active_centroid(self, manager: ClusterManager) -> None:
        near = InsightConflictCluster(id="k-near", organization_id=ORG, name="near", centroid=[1.0, 0.0])
        far = InsightConflictCluster(id="k-far", organization_id=ORG, name="far", centroid=[0.0, 1.0])
        plan = manager.recompute(ORG, [_conflict("c-1")], {"c-1": _items("c-1", [1.0, 0.0])}, [near, far], NOW)

        assert plan.assignments == [("c-1", "k-near", 1.0)]
        assert near.member_count == 1
        assert plan.clusters == [near]

    def test_other_organizations_are_ignored(self, manager: ClusterManager) -> None:
        foreign = InsightConflictCluster(id="k-1", organization_id="org-other", name="x", centroid=[1.0, 0.0])
        plan = manager.recompute(ORG, [_conflict("c-1")], {"c-1": _items("c-1", [1.0, 0.0])}, [foreign], NOW)
        assert plan.assignments == []

    def test_members_of_deactivated_cluster_are_orphaned(self, manager: ClusterManager) -> None:
        """Given a conflict in a cluster that has been deactivated,
        When clusters are recomputed,
        Then the conflict becomes unclustered and the cluster counts no members."""
        cluster = InsightConflictCluster(
            id="k-1", organization_id=ORG, name="old", centroid=[1.0, 0.0], member_count=1, is_active=False
        )
        conflict = _conflict("c-1", cluster_id="k-1", cluster_similarity=1.0)

        plan = manager.recompute(ORG, [conflict], {"c-1": _items("c-1", [1.0, 0.0])}, [cluster], NOW)

        assert plan.orphaned == ["c-1"]
        assert ("c-1", None, None) in plan.assignments
        assert cluster.member_count == 0
        assert cluster.centroid == [1.0, 0.0]
