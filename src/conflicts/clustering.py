"""Cluster Manager: groups semantically similar conflicts around centroids.

A recompute pass:
1. orphans members of inactive or missing clusters,
2. assigns every unclustered, non-dismissed conflict to the active cluster
   whose centroid is most similar to the conflict's mean item embedding,
   provided the similarity reaches ``cluster_threshold``,
3. groups the remaining conflicts by single-link at the same threshold and
   opens an auto-generated cluster for every group of at least
   ``min_cluster_size`` members,
4. recomputes the centroid and statistics of every touched cluster.

The pass reads conflicts and items and writes only cluster records and
cluster assignments.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

import numpy as np

from src.conflicts.graph import connected_components
from src.conflicts.similarity import rescale_cosine
from src.core.config import Settings
from src.core.models import (
    Conflict,
    ConflictItem,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    InsightConflictCluster,
    new_id,
)

logger = logging.getLogger(__name__)

# Cluster average severity is reported on a 1-4 scale
SEVERITY_POINTS: dict[ConflictSeverity, int] = {
    ConflictSeverity.LOW: 1,
    ConflictSeverity.MEDIUM: 2,
    ConflictSeverity.HIGH: 3,
    ConflictSeverity.CRITICAL: 4,
}


def mean_embedding(items: list[ConflictItem]) -> np.ndarray | None:
    """Mean of the items' embeddings, or None when no usable embedding exists.

    Only embeddings sharing the dimensionality of the first usable one are
    averaged.
    """
    vectors = [np.asarray(item.embedding, dtype=float) for item in items if item.embedding]
    if not vectors:
        return None
    dim = vectors[0].shape[0]
    same = [v for v in vectors if v.shape[0] == dim]
    return np.mean(np.stack(same), axis=0)


def centroid_similarity(vec_a: np.ndarray, vec_b: np.ndarray) -> float | None:
    """Rescaled cosine similarity, or None when the vectors cannot be compared."""
    if vec_a.shape != vec_b.shape:
        return None
    norm = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if norm == 0.0:
        return None
    return rescale_cosine(float(np.dot(vec_a, vec_b)) / norm)


def member_similarity(cluster: InsightConflictCluster, items: list[ConflictItem]) -> float | None:
    """Similarity of a conflict's mean embedding to ``cluster``'s centroid."""
    vector = mean_embedding(items)
    if vector is None or not cluster.centroid:
        return None
    score = centroid_similarity(vector, np.asarray(cluster.centroid, dtype=float))
    return round(score, 6) if score is not None else None


def average_severity(conflicts: list[Conflict]) -> float:
    if not conflicts:
        return 0.0
    return round(sum(SEVERITY_POINTS[c.severity] for c in conflicts) / len(conflicts), 2)


def dominant_type(conflicts: list[Conflict]) -> ConflictType | None:
    """Most frequent conflict type; ties go to the earlier type in declaration order."""
    if not conflicts:
        return None
    counts = Counter(c.conflict_type for c in conflicts)
    order = list(ConflictType)
    return min(counts, key=lambda t: (-counts[t], order.index(t)))


@dataclass
class ClusterPlan:
    """Writes produced by one recompute pass."""

    assignments: list[tuple[str, str | None, float | None]] = field(default_factory=list)
    clusters: list[InsightConflictCluster] = field(default_factory=list)
    created: list[InsightConflictCluster] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)

    @property
    def assigned_count(self) -> int:
        return sum(1 for _, cluster_id, _ in self.assignments if cluster_id is not None)


class ClusterManager:
    """Recomputes cluster membership for one organization at a time."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def recompute(
        self,
        organization_id: str,
        conflicts: list[Conflict],
        items_by_conflict: dict[str, list[ConflictItem]],
        clusters: list[InsightConflictCluster],
        now: datetime,
    ) -> ClusterPlan:
        threshold = self._settings.cluster_threshold
        plan = ClusterPlan()
        active = {c.id: c for c in clusters if c.is_active and c.organization_id == organization_id}
        scoped = [c for c in conflicts if c.organization_id == organization_id]
        membership: dict[str, str | None] = {c.id: c.cluster_id for c in scoped}
        touched: set[str] = set()
        emptied: set[str] = set()

        # Members of deactivated or missing clusters fall back to unclustered
        for conflict in scoped:
            if conflict.cluster_id is not None and conflict.cluster_id not in active:
                membership[conflict.id] = None
                emptied.add(conflict.cluster_id)
                plan.orphaned.append(conflict.id)
                plan.assignments.append((conflict.id, None, None))

        means = {c.id: mean_embedding(items_by_conflict.get(c.id, [])) for c in scoped}
        centroids = {
            cid: np.asarray(cluster.centroid, dtype=float)
            for cid, cluster in active.items()
            if cluster.centroid
        }

        leftovers: list[Conflict] = []
        for conflict in sorted(scoped, key=lambda c: (c.created_at, c.id)):
            if membership[conflict.id] is not None or conflict.status == ConflictStatus.DISMISSED:
                continue
            vector = means[conflict.id]
            if vector is None:
                continue
            best: tuple[float, str] | None = None
            for cid in sorted(centroids):
                score = centroid_similarity(vector, centroids[cid])
                if score is not None and score >= threshold and (best is None or score > best[0]):
                    best = (score, cid)
            if best is None:
                leftovers.append(conflict)
                continue
            score, cid = best
            membership[conflict.id] = cid
            plan.assignments.append((conflict.id, cid, round(score, 6)))
            touched.add(cid)

        for group in self._single_link_groups(leftovers, means, threshold):
            cluster = InsightConflictCluster(
                id=new_id(),
                organization_id=organization_id,
                name=f"Auto cluster {now:%Y-%m-%d} #{len(plan.created) + 1}",
                description=f"Auto-generated from {len(group)} similar conflicts",
                is_auto_generated=True,
                created_at=now,
                updated_at=now,
            )
            active[cluster.id] = cluster
            plan.created.append(cluster)
            for conflict in group:
                membership[conflict.id] = cluster.id
            touched.add(cluster.id)

        by_id = {c.id: c for c in scoped}
        created_ids = {c.id for c in plan.created}
        for cid in sorted(touched):
            cluster = active[cid]
            members = [by_id[mid] for mid, assigned in membership.items() if assigned == cid]
            self._refresh(cluster, members, means, now)
            if cid in created_ids:
                centroid = np.asarray(cluster.centroid, dtype=float)
                for member in members:
                    score = centroid_similarity(means[member.id], centroid)  # type: ignore[arg-type]
                    plan.assignments.append((member.id, cid, round(score, 6) if score is not None else None))
            plan.clusters.append(cluster)

        # Deactivated clusters keep their record and centroid but no longer count members
        for cluster in clusters:
            if cluster.id in emptied and cluster.member_count:
                cluster.member_count = 0
                cluster.updated_at = now
                plan.clusters.append(cluster)

        logger.info(
            "Cluster recompute for org %s: %d assigned, %d created, %d orphaned",
            organization_id,
            plan.assigned_count,
            len(plan.created),
            len(plan.orphaned),
        )
        return plan

    def refresh(
        self,
        cluster: InsightConflictCluster,
        members: list[Conflict],
        items_by_conflict: dict[str, list[ConflictItem]],
        now: datetime,
    ) -> None:
        """Recompute centroid and statistics of ``cluster`` from ``members``."""
        means = {m.id: mean_embedding(items_by_conflict.get(m.id, [])) for m in members}
        self._refresh(cluster, members, means, now)

    @staticmethod
    def _refresh(
        cluster: InsightConflictCluster,
        members: list[Conflict],
        means: dict[str, np.ndarray | None],
        now: datetime,
    ) -> None:
        vectors = [means[m.id] for m in members if means.get(m.id) is not None]
        if vectors:
            dim = vectors[0].shape[0]  # type: ignore[union-attr]
            stacked = np.stack([v for v in vectors if v.shape[0] == dim])  # type: ignore[union-attr]
            cluster.centroid = [float(x) for x in np.mean(stacked, axis=0)]
        else:
            cluster.centroid = None
        cluster.member_count = len(members)
        cluster.dominant_type = dominant_type(members)
        cluster.average_severity = average_severity(members)
        cluster.updated_at = now

    def _single_link_groups(
        self,
        conflicts: list[Conflict],
        means: dict[str, np.ndarray | None],
        threshold: float,
    ) -> list[list[Conflict]]:
        adj: dict[str, list[str]] = {c.id: [] for c in conflicts}
        for i, a in enumerate(conflicts):
            for b in conflicts[i + 1:]:
                score = centroid_similarity(means[a.id], means[b.id])  # type: ignore[arg-type]
                if score is not None and score >= threshold:
                    adj[a.id].append(b.id)
                    adj[b.id].append(a.id)
        by_id = {c.id: c for c in conflicts}
        return [
            [by_id[cid] for cid in component]
            for component in connected_components(adj)
            if len(component) >= self._settings.min_cluster_size
        ]
