"""Storage boundary for the conflict engine.

Durable storage is an external collaborator. ``ConflictRepository`` is the
contract the orchestrator relies on; ``InMemoryConflictRepository`` is the
process-local implementation used by the service and the tests.

All writes arrive as one ``ChangeSet`` so an operation's entity mutations
and audit entries land together or not at all.
"""

from __future__ import annotations

import abc
import copy
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field

from src.core.errors import ConcurrencyError, ValidationError
from src.core.models import (
    AuditLogEntry,
    Conflict,
    ConflictGraphEdge,
    ConflictItem,
    InsightConflictCluster,
    InsightConflictResolution,
    InsightRecord,
    TrackedEntity,
)

logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    """Writes produced by one orchestrator operation.

    ``conflicts`` pairs each conflict with the version it was read at, or
    None for a newly created conflict.
    """

    conflicts: list[tuple[Conflict, int | None]] = field(default_factory=list)
    items: list[ConflictItem] = field(default_factory=list)
    resolutions: list[InsightConflictResolution] = field(default_factory=list)
    clusters: list[InsightConflictCluster] = field(default_factory=list)
    edges: list[ConflictGraphEdge] = field(default_factory=list)
    audit_entries: list[AuditLogEntry] = field(default_factory=list)
    history_added: list[InsightRecord] = field(default_factory=list)
    history_consumed: dict[str, str] = field(default_factory=dict)
    tracked: list[TrackedEntity] = field(default_factory=list)
    cluster_assignments: list[tuple[str, str | None, float | None]] = field(default_factory=list)

    def merge(self, other: ChangeSet) -> None:
        self.conflicts.extend(other.conflicts)
        self.items.extend(other.items)
        self.resolutions.extend(other.resolutions)
        self.clusters.extend(other.clusters)
        self.edges.extend(other.edges)
        self.audit_entries.extend(other.audit_entries)
        self.history_added.extend(other.history_added)
        self.history_consumed.update(other.history_consumed)
        self.tracked.extend(other.tracked)
        self.cluster_assignments.extend(other.cluster_assignments)


class ConflictRepository(abc.ABC):
    """Abstract storage for conflicts and everything they own."""

    @abc.abstractmethod
    async def get_conflict(self, conflict_id: str) -> Conflict | None: ...

    @abc.abstractmethod
    async def list_conflicts(self, organization_id: str | None = None) -> list[Conflict]: ...

    @abc.abstractmethod
    async def list_items(self, conflict_id: str) -> list[ConflictItem]: ...

    @abc.abstractmethod
    async def get_resolution(self, resolution_id: str) -> InsightConflictResolution | None: ...

    @abc.abstractmethod
    async def list_resolutions(self, conflict_id: str) -> list[InsightConflictResolution]: ...

    @abc.abstractmethod
    async def get_cluster(self, cluster_id: str) -> InsightConflictCluster | None: ...

    @abc.abstractmethod
    async def list_clusters(self, organization_id: str | None = None) -> list[InsightConflictCluster]: ...

    @abc.abstractmethod
    async def list_edges(self, organization_id: str | None = None) -> list[ConflictGraphEdge]: ...

    @abc.abstractmethod
    async def list_audit(self, conflict_id: str | None = None) -> list[AuditLogEntry]: ...

    @abc.abstractmethod
    async def list_history(self, organization_id: str) -> list[InsightRecord]: ...

    @abc.abstractmethod
    async def list_tracked(self, organization_id: str | None = None) -> list[TrackedEntity]: ...

    @abc.abstractmethod
    async def commit(self, changes: ChangeSet) -> None:
        """Apply every write in ``changes`` or none of them.

        Raises:
            ConcurrencyError: A conflict's stored version moved since it was read.
            ValidationError: A uniqueness constraint would be violated.
        """


class InMemoryConflictRepository(ConflictRepository):
    """Process-local repository.

    Reads return copies so callers never hold references to stored state.
    ``commit`` contains no awaits, which makes it atomic on the event loop.
    """

    def __init__(self, history_limit: int = 200) -> None:
        self._conflicts: dict[str, Conflict] = {}
        self._items: dict[str, list[ConflictItem]] = defaultdict(list)
        self._resolutions: dict[str, InsightConflictResolution] = {}
        self._clusters: dict[str, InsightConflictCluster] = {}
        self._edges: dict[str, ConflictGraphEdge] = {}
        self._audit: list[AuditLogEntry] = []
        self._history: dict[str, dict[tuple[str, str] | None, deque[InsightRecord]]] = defaultdict(dict)
        self._tracked: dict[tuple[str, str, str], TrackedEntity] = {}
        self._history_limit = history_limit

    async def get_conflict(self, conflict_id: str) -> Conflict | None:
        conflict = self._conflicts.get(conflict_id)
        return copy.deepcopy(conflict) if conflict else None

    async def list_conflicts(self, organization_id: str | None = None) -> list[Conflict]:
        return [
            copy.deepcopy(c) for c in self._conflicts.values()
            if organization_id is None or c.organization_id == organization_id
        ]

    async def list_items(self, conflict_id: str) -> list[ConflictItem]:
        return copy.deepcopy(self._items.get(conflict_id, []))

    async def get_resolution(self, resolution_id: str) -> InsightConflictResolution | None:
        resolution = self._resolutions.get(resolution_id)
        return copy.deepcopy(resolution) if resolution else None

    async def list_resolutions(self, conflict_id: str) -> list[InsightConflictResolution]:
        return [copy.deepcopy(r) for r in self._resolutions.values() if r.conflict_id == conflict_id]

    async def get_cluster(self, cluster_id: str) -> InsightConflictCluster | None:
        cluster = self._clusters.get(cluster_id)
        return copy.deepcopy(cluster) if cluster else None

    async def list_clusters(self, organization_id: str | None = None) -> list[InsightConflictCluster]:
        return [
            copy.deepcopy(c) for c in self._clusters.values()
            if organization_id is None or c.organization_id == organization_id
        ]

    async def list_edges(self, organization_id: str | None = None) -> list[ConflictGraphEdge]:
        return [
            copy.deepcopy(e) for e in self._edges.values()
            if organization_id is None or e.organization_id == organization_id
        ]

    async def list_audit(self, conflict_id: str | None = None) -> list[AuditLogEntry]:
        # Entries are frozen; sharing them is safe
        return [e for e in self._audit if conflict_id is None or e.conflict_id == conflict_id]

    async def list_history(self, organization_id: str) -> list[InsightRecord]:
        records = [r for bucket in self._history.get(organization_id, {}).values() for r in bucket]
        return copy.deepcopy(sorted(records, key=lambda r: (r.observed_at, r.id)))

    async def list_tracked(self, organization_id: str | None = None) -> list[TrackedEntity]:
        return [
            copy.deepcopy(t) for t in self._tracked.values()
            if organization_id is None or t.organization_id == organization_id
        ]

    def _check(self, changes: ChangeSet) -> None:
        for conflict, expected in changes.conflicts:
            stored = self._conflicts.get(conflict.id)
            if expected is None:
                if stored is not None:
                    raise ConcurrencyError(f"Conflict {conflict.id} already exists", conflict.id)
            elif stored is None or stored.version != expected:
                raise ConcurrencyError(
                    f"Conflict {conflict.id} was modified concurrently "
                    f"(expected version {expected}, found {stored.version if stored else 'none'})",
                    conflict.id,
                )
        existing = {(e.source_conflict_id, e.target_conflict_id, e.edge_type) for e in self._edges.values()}
        for edge in changes.edges:
            key = (edge.source_conflict_id, edge.target_conflict_id, edge.edge_type)
            if key in existing:
                raise ValidationError(
                    f"Edge {edge.source_conflict_id} → {edge.target_conflict_id} ({edge.edge_type}) already exists",
                    edge.source_conflict_id,
                )
            existing.add(key)

    async def commit(self, changes: ChangeSet) -> None:
        self._check(changes)

        for conflict, expected in changes.conflicts:
            stored = self._conflicts.get(conflict.id)
            saved = copy.deepcopy(conflict)
            saved.version = 1 if expected is None else expected + 1
            if stored is not None:
                # Cluster fields are owned by the cluster manager
                saved.cluster_id = stored.cluster_id
                saved.cluster_similarity = stored.cluster_similarity
            self._conflicts[conflict.id] = saved
            conflict.version = saved.version
        for item in changes.items:
            bucket = self._items[item.conflict_id]
            bucket[:] = [i for i in bucket if i.id != item.id] + [copy.deepcopy(item)]
        for resolution in changes.resolutions:
            self._resolutions[resolution.id] = copy.deepcopy(resolution)
        for cluster in changes.clusters:
            self._clusters[cluster.id] = copy.deepcopy(cluster)
        for edge in changes.edges:
            self._edges[edge.id] = copy.deepcopy(edge)
        for conflict_id, cluster_id, similarity in changes.cluster_assignments:
            stored = self._conflicts.get(conflict_id)
            if stored is not None:
                stored.cluster_id = cluster_id
                stored.cluster_similarity = similarity
        for record in changes.history_added:
            buckets = self._history[record.organization_id]
            bucket = buckets.setdefault(record.entity_key, deque(maxlen=self._history_limit))
            bucket.append(copy.deepcopy(record))
        if changes.history_consumed:
            for buckets in self._history.values():
                for bucket in buckets.values():
                    for record in bucket:
                        if record.id in changes.history_consumed:
                            record.conflict_id = changes.history_consumed[record.id]
        for tracked in changes.tracked:
            self._tracked[(tracked.organization_id, tracked.entity_type, tracked.entity_id)] = copy.deepcopy(tracked)
        self._audit.extend(changes.audit_entries)
        logger.debug(
            "Committed %d conflicts, %d items, %d audit entries",
            len(changes.conflicts),
            len(changes.items),
            len(changes.audit_entries),
        )
