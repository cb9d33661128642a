"""Conflict orchestrator.

The single entry point for every engine operation. It serializes writers
per conflict id, bounds each operation by an optional caller timeout,
computes changes on copies and commits them with their audit entries in
one repository change set.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from src.conflicts.analyzer import ConflictAnalyzer
from src.conflicts.audit import AuditLogger
from src.conflicts.clustering import ClusterManager, member_similarity
from src.conflicts.detector import ConflictDetector, ConflictDraft, record_from_input
from src.conflicts.export import ExportArtifact, ExportBundle, build_export
from src.conflicts.generation import AnthropicNarrativeGenerator, NarrativeGenerator
from src.conflicts.graph import ConflictGraphBuilder, GraphData
from src.conflicts.lifecycle import require_status, validate_transition
from src.conflicts.normalizer import SourceNormalizer
from src.conflicts.repository import ChangeSet, ConflictRepository, InMemoryConflictRepository
from src.conflicts.resolver import ConflictResolver
from src.conflicts.similarity import SimilarityEngine
from src.core.config import Settings
from src.core.errors import (
    ConcurrencyError,
    ConflictEngineError,
    NotFoundError,
    OperationTimeoutError,
    StateConflictError,
    ValidationError,
)
from src.core.models import (
    OPEN_STATUSES,
    SEVERITY_RANK,
    ActorType,
    AnalyzeOptions,
    AuditEventType,
    AuditLogEntry,
    Conflict,
    ConflictGraphEdge,
    ConflictItem,
    ConflictItemInput,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    CreateClusterInput,
    CreateConflictInput,
    CreateGraphEdgeInput,
    DetectionConfig,
    ExportConfig,
    InsightBatchInput,
    InsightConflictCluster,
    InsightConflictResolution,
    InsightRecord,
    ItemRole,
    ListConflictsQuery,
    ResolutionStrategy,
    ResolveOptions,
    SourceEntityRef,
    TimeRange,
    TrackedEntity,
    TrackEntityInput,
    UpdateConflictInput,
    new_id,
    parse_input,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Detection recomputes from fresh reads when a concurrent writer moved a conflict it extends
DETECTION_COMMIT_ATTEMPTS = 3
_STATUS_ORDER = list(ConflictStatus)
_RESOLVABLE = {ConflictStatus.DETECTED, ConflictStatus.ANALYZING}


def check_embeddings(items: Iterable[ConflictItemInput], expected: int | None = None, conflict_id: str | None = None) -> None:
    """Reject embeddings of the wrong or mixed dimensionality.

    Raises:
        ValidationError: If dimensions differ from ``expected`` or from each other.
    """
    dims = {len(item.embedding) for item in items if item.embedding}
    if expected is not None and dims - {expected}:
        raise ValidationError(
            f"Embedding dimensionality mismatch: expected {expected}, got {sorted(dims)}", conflict_id
        )
    if len(dims) > 1:
        raise ValidationError(f"Embedding dimensionality mismatch within one request: {sorted(dims)}", conflict_id)


class ConflictOrchestrator:
    """Coordinates detection, analysis, resolution, clustering and export."""

    def __init__(
        self,
        settings: Settings,
        repository: ConflictRepository | None = None,
        generator: NarrativeGenerator | None = None,
        clock: Callable[[], datetime] | None = None,
        normalizer: SourceNormalizer | None = None,
    ) -> None:
        self._settings = settings
        self._repo = repository or InMemoryConflictRepository(settings.insight_history_limit)
        self._clock = clock or utcnow
        similarity = SimilarityEngine()
        self._graph = ConflictGraphBuilder(similarity)
        self._detector = ConflictDetector(settings, similarity)
        self._analyzer = ConflictAnalyzer(settings, similarity, self._graph)
        self._resolver = ConflictResolver(settings, generator or AnthropicNarrativeGenerator(settings))
        self._clusters = ClusterManager(settings)
        self._audit = AuditLogger(self._repo)
        self._normalizer = normalizer or SourceNormalizer()
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key; a lock is dropped once nobody uses it
        self._lock_users: dict[str, int] = defaultdict(int)
        self._exports: dict[str, ExportArtifact] = {}

    @property
    def repository(self) -> ConflictRepository:
        return self._repo

    @property
    def normalizer(self) -> SourceNormalizer:
        return self._normalizer

    # -- Serialization and time boxing ---

    @contextlib.asynccontextmanager
    async def _locked(self, key: str, conflict_id: str | None = None) -> AsyncIterator[None]:
        """Hold the writer lock for ``key``.

        Raises:
            ConcurrencyError: If the lock is not obtained within ``lock_timeout_seconds``.
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._settings.lock_timeout_seconds)
            except TimeoutError as exc:
                raise ConcurrencyError(f"Timed out waiting for writer lock on {key}", conflict_id) from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _guarded(
        self,
        operation: str,
        conflict_id: str | None,
        timeout: float | None,
        actor_id: str | None,
        actor_type: ActorType,
        work: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``work`` under ``timeout``.

        On expiry nothing of the operation is committed and a single
        ``timeout`` audit entry is written instead.
        """
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                return await work()
        except TimeoutError as exc:
            if not deadline.expired():
                raise
            logger.warning("Operation %s on conflict %s timed out after %.2fs", operation, conflict_id, timeout)
            entry = self._audit.entry(
                conflict_id,
                AuditEventType.TIMEOUT,
                actor_id,
                actor_type,
                details={"operation": operation, "timeout_seconds": timeout},
                created_at=self._clock(),
            )
            await self._repo.commit(ChangeSet(audit_entries=[entry]))
            raise OperationTimeoutError(operation, timeout or 0.0, conflict_id) from exc

    # -- Reads ---

    async def _require_conflict(self, conflict_id: str) -> Conflict:
        conflict = await self._repo.get_conflict(conflict_id)
        if conflict is None:
            raise NotFoundError("conflict", conflict_id)
        return conflict

    async def _open_with_items(self, organization_id: str) -> list[tuple[Conflict, list[ConflictItem]]]:
        conflicts = [c for c in await self._repo.list_conflicts(organization_id) if c.is_open]
        return [(c, await self._repo.list_items(c.id)) for c in conflicts]

    async def _cadence_for(self, conflict: Conflict) -> timedelta | None:
        keys = {ref.key for ref in conflict.source_entities}
        cadences = [
            t.expected_cadence
            for t in await self._repo.list_tracked(conflict.organization_id)
            if t.key in keys
        ]
        return min(cadences, default=None)

    async def get_conflict(self, conflict_id: str) -> dict[str, Any]:
        """Conflict with its items, resolutions and related conflicts."""
        conflict = await self._require_conflict(conflict_id)
        items = await self._repo.list_items(conflict_id)
        if conflict.analysis is not None:
            related = conflict.analysis.related_conflicts
        else:
            related = self._graph.find_similar_conflicts(
                conflict,
                items,
                await self._open_with_items(conflict.organization_id),
                k=self._settings.related_k,
                min_similarity=self._settings.related_min_similarity,
            )
        return {
            "conflict": conflict,
            "items": items,
            "resolutions": await self._repo.list_resolutions(conflict_id),
            "related_conflicts": related,
        }

    async def list_conflicts(self, query: ListConflictsQuery | dict[str, Any] | None = None) -> dict[str, Any]:
        """Filtered, sorted and paginated conflicts."""
        query = parse_input(ListConflictsQuery, query or {})
        conflicts = await self._repo.list_conflicts(query.organization_id)
        search = query.search.lower() if query.search else None

        selected = []
        for c in conflicts:
            if query.conflict_type and c.conflict_type not in query.conflict_type:
                continue
            if query.severity and c.severity not in query.severity:
                continue
            if query.status and c.status not in query.status:
                continue
            if query.affected_system and query.affected_system not in c.affected_systems:
                continue
            if query.cluster_id and c.cluster_id != query.cluster_id:
                continue
            if query.created_after and c.created_at < query.created_after:
                continue
            if query.created_before and c.created_at > query.created_before:
                continue
            if search and search not in f"{c.title} {c.summary or ''}".lower():
                continue
            if query.has_resolution is not None:
                has_resolution = bool(await self._repo.list_resolutions(c.id))
                if has_resolution != query.has_resolution:
                    continue
            selected.append(c)

        sort_keys: dict[str, Callable[[Conflict], Any]] = {
            "created_at": lambda c: c.created_at,
            "updated_at": lambda c: c.updated_at,
            "severity": lambda c: SEVERITY_RANK[c.severity],
            "status": lambda c: _STATUS_ORDER.index(c.status),
        }
        key = sort_keys[query.sort_by]
        selected.sort(key=lambda c: c.id)
        selected.sort(key=key, reverse=query.sort_order == "desc")
        page = selected[query.offset:query.offset + query.limit]
        return {"conflicts": page, "total": len(selected), "has_more": query.offset + len(page) < len(selected)}

    async def list_items(self, conflict_id: str) -> list[ConflictItem]:
        await self._require_conflict(conflict_id)
        return await self._repo.list_items(conflict_id)

    async def list_resolutions(self, conflict_id: str) -> list[InsightConflictResolution]:
        await self._require_conflict(conflict_id)
        return await self._repo.list_resolutions(conflict_id)

    async def list_audit_log(
        self,
        conflict_id: str,
        event_types: set[AuditEventType] | None = None,
        actor_type: ActorType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        await self._require_conflict(conflict_id)
        return await self._audit.query(conflict_id, event_types, actor_type, limit, offset)

    # -- Creation and detection ---

    async def create_conflict(
        self,
        data: CreateConflictInput | dict[str, Any],
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
        timeout: float | None = None,
    ) -> Conflict:
        """Manually create a conflict, bypassing the detector."""
        payload = parse_input(CreateConflictInput, data)
        check_embeddings(payload.items, self._settings.embedding_dimension)

        async def work() -> Conflict:
            now = self._clock()
            conflict_id = new_id()
            has_primary = any(i.role == ItemRole.PRIMARY for i in payload.items)
            items = []
            for index, item in enumerate(payload.items):
                role = item.role or ItemRole.SECONDARY
                if not has_primary and index == 0:
                    role = ItemRole.PRIMARY
                items.append(ConflictItem(
                    id=new_id(),
                    conflict_id=conflict_id,
                    raw_insight=item.raw_insight,
                    source_system=item.source_system,
                    role=role,
                    confidence=item.confidence,
                    source_entity_type=item.source_entity_type,
                    source_entity_id=item.source_entity_id,
                    processed_insight=item.processed_insight,
                    embedding=list(item.embedding) if item.embedding else None,
                    source_timestamp=item.source_timestamp,
                    metric=item.metric,
                    value=item.value,
                    metadata=dict(item.metadata),
                    created_at=now,
                ))

            entities = [SourceEntityRef(e.entity_type, e.entity_id, e.source_system) for e in payload.source_entities]
            known = {e.key for e in entities}
            for item in items:
                if item.entity_key and item.entity_key not in known:
                    entities.append(SourceEntityRef(item.entity_key[0], item.entity_key[1], item.source_system))
                    known.add(item.entity_key)
            systems = list(dict.fromkeys([*payload.affected_systems, *(i.source_system for i in items)]))

            conflict = Conflict(
                id=conflict_id,
                organization_id=payload.organization_id,
                conflict_type=payload.conflict_type,
                title=payload.title,
                severity=payload.severity,
                summary=payload.summary,
                source_entities=entities,
                affected_systems=systems,
                linked_reality_map_ids=list(payload.linked_reality_map_ids),
                created_at=now,
                updated_at=now,
            )
            entry = self._audit.entry(
                conflict_id,
                AuditEventType.CREATED,
                actor_id,
                actor_type,
                new_state=conflict.snapshot(),
                details={"origin": "manual", "item_ids": [i.id for i in items]},
                created_at=now,
            )
            await self._repo.commit(ChangeSet(conflicts=[(conflict, None)], items=items, audit_entries=[entry]))
            logger.info("Created conflict %s (%s) with %d items", conflict_id, conflict.conflict_type, len(items))
            return conflict

        return await self._guarded("create_conflict", None, timeout, actor_id, actor_type, work)

    def _draft_changes(
        self,
        draft: ConflictDraft,
        actor_id: str | None,
        actor_type: ActorType,
        now: datetime,
    ) -> ChangeSet:
        conflict = draft.conflict
        changes = ChangeSet()
        audit = changes.audit_entries
        if draft.is_new:
            changes.conflicts.append((conflict, None))
            changes.items.extend(draft.items)
            audit.append(self._audit.entry(
                conflict.id,
                AuditEventType.CREATED,
                actor_id,
                actor_type,
                new_state=conflict.snapshot(),
                details={"origin": "detector", "reasons": draft.reasons, "item_ids": [i.id for i in draft.items]},
                created_at=now,
            ))
        else:
            changes.conflicts.append((conflict, conflict.version))
            changes.items.extend(draft.added_items)
        for item in draft.added_items:
            audit.append(self._audit.entry(
                conflict.id,
                AuditEventType.ITEM_ADDED,
                actor_id,
                actor_type,
                previous_state=draft.previous,
                new_state=conflict.snapshot(),
                details={
                    "item_id": item.id,
                    "raw_insight": item.raw_insight,
                    "source_system": item.source_system,
                    "source_entity_type": item.source_entity_type,
                    "source_entity_id": item.source_entity_id,
                    "confidence": item.confidence,
                    "role": item.role,
                },
                created_at=now,
            ))
        return changes

    async def push_insight_batch(
        self,
        data: InsightBatchInput | dict[str, Any],
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.SYSTEM,
        timeout: float | None = None,
        config: DetectionConfig | None = None,
    ) -> dict[str, Any]:
        """Run detection over a subsystem feed push.

        Returns:
            ``conflicts_created`` and ``conflicts_extended`` lists plus counts
            of independent and skipped insights.
        """
        batch = parse_input(InsightBatchInput, data)
        check_embeddings(batch.items, self._settings.embedding_dimension)
        org = batch.organization_id

        async def work() -> dict[str, Any]:
            async with self._locked(f"org:{org}"):
                for attempt in range(1, DETECTION_COMMIT_ATTEMPTS + 1):
                    now = self._clock()
                    records = [record_from_input(item, org, now) for item in batch.items]
                    outcome = self._detector.detect(
                        org,
                        records,
                        await self._open_with_items(org),
                        await self._repo.list_history(org),
                        now,
                        config=config,
                        tracked=await self._repo.list_tracked(org),
                    )
                    changes = ChangeSet()
                    for draft in outcome.drafts:
                        changes.merge(self._draft_changes(draft, actor_id, actor_type, now))
                    independent = {r.id for r in outcome.independent}
                    changes.history_added = [r for r in records if r.conflict_id or r.id in independent]
                    changes.history_consumed = dict(outcome.consumed_history)
                    try:
                        await self._repo.commit(changes)
                    except ConcurrencyError:
                        if attempt == DETECTION_COMMIT_ATTEMPTS:
                            raise
                        logger.warning("Detection commit for org %s lost a race, retrying (%d)", org, attempt)
                        continue
                    return {
                        "conflicts_created": [d.conflict for d in outcome.created],
                        "conflicts_extended": [d.conflict for d in outcome.extended],
                        "independent_count": sum(1 for r in outcome.independent if r.conflict_id is None),
                        "skipped_count": outcome.skipped,
                    }
            raise ConcurrencyError(f"Detection for organization {org} could not commit")  # pragma: no cover

        return await self._guarded("push_insight_batch", None, timeout, actor_id, actor_type, work)

    async def push_source_payloads(
        self,
        organization_id: str,
        source_system: str,
        payloads: list[dict[str, Any]],
        actor_id: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Normalize raw subsystem payloads and push them through detection."""
        items = self._normalizer.normalize_many(source_system, payloads)
        return await self.push_insight_batch(
            InsightBatchInput(organization_id=organization_id, items=items),
            actor_id=actor_id,
            timeout=timeout,
        )

    async def run_detection(
        self,
        organization_id: str,
        config: DetectionConfig | dict[str, Any] | None = None,
        target_systems: list[str] | None = None,
        time_range: TimeRange | dict[str, Any] | None = None,
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.SYSTEM,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Replay independent history through the detector and backfill missing data.

        Returns:
            ``conflicts_detected``, ``conflicts``, ``errors``,
            ``processing_time_ms`` and ``sources_scanned``.
        """
        config = parse_input(DetectionConfig, config or {})
        window = parse_input(TimeRange, time_range) if time_range is not None else None
        targets = set(target_systems or [])

        async def work() -> dict[str, Any]:
            started = time.perf_counter()
            errors: list[dict[str, Any]] = []
            detected: dict[str, Conflict] = {}
            async with self._locked(f"org:{organization_id}"):
                now = self._clock()
                history = await self._repo.list_history(organization_id)
                replay = [
                    h for h in history
                    if h.conflict_id is None
                    and (not targets or h.source_system in targets)
                    and (window is None or window.contains(h.observed_at))
                ]
                sources = {h.source_system for h in replay}
                replay_ids = {h.id for h in replay}
                processed: set[str] = set()
                rest = [h for h in history if h.id not in replay_ids]

                for start in range(0, len(replay), config.max_batch_size):
                    chunk = replay[start:start + config.max_batch_size]
                    try:
                        changes, conflicts = await self._replay_chunk(
                            organization_id, chunk, rest, config, actor_id, actor_type, now
                        )
                        await self._repo.commit(changes)
                    except ConflictEngineError as exc:
                        logger.exception("Detection replay chunk failed for org %s", organization_id)
                        errors.append({"source": "insight_history", "error": exc.message, "timestamp": now})
                        continue
                    detected.update({c.id: c for c in conflicts})
                    processed.update(h.id for h in chunk)
                    # Later chunks compare against everything except records still waiting to be replayed
                    rest = [
                        h for h in await self._repo.list_history(organization_id)
                        if h.id not in replay_ids or h.id in processed
                    ]

                if ConflictType.MISSING_DATA in config.enabled_types():
                    try:
                        drafts = self._detector.detect_missing_data(
                            organization_id,
                            await self._repo.list_tracked(organization_id),
                            await self._repo.list_history(organization_id),
                            await self._open_with_items(organization_id),
                            now,
                        )
                        changes = ChangeSet()
                        for draft in drafts:
                            changes.merge(self._draft_changes(draft, actor_id, actor_type, now))
                        await self._repo.commit(changes)
                        detected.update({d.conflict.id: d.conflict for d in drafts})
                    except ConflictEngineError as exc:
                        logger.exception("Missing-data backfill failed for org %s", organization_id)
                        errors.append({"source": "missing_data", "error": exc.message, "timestamp": now})

            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.info(
                "Detection run for org %s: %d conflicts, %d errors in %.1fms",
                organization_id,
                len(detected),
                len(errors),
                elapsed_ms,
            )
            return {
                "conflicts_detected": len(detected),
                "conflicts": list(detected.values()),
                "errors": errors,
                "processing_time_ms": elapsed_ms,
                "sources_scanned": len(sources),
            }

        return await self._guarded("run_detection", None, timeout, actor_id, actor_type, work)

    async def _replay_chunk(
        self,
        organization_id: str,
        chunk: list[InsightRecord],
        history: list[InsightRecord],
        config: DetectionConfig,
        actor_id: str | None,
        actor_type: ActorType,
        now: datetime,
    ) -> tuple[ChangeSet, list[Conflict]]:
        outcome = self._detector.detect(
            organization_id,
            chunk,
            await self._open_with_items(organization_id),
            history,
            now,
            config=config,
            tracked=await self._repo.list_tracked(organization_id),
        )
        changes = ChangeSet()
        for draft in outcome.drafts:
            changes.merge(self._draft_changes(draft, actor_id, actor_type, now))
        changes.history_consumed = dict(outcome.consumed_history)
        changes.history_consumed.update({r.id: r.conflict_id for r in chunk if r.conflict_id})
        return changes, [d.conflict for d in outcome.drafts]

    # -- Per-conflict mutations ---

    async def update_conflict(
        self,
        conflict_id: str,
        data: UpdateConflictInput | dict[str, Any],
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
        timeout: float | None = None,
    ) -> Conflict:
        """Edit descriptive fields. Status and severity are not editable here."""
        update = parse_input(UpdateConflictInput, data, conflict_id)

        async def work() -> Conflict:
            async with self._locked(conflict_id, conflict_id):
                conflict = await self._require_conflict(conflict_id)
                require_status(
                    conflict, {ConflictStatus.DETECTED, ConflictStatus.ANALYZING, ConflictStatus.RESOLVED}, "update"
                )
                expected, previous = conflict.version, conflict.snapshot()
                changed = update.model_dump(exclude_unset=True)
                if "title" in changed and update.title is not None:
                    conflict.title = update.title.strip()
                if "summary" in changed:
                    conflict.summary = update.summary
                if "affected_systems" in changed and update.affected_systems is not None:
                    conflict.affected_systems = list(dict.fromkeys(update.affected_systems))
                if "source_entities" in changed and update.source_entities is not None:
                    conflict.source_entities = [
                        SourceEntityRef(e.entity_type, e.entity_id, e.source_system) for e in update.source_entities
                    ]
                conflict.updated_at = self._clock()
                entry = self._audit.entry(
                    conflict_id,
                    AuditEventType.UPDATED,
                    actor_id,
                    actor_type,
                    previous_state=previous,
                    new_state=conflict.snapshot(),
                    details={"fields": sorted(changed)},
                    created_at=conflict.updated_at,
                )
                await self._repo.commit(ChangeSet(conflicts=[(conflict, expected)], audit_entries=[entry]))
                return conflict

        return await self._guarded("update_conflict", conflict_id, timeout, actor_id, actor_type, work)

    async def _analysis_changes(
        self,
        conflict: Conflict,
        options: AnalyzeOptions,
        actor_id: str | None,
        actor_type: ActorType,
        now: datetime,
    ) -> list[AuditLogEntry]:
        """Apply a fresh analysis to ``conflict`` in place and return its audit entries."""
        require_status(conflict, _RESOLVABLE, "analyze")
        previous = conflict.snapshot()
        items = await self._repo.list_items(conflict.id)
        outcome = self._analyzer.analyze(
            conflict,
            items,
            now,
            open_conflicts=await self._open_with_items(conflict.organization_id) if options.include_related else None,
            cadence=await self._cadence_for(conflict),
            include_related=options.include_related,
        )
        if conflict.status != ConflictStatus.ANALYZING:
            validate_transition(conflict.status, ConflictStatus.ANALYZING, conflict.id)
            conflict.status = ConflictStatus.ANALYZING
        conflict.analysis = outcome.analysis
        conflict.root_cause_analysis = outcome.root_cause if options.include_root_cause else None
        conflict.severity = outcome.analysis.severity
        conflict.updated_at = now
        return [self._audit.entry(
            conflict.id,
            AuditEventType.ANALYZED,
            actor_id,
            actor_type,
            previous_state=previous,
            new_state=conflict.snapshot(),
            details={
                "severity_score": outcome.analysis.severity_score,
                "severity_rationale": outcome.analysis.severity_rationale,
                "suggested_strategy": outcome.analysis.suggested_strategy,
                "difficulty": outcome.analysis.difficulty,
                "root_causes": [c.cause for c in outcome.analysis.root_causes],
                "related_conflicts": [r.conflict_id for r in outcome.analysis.related_conflicts],
            },
            created_at=now,
        )]

    async def analyze_conflict(
        self,
        conflict_id: str,
        options: AnalyzeOptions | dict[str, Any] | None = None,
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.SYSTEM,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Analyze a conflict and move it to ``analyzing``."""
        opts = parse_input(AnalyzeOptions, options or {}, conflict_id)

        async def work() -> dict[str, Any]:
            async with self._locked(conflict_id, conflict_id):
                conflict = await self._require_conflict(conflict_id)
                expected = conflict.version
                entries = await self._analysis_changes(conflict, opts, actor_id, actor_type, self._clock())
                await self._repo.commit(ChangeSet(conflicts=[(conflict, expected)], audit_entries=entries))
                return {"conflict": conflict, "analysis": conflict.analysis}

        return await self._guarded("analyze_conflict", conflict_id, timeout, actor_id, actor_type, work)

    def _accept(
        self,
        conflict: Conflict,
        resolution: InsightConflictResolution,
        previous_accepted: InsightConflictResolution | None,
        actor_id: str | None,
        actor_type: ActorType,
        now: datetime,
    ) -> tuple[list[InsightConflictResolution], list[AuditLogEntry]]:
        """Accept ``resolution``, superseding any prior accepted one, and resolve the conflict."""
        resolutions = [resolution]
        entries = []
        resolution.is_accepted = True
        resolution.accepted_at = now
        resolution.accepted_by = actor_id
        if previous_accepted is not None and previous_accepted.id != resolution.id:
            previous_accepted.is_accepted = False
            previous_accepted.superseded_at = now
            previous_accepted.superseded_by = resolution.id
            resolutions.append(previous_accepted)
            entries.append(self._audit.entry(
                conflict.id,
                AuditEventType.RESOLUTION_SUPERSEDED,
                actor_id,
                actor_type,
                details={"superseded_resolution_id": previous_accepted.id, "accepted_resolution_id": resolution.id},
                created_at=now,
            ))

        previous = conflict.snapshot()
        if conflict.status != ConflictStatus.RESOLVED:
            validate_transition(conflict.status, ConflictStatus.RESOLVED, conflict.id)
            conflict.status = ConflictStatus.RESOLVED
        conflict.resolved_at = now
        conflict.resolved_by = actor_id
        conflict.updated_at = now
        entries.append(self._audit.entry(
            conflict.id,
            AuditEventType.RESOLVED,
            actor_id,
            actor_type,
            previous_state=previous,
            new_state=conflict.snapshot(),
            details={"resolution_id": resolution.id, "strategy": resolution.strategy, "confidence": resolution.confidence},
            created_at=now,
        ))
        return resolutions, entries

    async def resolve_conflict(
        self,
        conflict_id: str,
        strategy: ResolutionStrategy | None = None,
        options: ResolveOptions | dict[str, Any] | None = None,
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Produce a resolution; accept it and resolve the conflict when ``auto_accept`` is set.

        Raises:
            StateConflictError: The conflict is resolved or dismissed, or not
                yet analyzed while auto-analysis is disabled.
        """
        opts = parse_input(ResolveOptions, options or {}, conflict_id)

        async def work() -> dict[str, Any]:
            async with self._locked(conflict_id, conflict_id):
                conflict = await self._require_conflict(conflict_id)
                allowed = _RESOLVABLE if self._settings.auto_analyze_before_resolve else {ConflictStatus.ANALYZING}
                require_status(conflict, allowed, "resolve")
                expected = conflict.version
                now = self._clock()
                entries = []
                if conflict.status == ConflictStatus.DETECTED:
                    entries.extend(await self._analysis_changes(conflict, AnalyzeOptions(), actor_id, ActorType.SYSTEM, now))

                chosen = strategy or opts.strategy
                if chosen is None:
                    chosen = conflict.analysis.suggested_strategy if conflict.analysis else ResolutionStrategy.AI_CONSENSUS
                items = await self._repo.list_items(conflict_id)
                resolution = await self._resolver.resolve(conflict, items, chosen, opts, now)
                entries.append(self._audit.entry(
                    conflict_id,
                    AuditEventType.RESOLUTION_CREATED,
                    actor_id,
                    actor_type,
                    details={
                        "resolution_id": resolution.id,
                        "strategy": resolution.strategy,
                        "confidence": resolution.confidence,
                        "rationale": resolution.rationale,
                        "model_name": resolution.model_name,
                    },
                    created_at=now,
                ))
                resolutions = [resolution]
                if opts.auto_accept:
                    accepted = next((r for r in await self._repo.list_resolutions(conflict_id) if r.is_accepted), None)
                    resolutions, accept_entries = self._accept(conflict, resolution, accepted, actor_id, actor_type, now)
                    entries.extend(accept_entries)
                else:
                    conflict.updated_at = now

                await self._repo.commit(ChangeSet(
                    conflicts=[(conflict, expected)], resolutions=resolutions, audit_entries=entries
                ))
                return {"conflict": conflict, "resolution": resolution}

        return await self._guarded("resolve_conflict", conflict_id, timeout, actor_id, actor_type, work)

    async def review_resolution(
        self,
        resolution_id: str,
        accept: bool,
        notes: str | None = None,
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Human review of a resolution. Acceptance resolves the conflict.

        Raises:
            NotFoundError: Unknown resolution id.
            StateConflictError: The conflict is dismissed, or the review would
                reject the accepted resolution of a resolved conflict.
        """
        found = await self._repo.get_resolution(resolution_id)
        if found is None:
            raise NotFoundError("resolution", resolution_id)
        conflict_id = found.conflict_id

        async def work() -> dict[str, Any]:
            async with self._locked(conflict_id, conflict_id):
                resolution = await self._repo.get_resolution(resolution_id)
                conflict = await self._require_conflict(conflict_id)
                if resolution is None:
                    raise NotFoundError("resolution", resolution_id, conflict_id)
                require_status(conflict, {ConflictStatus.ANALYZING, ConflictStatus.RESOLVED}, "review resolution for")
                if not accept and resolution.is_accepted and conflict.status == ConflictStatus.RESOLVED:
                    raise StateConflictError(
                        "Cannot reject the accepted resolution of a resolved conflict; accept another resolution instead",
                        conflict_id=conflict_id,
                        current_status=str(conflict.status),
                        operation="review_resolution",
                    )
                expected, now = conflict.version, self._clock()
                resolution.is_reviewed = True
                resolution.reviewed_by = actor_id
                resolution.reviewed_at = now
                resolution.review_notes = notes
                entries = [self._audit.entry(
                    conflict_id,
                    AuditEventType.RESOLUTION_REVIEWED,
                    actor_id,
                    actor_type,
                    details={"resolution_id": resolution_id, "accepted": accept, "notes": notes},
                    created_at=now,
                )]
                resolutions = [resolution]
                if accept and not resolution.is_accepted:
                    accepted = next(
                        (r for r in await self._repo.list_resolutions(conflict_id) if r.is_accepted), None
                    )
                    resolutions, accept_entries = self._accept(conflict, resolution, accepted, actor_id, actor_type, now)
                    entries.extend(accept_entries)
                elif not accept:
                    resolution.is_accepted = False
                conflict.updated_at = now
                await self._repo.commit(ChangeSet(
                    conflicts=[(conflict, expected)], resolutions=resolutions, audit_entries=entries
                ))
                logger.info("Resolution %s reviewed by %s: accepted=%s", resolution_id, actor_id, accept)
                return {"conflict": conflict, "resolution": resolution}

        return await self._guarded("review_resolution", conflict_id, timeout, actor_id, actor_type, work)

    async def dismiss_conflict(
        self,
        conflict_id: str,
        reason: str | None = None,
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
        timeout: float | None = None,
    ) -> Conflict:
        """Dismiss a conflict. Its items and resolutions are left untouched."""

        async def work() -> Conflict:
            async with self._locked(conflict_id, conflict_id):
                conflict = await self._require_conflict(conflict_id)
                validate_transition(conflict.status, ConflictStatus.DISMISSED, conflict_id)
                expected, previous, now = conflict.version, conflict.snapshot(), self._clock()
                conflict.status = ConflictStatus.DISMISSED
                conflict.dismissed_at = now
                conflict.dismissed_by = actor_id
                conflict.updated_at = now
                entry = self._audit.entry(
                    conflict_id,
                    AuditEventType.DISMISSED,
                    actor_id,
                    actor_type,
                    previous_state=previous,
                    new_state=conflict.snapshot(),
                    details={"reason": reason},
                    created_at=now,
                )
                await self._repo.commit(ChangeSet(conflicts=[(conflict, expected)], audit_entries=[entry]))
                logger.info("Dismissed conflict %s: %s", conflict_id, reason or "no reason given")
                return conflict

        return await self._guarded("dismiss_conflict", conflict_id, timeout, actor_id, actor_type, work)

    async def link_reality_map(
        self,
        conflict_id: str,
        reality_map_ids: list[str],
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
        timeout: float | None = None,
    ) -> Conflict:
        if not reality_map_ids or any(not rid.strip() for rid in reality_map_ids):
            raise ValidationError("reality_map_ids must be non-empty identifiers", conflict_id)

        async def work() -> Conflict:
            async with self._locked(conflict_id, conflict_id):
                conflict = await self._require_conflict(conflict_id)
                require_status(conflict, set(ConflictStatus) - {ConflictStatus.DISMISSED}, "link reality map to")
                expected, now = conflict.version, self._clock()
                added = [rid for rid in dict.fromkeys(reality_map_ids) if rid not in conflict.linked_reality_map_ids]
                conflict.linked_reality_map_ids.extend(added)
                conflict.updated_at = now
                entry = self._audit.entry(
                    conflict_id,
                    AuditEventType.REALITY_MAP_LINKED,
                    actor_id,
                    actor_type,
                    details={"added": added, "linked_reality_map_ids": conflict.linked_reality_map_ids},
                    created_at=now,
                )
                await self._repo.commit(ChangeSet(conflicts=[(conflict, expected)], audit_entries=[entry]))
                return conflict

        return await self._guarded("link_reality_map", conflict_id, timeout, actor_id, actor_type, work)

    # -- Batches ---

    async def _batch(
        self,
        conflict_ids: list[str],
        operation: Callable[[str], Awaitable[Any]],
        label: str,
    ) -> dict[str, Any]:
        """Apply ``operation`` to every id independently; failures are reported per id."""

        async def run(conflict_id: str) -> dict[str, Any]:
            try:
                await operation(conflict_id)
            except ConflictEngineError as exc:
                logger.warning("Batch %s failed for conflict %s: %s", label, conflict_id, exc.message)
                return {"conflict_id": conflict_id, "success": False, "error": exc.to_dict()}
            except Exception as exc:
                logger.exception("Batch %s crashed for conflict %s", label, conflict_id)
                return {
                    "conflict_id": conflict_id,
                    "success": False,
                    "error": {"kind": "internal_error", "message": str(exc), "conflict_id": conflict_id},
                }
            return {"conflict_id": conflict_id, "success": True, "error": None}

        results = list(await asyncio.gather(*(run(cid) for cid in conflict_ids)))
        success = sum(1 for r in results if r["success"])
        logger.info("Batch %s: %d/%d succeeded", label, success, len(results))
        return {
            "results": results,
            "total_processed": len(results),
            "success_count": success,
            "error_count": len(results) - success,
        }

    async def batch_analyze(
        self,
        conflict_ids: list[str],
        options: AnalyzeOptions | dict[str, Any] | None = None,
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.SYSTEM,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return await self._batch(
            conflict_ids,
            lambda cid: self.analyze_conflict(cid, options, actor_id, actor_type, timeout),
            "analyze",
        )

    async def batch_resolve(
        self,
        conflict_ids: list[str],
        strategy: ResolutionStrategy | None = None,
        options: ResolveOptions | dict[str, Any] | None = None,
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return await self._batch(
            conflict_ids,
            lambda cid: self.resolve_conflict(cid, strategy, options, actor_id, actor_type, timeout),
            "resolve",
        )

    async def batch_dismiss(
        self,
        conflict_ids: list[str],
        reason: str | None = None,
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return await self._batch(
            conflict_ids,
            lambda cid: self.dismiss_conflict(cid, reason, actor_id, actor_type, timeout),
            "dismiss",
        )

    # -- Graph ---

    async def get_conflict_graph(
        self,
        conflict_ids: list[str] | None = None,
        organization_id: str | None = None,
    ) -> GraphData:
        """Graph projection of the given conflicts, or of all open conflicts."""
        if conflict_ids:
            conflicts = [await self._require_conflict(cid) for cid in dict.fromkeys(conflict_ids)]
        else:
            conflicts = [c for c in await self._repo.list_conflicts(organization_id) if c.status in OPEN_STATUSES]
        conflicts.sort(key=lambda c: (c.created_at, c.id))
        return self._graph.build(
            conflicts,
            {c.id: await self._repo.list_items(c.id) for c in conflicts},
            {c.id: await self._repo.list_resolutions(c.id) for c in conflicts},
            await self._repo.list_edges(organization_id),
            generated_at=self._clock(),
        )

    async def create_graph_edge(
        self,
        data: CreateGraphEdgeInput | dict[str, Any],
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
    ) -> ConflictGraphEdge:
        """Persist a directional edge between two conflicts of one organization.

        Raises:
            ValidationError: Self-loop, cross-organization or duplicate edge.
        """
        payload = parse_input(CreateGraphEdgeInput, data)
        source = await self._require_conflict(payload.source_conflict_id)
        target = await self._require_conflict(payload.target_conflict_id)
        if source.organization_id != target.organization_id:
            raise ValidationError("Edges cannot connect conflicts of different organizations", source.id)

        async with self._locked(f"edges:{source.organization_id}", source.id):
            now = self._clock()
            edge = ConflictGraphEdge(
                id=new_id(),
                organization_id=source.organization_id,
                source_conflict_id=source.id,
                target_conflict_id=target.id,
                edge_type=payload.edge_type,
                weight=payload.weight,
                label=payload.label,
                metadata=dict(payload.metadata),
                created_at=now,
            )
            entry = self._audit.entry(
                source.id,
                AuditEventType.EDGE_CREATED,
                actor_id,
                actor_type,
                details={"edge_id": edge.id, "target_conflict_id": target.id, "edge_type": edge.edge_type},
                created_at=now,
            )
            await self._repo.commit(ChangeSet(edges=[edge], audit_entries=[entry]))
        return edge

    async def list_graph_edges(
        self,
        organization_id: str | None = None,
        conflict_id: str | None = None,
    ) -> list[ConflictGraphEdge]:
        edges = await self._repo.list_edges(organization_id)
        if conflict_id is not None:
            edges = [e for e in edges if conflict_id in (e.source_conflict_id, e.target_conflict_id)]
        return sorted(edges, key=lambda e: (e.created_at, e.id))

    # -- Statistics ---

    async def get_conflict_stats(self, organization_id: str | None = None) -> dict[str, Any]:
        conflicts = await self._repo.list_conflicts(organization_id)
        clusters = await self._repo.list_clusters(organization_id)
        by_type = {str(t): 0 for t in ConflictType}
        by_severity = {str(s): 0 for s in ConflictSeverity}
        by_status = {str(s): 0 for s in ConflictStatus}
        durations = []
        for c in conflicts:
            by_type[str(c.conflict_type)] += 1
            by_severity[str(c.severity)] += 1
            by_status[str(c.status)] += 1
            if c.status == ConflictStatus.RESOLVED and c.resolved_at is not None:
                durations.append((c.resolved_at - c.created_at).total_seconds() / 3600)
        total = len(conflicts)
        return {
            "total": total,
            "by_type": by_type,
            "by_severity": by_severity,
            "by_status": by_status,
            "open_count": by_status[ConflictStatus.DETECTED] + by_status[ConflictStatus.ANALYZING],
            "cluster_count": len(clusters),
            "active_cluster_count": sum(1 for c in clusters if c.is_active),
            "average_resolution_time_hours": round(sum(durations) / len(durations), 2) if durations else None,
            "resolution_rate": round(by_status[ConflictStatus.RESOLVED] / total, 4) if total else 0.0,
        }

    # -- Clusters ---

    async def _items_by_conflict(self, conflicts: list[Conflict]) -> dict[str, list[ConflictItem]]:
        return {c.id: await self._repo.list_items(c.id) for c in conflicts}

    async def create_cluster(
        self,
        data: CreateClusterInput | dict[str, Any],
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
    ) -> InsightConflictCluster:
        """Create a manual cluster, moving the listed conflicts into it."""
        payload = parse_input(CreateClusterInput, data)
        async with self._locked(f"clusters:{payload.organization_id}"):
            members = [await self._require_conflict(cid) for cid in dict.fromkeys(payload.conflict_ids)]
            foreign = [m.id for m in members if m.organization_id != payload.organization_id]
            if foreign:
                raise ValidationError(f"Conflicts {foreign} belong to another organization", foreign[0])
            now = self._clock()
            cluster = InsightConflictCluster(
                id=new_id(),
                organization_id=payload.organization_id,
                name=payload.name,
                description=payload.description,
                created_at=now,
                updated_at=now,
            )
            items = await self._items_by_conflict(members)
            self._clusters.refresh(cluster, members, items, now)
            changes = ChangeSet(clusters=[cluster])
            changes.audit_entries.append(self._audit.entry(
                None,
                AuditEventType.CLUSTER_CREATED,
                actor_id,
                actor_type,
                details={"cluster_id": cluster.id, "name": cluster.name, "member_ids": [m.id for m in members]},
                created_at=now,
            ))
            for member in members:
                score = member_similarity(cluster, items[member.id])
                changes.cluster_assignments.append((member.id, cluster.id, score))
                changes.audit_entries.append(self._cluster_assigned_entry(member, cluster.id, score, actor_id, actor_type, now))

            # Clusters that lose members keep consistent statistics
            moved = {m.id for m in members}
            for old_id in sorted({m.cluster_id for m in members if m.cluster_id}):
                old = await self._repo.get_cluster(old_id)
                if old is None:
                    continue
                remaining = [
                    c for c in await self._repo.list_conflicts(payload.organization_id)
                    if c.cluster_id == old_id and c.id not in moved
                ]
                self._clusters.refresh(old, remaining, await self._items_by_conflict(remaining), now)
                changes.clusters.append(old)
            await self._repo.commit(changes)
        logger.info("Created cluster %s with %d members", cluster.id, cluster.member_count)
        return cluster

    def _cluster_assigned_entry(
        self,
        conflict: Conflict,
        cluster_id: str | None,
        similarity: float | None,
        actor_id: str | None,
        actor_type: ActorType,
        now: datetime,
    ) -> AuditLogEntry:
        return self._audit.entry(
            conflict.id,
            AuditEventType.CLUSTER_ASSIGNED,
            actor_id,
            actor_type,
            previous_state={"cluster_id": conflict.cluster_id},
            new_state={"cluster_id": cluster_id},
            details={"similarity": similarity},
            created_at=now,
        )

    async def list_clusters(self, organization_id: str | None = None, active_only: bool = False) -> list[InsightConflictCluster]:
        clusters = await self._repo.list_clusters(organization_id)
        if active_only:
            clusters = [c for c in clusters if c.is_active]
        return sorted(clusters, key=lambda c: (c.created_at, c.id))

    async def deactivate_cluster(
        self,
        cluster_id: str,
        actor_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
    ) -> InsightConflictCluster:
        """Deactivate a cluster. Its members become unclustered on the next recompute."""
        found = await self._repo.get_cluster(cluster_id)
        if found is None:
            raise NotFoundError("cluster", cluster_id)
        async with self._locked(f"clusters:{found.organization_id}"):
            cluster = await self._repo.get_cluster(cluster_id)
            if cluster is None:
                raise NotFoundError("cluster", cluster_id)
            now = self._clock()
            cluster.is_active = False
            cluster.updated_at = now
            entry = self._audit.entry(
                None,
                AuditEventType.CLUSTER_DEACTIVATED,
                actor_id,
                actor_type,
                details={"cluster_id": cluster_id, "member_count": cluster.member_count},
                created_at=now,
            )
            await self._repo.commit(ChangeSet(clusters=[cluster], audit_entries=[entry]))
        return cluster

    async def recompute_clusters(self, organization_id: str | None = None) -> dict[str, Any]:
        """Run the cluster recompute pass for one organization or for all of them."""
        if organization_id is None:
            orgs = sorted({c.organization_id for c in await self._repo.list_conflicts()})
        else:
            orgs = [organization_id]

        totals = {"assigned": 0, "created": 0, "orphaned": 0, "clusters": []}
        for org in orgs:
            async with self._locked(f"clusters:{org}"):
                now = self._clock()
                conflicts = await self._repo.list_conflicts(org)
                by_id = {c.id: c for c in conflicts}
                plan = self._clusters.recompute(
                    org,
                    conflicts,
                    await self._items_by_conflict(conflicts),
                    await self._repo.list_clusters(org),
                    now,
                )
                changes = ChangeSet(clusters=plan.clusters, cluster_assignments=plan.assignments)
                for cluster in plan.created:
                    changes.audit_entries.append(self._audit.entry(
                        None,
                        AuditEventType.CLUSTER_CREATED,
                        None,
                        ActorType.SYSTEM,
                        details={"cluster_id": cluster.id, "name": cluster.name, "auto_generated": True},
                        created_at=now,
                    ))
                final: dict[str, tuple[str | None, float | None]] = {}
                for conflict_id, cluster_id, similarity in plan.assignments:
                    final[conflict_id] = (cluster_id, similarity)
                for conflict_id, (cluster_id, similarity) in final.items():
                    changes.audit_entries.append(self._cluster_assigned_entry(
                        by_id[conflict_id], cluster_id, similarity, None, ActorType.SYSTEM, now
                    ))
                await self._repo.commit(changes)
            totals["assigned"] += plan.assigned_count
            totals["created"] += len(plan.created)
            totals["orphaned"] += len(plan.orphaned)
            totals["clusters"].extend(plan.clusters)
        return totals

    # -- Tracking ---

    async def track_entity(self, data: TrackEntityInput | dict[str, Any]) -> TrackedEntity:
        """Register an entity whose silence should raise a missing-data conflict."""
        payload = parse_input(TrackEntityInput, data)
        tracked = TrackedEntity(
            organization_id=payload.organization_id,
            entity_type=payload.entity_type,
            entity_id=payload.entity_id,
            expected_cadence=timedelta(hours=payload.expected_cadence_hours),
            min_sources=payload.min_sources,
            source_systems=list(payload.source_systems),
            registered_at=self._clock(),
        )
        await self._repo.commit(ChangeSet(tracked=[tracked]))
        logger.info(
            "Tracking %s %s every %.1fh", tracked.entity_type, tracked.entity_id, payload.expected_cadence_hours
        )
        return tracked

    # -- Export ---

    async def export(self, config: ExportConfig | dict[str, Any] | None = None) -> dict[str, Any]:
        """Render an export artifact and hold it until it expires."""
        cfg = parse_input(ExportConfig, config or {})
        now = self._clock()
        self._exports = {k: v for k, v in self._exports.items() if not v.is_expired(now)}

        conflicts = [
            c for c in await self._repo.list_conflicts(cfg.organization_id)
            if cfg.date_range is None or cfg.date_range.contains(c.created_at)
        ]
        conflicts.sort(key=lambda c: (c.created_at, c.id))
        bundle = ExportBundle(conflicts=conflicts)
        for c in conflicts:
            if cfg.include_items or cfg.format != "json":
                bundle.items[c.id] = await self._repo.list_items(c.id)
            bundle.resolutions[c.id] = await self._repo.list_resolutions(c.id)
            if cfg.include_audit_log:
                bundle.audit[c.id] = await self._repo.list_audit(c.id)

        artifact = build_export(
            cfg,
            bundle,
            now,
            timedelta(minutes=self._settings.export_ttl_minutes),
            self._settings.export_base_url,
        )
        self._exports[artifact.id] = artifact
        return {
            "export_id": artifact.id,
            "url": artifact.url,
            "expires_at": artifact.expires_at,
            "format": artifact.format,
            "conflict_count": artifact.conflict_count,
        }

    async def get_export(self, export_id: str) -> ExportArtifact:
        artifact = self._exports.get(export_id)
        if artifact is None or artifact.is_expired(self._clock()):
            self._exports.pop(export_id, None)
            raise NotFoundError("export", export_id)
        return artifact
