"""Conflict detection over batches of normalized insights.

For each incoming insight the detector decides whether it:
- extends an open conflict (similar to it and disagreeing with it),
- opens a new conflict together with an earlier independent insight, or
- is independent and is remembered for later comparisons.

Conflict types are assigned by a first-match classification table over the
full item set of a conflict:
    contradiction → divergence → missing_data → ambiguity → inconsistency

The detector never mutates stored state. It returns drafts that the
orchestrator commits together with their audit entries.
"""

from __future__ import annotations

import copy
import logging
import re
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from src.conflicts.similarity import SimilarityEngine
from src.core.config import Settings
from src.core.models import (
    ClaimValue,
    Conflict,
    ConflictItem,
    ConflictItemInput,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    DetectionConfig,
    InsightRecord,
    ItemRole,
    SourceEntityRef,
    TrackedEntity,
    new_id,
)

logger = logging.getLogger(__name__)

DETECTOR_SOURCE = "detector"
MISSING_DATA_MARKER = "missing_data"

SENTIMENT_MARKERS: dict[str, frozenset[str]] = {
    "positive": frozenset({
        "positive", "favorable", "favourable", "praise", "praised", "strong", "growth",
        "improved", "improving", "upbeat", "optimistic", "bullish", "success", "gain", "gains",
    }),
    "negative": frozenset({
        "negative", "unfavorable", "unfavourable", "criticism", "criticized", "weak", "decline",
        "declining", "worsened", "pessimistic", "bearish", "failure", "loss", "losses", "backlash",
    }),
    "neutral": frozenset({"neutral", "mixed", "flat", "stable", "unchanged", "balanced"}),
}

_NEGATION_RE = re.compile(
    r"\b(?:not|no|never|none|cannot|without|isn't|aren't|wasn't|weren't|doesn't|don't|didn't|won't|hasn't|haven't)\b",
    re.IGNORECASE,
)
_NUMBER_RE = re.compile(r"(?<![\w.])(-?\d+(?:\.\d+)?)(%?)")
_WORD_RE = re.compile(r"[a-z][a-z_]+")
_STOPWORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "of", "for", "at", "by", "to", "in", "on", "and",
    "with", "about", "around", "approximately", "now", "reported", "reports", "be", "has", "have",
})


@dataclass(frozen=True)
class Claim:
    """Structured assertion carried by one insight."""

    metric: str
    value: ClaimValue
    inferred: bool = False

    @property
    def is_numeric(self) -> bool:
        return isinstance(self.value, int | float) and not isinstance(self.value, bool)


def sentiment_label(text: str) -> str | None:
    """Dominant sentiment marker in ``text``, or None when absent or tied."""
    tokens = _WORD_RE.findall(text.lower())
    counts = {label: sum(1 for t in tokens if t in words) for label, words in SENTIMENT_MARKERS.items()}
    best = max(counts.values())
    if best == 0:
        return None
    leaders = [label for label, count in counts.items() if count == best]
    return leaders[0] if len(leaders) == 1 else None


def has_negation(text: str) -> bool:
    return bool(_NEGATION_RE.search(text))


def extract_numbers(text: str) -> list[float]:
    return [float(match.group(1)) for match in _NUMBER_RE.finditer(text)]


def _metric_before(text: str, position: int) -> str:
    words = [w for w in _WORD_RE.findall(text[:position].lower()) if w not in _STOPWORDS]
    return words[-1] if words else "value"


def extract_claim(entry: ConflictItem | InsightRecord) -> Claim:
    """Structured claim of an insight.

    Adapter-supplied metric/value pairs win. Otherwise the claim is read
    from sentiment markers, then the first number, then whether the text
    is negated.
    """
    if entry.metric and entry.value is not None:
        value = entry.value.lower() if isinstance(entry.value, str) else entry.value
        return Claim(entry.metric.lower(), value)
    text = entry.text
    label = sentiment_label(text)
    if label is not None:
        return Claim("sentiment", label, inferred=True)
    match = _NUMBER_RE.search(text)
    if match:
        return Claim(_metric_before(text, match.start()), float(match.group(1)), inferred=True)
    return Claim("assertion", not has_negation(text), inferred=True)


def relative_delta(a: float, b: float) -> float:
    """Relative difference of two magnitudes in [0, 1] (or above for sign flips)."""
    scale = max(abs(a), abs(b))
    if scale == 0:
        return 0.0
    return abs(a - b) / scale


def polarity_disagreement(
    a: ConflictItem | InsightRecord,
    b: ConflictItem | InsightRecord,
    divergence_threshold: float,
) -> str | None:
    """Reason two insights disagree, or None when they are compatible."""
    claim_a, claim_b = extract_claim(a), extract_claim(b)
    if claim_a.metric == claim_b.metric:
        if claim_a.is_numeric and claim_b.is_numeric:
            if relative_delta(float(claim_a.value), float(claim_b.value)) > divergence_threshold:  # type: ignore[arg-type]
                return "numeric delta beyond tolerance"
            return None
        if claim_a.value != claim_b.value:
            if claim_a.metric == "sentiment":
                return "opposite sentiment markers"
            if claim_a.metric == "assertion":
                return "negation pattern"
            return "opposing categorical values"
        return None

    sentiment_a, sentiment_b = sentiment_label(a.text), sentiment_label(b.text)
    if sentiment_a and sentiment_b and sentiment_a != sentiment_b:
        return "opposite sentiment markers"
    numbers_a, numbers_b = extract_numbers(a.text), extract_numbers(b.text)
    if numbers_a and numbers_b and relative_delta(numbers_a[0], numbers_b[0]) > divergence_threshold:
        return "numeric delta beyond tolerance"
    if has_negation(a.text) != has_negation(b.text):
        return "negation pattern"
    return None


@dataclass
class ClassificationContext:
    """Thresholds and lookups used by ``classify_conflict``."""

    join_threshold: float
    divergence_threshold: float
    ambiguity_range: tuple[float, float]
    status_sequences: dict[str, list[str]]
    tracked: dict[tuple[str, str], TrackedEntity] = field(default_factory=dict)
    enabled: set[ConflictType] = field(default_factory=lambda: set(ConflictType))
    reference_time: datetime | None = None


def _claim_groups(items: list[ConflictItem]) -> dict[tuple[tuple[str, str] | None, str], list[tuple[ConflictItem, Claim]]]:
    groups: dict[tuple[tuple[str, str] | None, str], list[tuple[ConflictItem, Claim]]] = defaultdict(list)
    for item in items:
        claim = extract_claim(item)
        groups[(item.entity_key, claim.metric)].append((item, claim))
    return groups


def _is_contradiction(groups: dict, ctx: ClassificationContext) -> bool:
    for (_, metric), members in groups.items():
        if metric in ctx.status_sequences:
            continue
        values = {claim.value for _, claim in members if not claim.is_numeric}
        if len(values) >= 2:
            return True
    return False


def _is_divergence(groups: dict, ctx: ClassificationContext) -> bool:
    for members in groups.values():
        numbers = [float(claim.value) for _, claim in members if claim.is_numeric]
        if len(numbers) >= 2 and relative_delta(max(numbers), min(numbers)) > ctx.divergence_threshold:
            return True
    return False


def _is_missing_data(items: list[ConflictItem], ctx: ClassificationContext) -> bool:
    if any(item.metadata.get(MISSING_DATA_MARKER) for item in items):
        return True
    if ctx.reference_time is None:
        return False
    for key in {item.entity_key for item in items if item.entity_key}:
        tracked = ctx.tracked.get(key)
        if tracked is None:
            continue
        window_start = ctx.reference_time - tracked.expected_cadence
        reporting = {
            item.source_system for item in items
            if item.entity_key == key and item.observed_at >= window_start
        }
        if len(reporting) < tracked.min_sources:
            return True
    return False


def _is_ambiguous(items: list[ConflictItem], ctx: ClassificationContext, similarity: SimilarityEngine) -> bool:
    pairs = similarity.pairwise(items)  # type: ignore[arg-type]
    if not pairs:
        return False
    low, high = ctx.ambiguity_range
    near_boundary = sum(1 for _, _, scored in pairs if low <= scored.score <= high)
    return near_boundary * 2 > len(pairs)


def _is_out_of_order(groups: dict, ctx: ClassificationContext) -> bool:
    for (_, metric), members in groups.items():
        sequence = ctx.status_sequences.get(metric)
        if not sequence:
            continue
        ranked = [
            sequence.index(claim.value)
            for _, claim in sorted(members, key=lambda m: m[0].observed_at)
            if isinstance(claim.value, str) and claim.value in sequence
        ]
        if any(later < earlier for earlier, later in zip(ranked, ranked[1:], strict=False)):
            return True
    return False


def classify_conflict(
    items: list[ConflictItem],
    ctx: ClassificationContext,
    similarity: SimilarityEngine,
    current: ConflictType | None = None,
) -> ConflictType:
    """Apply the classification table; first enabled match wins."""
    groups = _claim_groups(items)
    checks = (
        (ConflictType.CONTRADICTION, lambda: _is_contradiction(groups, ctx)),
        (ConflictType.DIVERGENCE, lambda: _is_divergence(groups, ctx)),
        (ConflictType.MISSING_DATA, lambda: _is_missing_data(items, ctx)),
        (ConflictType.AMBIGUITY, lambda: _is_ambiguous(items, ctx, similarity)),
        (ConflictType.INCONSISTENCY, lambda: _is_out_of_order(groups, ctx)),
    )
    for conflict_type, matches in checks:
        if conflict_type in ctx.enabled and matches():
            return conflict_type
    return current or ConflictType.INCONSISTENCY


@dataclass
class ConflictDraft:
    """Working copy of a conflict touched by one detection pass."""

    conflict: Conflict
    items: list[ConflictItem]
    is_new: bool
    previous: dict | None = None
    added_items: list[ConflictItem] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    @property
    def primary(self) -> ConflictItem:
        return next(item for item in self.items if item.role == ItemRole.PRIMARY)


@dataclass
class DetectionOutcome:
    """Everything a detection pass wants committed."""

    drafts: list[ConflictDraft] = field(default_factory=list)
    independent: list[InsightRecord] = field(default_factory=list)
    consumed_history: dict[str, str] = field(default_factory=dict)
    skipped: int = 0

    @property
    def created(self) -> list[ConflictDraft]:
        return [d for d in self.drafts if d.is_new]

    @property
    def extended(self) -> list[ConflictDraft]:
        return [d for d in self.drafts if not d.is_new and d.added_items]


def record_from_input(item: ConflictItemInput, organization_id: str, now: datetime) -> InsightRecord:
    return InsightRecord(
        id=new_id(),
        organization_id=organization_id,
        raw_insight=item.raw_insight,
        source_system=item.source_system,
        confidence=item.confidence,
        source_entity_type=item.source_entity_type,
        source_entity_id=item.source_entity_id,
        processed_insight=item.processed_insight,
        embedding=list(item.embedding) if item.embedding else None,
        source_timestamp=item.source_timestamp,
        metric=item.metric,
        value=item.value,
        metadata=dict(item.metadata),
        recorded_at=now,
    )


def item_from_record(record: InsightRecord, conflict_id: str, role: ItemRole, now: datetime) -> ConflictItem:
    return ConflictItem(
        id=new_id(),
        conflict_id=conflict_id,
        raw_insight=record.raw_insight,
        source_system=record.source_system,
        role=role,
        confidence=record.confidence,
        source_entity_type=record.source_entity_type,
        source_entity_id=record.source_entity_id,
        processed_insight=record.processed_insight,
        embedding=record.embedding,
        source_timestamp=record.source_timestamp,
        metric=record.metric,
        value=record.value,
        metadata=dict(record.metadata),
        created_at=now,
    )


def _conflict_title(conflict_type: ConflictType, entity_key: tuple[str, str] | None, metric: str | None) -> str:
    label = conflict_type.replace("_", " ").capitalize()
    subject = f"{entity_key[0]} {entity_key[1]}" if entity_key else "unattributed insights"
    if metric and metric != "assertion":
        return f"{label} on {subject} ({metric})"
    return f"{label} on {subject}"


class ConflictDetector:
    """Decides how incoming insights relate to open conflicts."""

    def __init__(self, settings: Settings, similarity: SimilarityEngine | None = None) -> None:
        self._settings = settings
        self._similarity = similarity or SimilarityEngine()

    def context(
        self,
        config: DetectionConfig | None = None,
        tracked: Iterable[TrackedEntity] = (),
        reference_time: datetime | None = None,
    ) -> ClassificationContext:
        settings = self._settings
        join_threshold = settings.join_threshold
        divergence = settings.divergence_threshold
        enabled = set(ConflictType)
        if config is not None:
            join_threshold = config.join_threshold if config.join_threshold is not None else join_threshold
            divergence = config.divergence_threshold if config.divergence_threshold is not None else divergence
            enabled = config.enabled_types()
        return ClassificationContext(
            join_threshold=join_threshold,
            divergence_threshold=divergence,
            ambiguity_range=(
                max(0.0, join_threshold - settings.ambiguity_band),
                min(1.0, join_threshold + settings.ambiguity_band),
            ),
            status_sequences=settings.status_sequences,
            tracked={t.key: t for t in tracked},
            enabled=enabled,
            reference_time=reference_time,
        )

    def classify(self, items: list[ConflictItem], ctx: ClassificationContext, current: ConflictType | None = None) -> ConflictType:
        return classify_conflict(items, ctx, self._similarity, current)

    def detect(
        self,
        organization_id: str,
        records: list[InsightRecord],
        open_conflicts: list[tuple[Conflict, list[ConflictItem]]],
        history: list[InsightRecord],
        now: datetime,
        config: DetectionConfig | None = None,
        tracked: Iterable[TrackedEntity] = (),
    ) -> DetectionOutcome:
        """Run one detection pass.

        Args:
            organization_id: Organization scope of every record.
            records: Incoming insights, in arrival order.
            open_conflicts: Open conflicts of the organization with their items.
            history: Earlier independent insights of the organization.
            now: Reference time for new records and classification.
            config: Optional threshold overrides and type toggles.
            tracked: Tracked entities used by the missing-data rule.

        Returns:
            Drafts for created and extended conflicts plus independent records.
        """
        ctx = self.context(config, tracked, now)
        min_confidence = config.min_confidence if config is not None else 0.0
        outcome = DetectionOutcome()
        working: dict[str, ConflictDraft] = {}
        for conflict, items in open_conflicts:
            if conflict.organization_id != organization_id or not conflict.is_open:
                continue
            working[conflict.id] = ConflictDraft(
                conflict=copy.deepcopy(conflict),
                items=list(items),
                is_new=False,
                previous=conflict.snapshot(),
            )
        pool = [copy.copy(h) for h in history if h.conflict_id is None]

        for record in records:
            if record.confidence is not None and record.confidence < min_confidence:
                outcome.skipped += 1
                logger.debug("Skipping insight %s below min confidence", record.id)
                continue
            draft = self._try_join(record, working, ctx, now)
            if draft is not None:
                continue
            draft = self._try_open(record, pool, ctx, now, organization_id)
            if draft is not None:
                working[draft.conflict.id] = draft
                outcome.consumed_history.update(
                    {h.id: draft.conflict.id for h in pool if h.conflict_id == draft.conflict.id}
                )
                pool = [h for h in pool if h.conflict_id is None]
                outcome.independent = [r for r in outcome.independent if r.conflict_id is None]
                continue
            pool.append(record)
            outcome.independent.append(record)

        outcome.drafts = [d for d in working.values() if d.is_new or d.added_items]
        logger.info(
            "Detection for org %s: %d created, %d extended, %d independent",
            organization_id,
            len(outcome.created),
            len(outcome.extended),
            len(outcome.independent),
        )
        return outcome

    def _is_candidate(self, record: InsightRecord, conflict: Conflict) -> bool:
        entity_keys = {ref.key for ref in conflict.source_entities}
        if record.entity_key and entity_keys:
            return record.entity_key in entity_keys
        return record.source_system in conflict.affected_systems

    def _try_join(
        self,
        record: InsightRecord,
        working: dict[str, ConflictDraft],
        ctx: ClassificationContext,
        now: datetime,
    ) -> ConflictDraft | None:
        best: tuple[float, ConflictDraft] | None = None
        for draft in working.values():
            if not self._is_candidate(record, draft.conflict):
                continue
            score = self._similarity.similarity(record, draft.primary)
            if best is None or score > best[0]:
                best = (score, draft)
        if best is None or best[0] <= ctx.join_threshold:
            return None
        score, draft = best
        reason = next(
            (r for r in (polarity_disagreement(record, item, ctx.divergence_threshold) for item in draft.items) if r),
            None,
        )
        if reason is None:
            return None

        low, high = ctx.ambiguity_range
        role = ItemRole.CONTEXT if low <= score <= high else ItemRole.SECONDARY
        item = item_from_record(record, draft.conflict.id, role, now)
        item.metadata.setdefault("join_similarity", score)
        record.conflict_id = draft.conflict.id
        draft.items.append(item)
        draft.added_items.append(item)
        draft.reasons.append(reason)
        self._absorb(draft.conflict, record)
        draft.conflict.conflict_type = self.classify(draft.items, ctx, draft.conflict.conflict_type)
        draft.conflict.updated_at = now
        return draft

    def _try_open(
        self,
        record: InsightRecord,
        pool: list[InsightRecord],
        ctx: ClassificationContext,
        now: datetime,
        organization_id: str,
    ) -> ConflictDraft | None:
        best: tuple[float, InsightRecord, str] | None = None
        for earlier in pool:
            if earlier.entity_key != record.entity_key or earlier.source_system == record.source_system:
                continue
            score = self._similarity.similarity(record, earlier)
            if score <= ctx.join_threshold or (best is not None and score <= best[0]):
                continue
            reason = polarity_disagreement(earlier, record, ctx.divergence_threshold)
            if reason:
                best = (score, earlier, reason)
        if best is None:
            return None

        score, earlier, reason = best
        conflict_id = new_id()
        primary = item_from_record(earlier, conflict_id, ItemRole.PRIMARY, now)
        low, high = ctx.ambiguity_range
        role = ItemRole.CONTEXT if low <= score <= high else ItemRole.SECONDARY
        secondary = item_from_record(record, conflict_id, role, now)
        secondary.metadata.setdefault("join_similarity", score)
        conflict = Conflict(
            id=conflict_id,
            organization_id=organization_id,
            conflict_type=ConflictType.INCONSISTENCY,
            title="",
            status=ConflictStatus.DETECTED,
            severity=ConflictSeverity.MEDIUM,
            created_at=now,
            updated_at=now,
        )
        self._absorb(conflict, earlier)
        self._absorb(conflict, record)
        items = [primary, secondary]
        conflict.conflict_type = self.classify(items, ctx)
        claim = extract_claim(primary)
        conflict.title = _conflict_title(conflict.conflict_type, record.entity_key, claim.metric)
        conflict.summary = (
            f"{earlier.source_system} and {record.source_system} disagree ({reason})"
        )
        earlier.conflict_id = conflict_id
        record.conflict_id = conflict_id
        return ConflictDraft(conflict=conflict, items=items, is_new=True, added_items=[secondary], reasons=[reason])

    @staticmethod
    def _absorb(conflict: Conflict, record: InsightRecord) -> None:
        if record.source_system not in conflict.affected_systems:
            conflict.affected_systems.append(record.source_system)
        if record.entity_key:
            ref = SourceEntityRef(record.entity_key[0], record.entity_key[1], record.source_system)
            if ref.key not in {r.key for r in conflict.source_entities}:
                conflict.source_entities.append(ref)

    def detect_missing_data(
        self,
        organization_id: str,
        tracked: Iterable[TrackedEntity],
        history: list[InsightRecord],
        open_conflicts: list[tuple[Conflict, list[ConflictItem]]],
        reference_time: datetime,
    ) -> list[ConflictDraft]:
        """Open ``missing_data`` conflicts for tracked entities that went quiet.

        An entity qualifies when fewer than its minimum number of sources
        reported within one cadence window and at least one cadence elapsed
        since its last report. Severity is ``high`` once twice the cadence
        has elapsed.
        """
        already_open = {
            ref.key
            for conflict, _ in open_conflicts
            if conflict.organization_id == organization_id
            and conflict.is_open
            and conflict.conflict_type == ConflictType.MISSING_DATA
            for ref in conflict.source_entities
        }
        drafts = []
        for entity in tracked:
            if entity.organization_id != organization_id or entity.key in already_open:
                continue
            reports = [h for h in history if h.entity_key == entity.key and h.observed_at <= reference_time]
            last_seen = max((h.observed_at for h in reports), default=entity.registered_at)
            elapsed = reference_time - last_seen
            window_start = reference_time - entity.expected_cadence
            reporting = {h.source_system for h in reports if h.observed_at >= window_start}
            if len(reporting) >= entity.min_sources or elapsed < entity.expected_cadence:
                continue
            drafts.append(self._missing_data_draft(organization_id, entity, last_seen, elapsed, reporting, reference_time))
        return drafts

    def _missing_data_draft(
        self,
        organization_id: str,
        entity: TrackedEntity,
        last_seen: datetime,
        elapsed: timedelta,
        reporting: set[str],
        now: datetime,
    ) -> ConflictDraft:
        cadences = elapsed / entity.expected_cadence
        severity = ConflictSeverity.HIGH if cadences >= 2 else ConflictSeverity.MEDIUM
        conflict_id = new_id()
        text = (
            f"No insights reported for {entity.entity_type} {entity.entity_id} since "
            f"{last_seen.isoformat()} (expected every {entity.expected_cadence}, "
            f"{len(reporting)} of {entity.min_sources} sources reporting)"
        )
        item = ConflictItem(
            id=new_id(),
            conflict_id=conflict_id,
            raw_insight=text,
            source_system=DETECTOR_SOURCE,
            role=ItemRole.PRIMARY,
            confidence=1.0,
            source_entity_type=entity.entity_type,
            source_entity_id=entity.entity_id,
            source_timestamp=now,
            metadata={
                MISSING_DATA_MARKER: True,
                "last_seen": last_seen.isoformat(),
                "elapsed_cadences": round(cadences, 2),
            },
            created_at=now,
        )
        conflict = Conflict(
            id=conflict_id,
            organization_id=organization_id,
            conflict_type=ConflictType.MISSING_DATA,
            title=_conflict_title(ConflictType.MISSING_DATA, entity.key, None),
            severity=severity,
            summary=text,
            source_entities=[SourceEntityRef(entity.entity_type, entity.entity_id)],
            affected_systems=sorted(set(entity.source_systems) | {DETECTOR_SOURCE}),
            created_at=now,
            updated_at=now,
        )
        logger.info(
            "Missing data for %s %s: %.1f cadences elapsed",
            entity.entity_type,
            entity.entity_id,
            cadences,
        )
        return ConflictDraft(conflict=conflict, items=[item], is_new=True, added_items=[], reasons=["missing reports"])
