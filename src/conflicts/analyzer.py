"""Conflict analysis: severity, root causes, related conflicts, strategy.

Severity score is a weighted sum normalized to [0, 100]:

    type base weight                      35
    max pairwise similarity, inverted     20  (contradiction/divergence only)
    distinct affected systems (cap 4)     25
    recency of the newest item            20

and maps to the four-level enum at cut points 25 / 55 / 80. Every
component is computed from the conflict's items and the caller-supplied
reference time, so re-running on an unchanged conflict is deterministic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from src.conflicts.detector import DETECTOR_SOURCE, extract_claim
from src.conflicts.graph import ConflictGraphBuilder
from src.conflicts.similarity import SimilarityEngine
from src.core.config import Settings
from src.core.models import (
    SEVERITY_RANK,
    AffectedSystemImpact,
    Conflict,
    ConflictAnalysisResult,
    ConflictItem,
    ConflictSeverity,
    ConflictType,
    ItemRole,
    ResolutionDifficulty,
    ResolutionStrategy,
    RootCause,
    RootCauseAnalysisResult,
    VectorSimilarity,
)

logger = logging.getLogger(__name__)

# Severity label cut points on the 0-100 scale
SEVERITY_CRITICAL = 80.0
SEVERITY_HIGH = 55.0
SEVERITY_MEDIUM = 25.0

TYPE_BASE_WEIGHTS: dict[ConflictType, float] = {
    ConflictType.CONTRADICTION: 1.0,
    ConflictType.INCONSISTENCY: 0.8,
    ConflictType.DIVERGENCE: 0.7,
    ConflictType.MISSING_DATA: 0.6,
    ConflictType.AMBIGUITY: 0.4,
}

COMPONENT_WEIGHTS: dict[str, float] = {
    "type": 35.0,
    "similarity": 20.0,
    "systems": 25.0,
    "recency": 20.0,
}

_SIMILARITY_SENSITIVE = frozenset({ConflictType.CONTRADICTION, ConflictType.DIVERGENCE})
_SYSTEMS_CAP = 4

RECOMMENDATIONS: dict[ConflictType, list[str]] = {
    ConflictType.CONTRADICTION: [
        "Confirm the claim with the most authoritative source",
        "Review recent inputs of the dissenting source",
    ],
    ConflictType.DIVERGENCE: [
        "Align measurement windows across sources",
        "Document the calculation methodology per source",
    ],
    ConflictType.AMBIGUITY: [
        "Collect additional signals before acting",
        "Disambiguate entity references in upstream feeds",
    ],
    ConflictType.MISSING_DATA: [
        "Check the health of the silent source integrations",
        "Backfill the missing reporting window",
    ],
    ConflictType.INCONSISTENCY: [
        "Audit the status history in the originating system",
        "Verify clock synchronisation between sources",
    ],
}


def severity_label(score: float) -> ConflictSeverity:
    """Map a 0-100 severity score to the four-level enum."""
    if score >= SEVERITY_CRITICAL:
        return ConflictSeverity.CRITICAL
    elif score >= SEVERITY_HIGH:
        return ConflictSeverity.HIGH
    elif score >= SEVERITY_MEDIUM:
        return ConflictSeverity.MEDIUM
    return ConflictSeverity.LOW


def recency_factor(newest: datetime, reference: datetime, half_life_hours: float) -> float:
    """Exponential decay of the newest item's age at ``reference``; 1.0 for items at or after it."""
    age_hours = max(0.0, (reference - newest).total_seconds() / 3600)
    return 0.5 ** (age_hours / half_life_hours)


def compute_severity_score(
    conflict_type: ConflictType,
    max_similarity: float,
    system_count: int,
    recency: float,
) -> tuple[float, dict[str, float]]:
    """Weighted severity score and its per-component contributions."""
    similarity_component = (1.0 - max_similarity) if conflict_type in _SIMILARITY_SENSITIVE else 0.5
    components = {
        "type": COMPONENT_WEIGHTS["type"] * TYPE_BASE_WEIGHTS[conflict_type],
        "similarity": COMPONENT_WEIGHTS["similarity"] * similarity_component,
        "systems": COMPONENT_WEIGHTS["systems"] * min(system_count / _SYSTEMS_CAP, 1.0),
        "recency": COMPONENT_WEIGHTS["recency"] * recency,
    }
    score = round(max(0.0, min(100.0, sum(components.values()))), 2)
    return score, {k: round(v, 2) for k, v in components.items()}


def _rank(causes: list[RootCause]) -> list[RootCause]:
    return sorted(causes, key=lambda c: (-c.confidence, c.cause))


def _hours(delta: timedelta) -> float:
    return round(delta.total_seconds() / 3600, 1)


@dataclass
class AnalysisOutcome:
    analysis: ConflictAnalysisResult
    root_cause: RootCauseAnalysisResult


class ConflictAnalyzer:
    """Computes a ConflictAnalysisResult for one conflict."""

    def __init__(
        self,
        settings: Settings,
        similarity: SimilarityEngine | None = None,
        graph: ConflictGraphBuilder | None = None,
    ) -> None:
        self._settings = settings
        self._similarity = similarity or SimilarityEngine()
        self._graph = graph or ConflictGraphBuilder(self._similarity)

    def analyze(
        self,
        conflict: Conflict,
        items: list[ConflictItem],
        now: datetime,
        open_conflicts: list[tuple[Conflict, list[ConflictItem]]] | None = None,
        cadence: timedelta | None = None,
        include_related: bool = True,
    ) -> AnalysisOutcome:
        """Analyze a conflict against its items.

        Args:
            conflict: The conflict to analyze (not modified).
            items: Its items.
            now: Timestamp recorded on the analysis. Scoring never depends on it.
            open_conflicts: Other open conflicts considered for related links.
            cadence: Shortest reporting cadence of the involved sources.
            include_related: Whether to look up related conflicts.

        Returns:
            The analysis result and the root-cause analysis.
        """
        cadence = cadence or timedelta(hours=self._settings.default_reporting_cadence_hours)
        pairs = self._similarity.pairwise(items)  # type: ignore[arg-type]
        vector_similarities = [
            VectorSimilarity(items[i].id, items[j].id, scored.score, scored.approximate) for i, j, scored in pairs
        ]
        max_similarity = max((v.similarity for v in vector_similarities), default=0.0)
        systems = sorted({item.source_system for item in items} | set(conflict.affected_systems))
        newest = max((item.observed_at for item in items), default=conflict.created_at)
        # Age is taken at the last time the conflict gained evidence.
        recorded = max([conflict.created_at, *(item.created_at for item in items)])

        score, components = compute_severity_score(
            conflict.conflict_type,
            max_similarity,
            len(systems),
            recency_factor(newest, recorded, self._settings.recency_half_life_hours),
        )
        severity = severity_label(score)
        rationale = (
            f"{conflict.conflict_type} base {components['type']}, "
            f"similarity {components['similarity']} (max pairwise {max_similarity:.3f}), "
            f"{len(systems)} affected systems {components['systems']}, "
            f"recency {components['recency']}; total {score} → {severity}"
        )

        root_causes = _rank(self._root_causes(conflict, items, cadence, vector_similarities))
        related = []
        if include_related:
            related = self._graph.find_similar_conflicts(
                conflict,
                items,
                open_conflicts or [],
                k=self._settings.related_k,
                min_similarity=self._settings.related_min_similarity,
            )

        analysis = ConflictAnalysisResult(
            severity_score=score,
            severity=severity,
            severity_rationale=rationale,
            root_causes=root_causes,
            related_conflicts=related,
            suggested_strategy=self.suggest_strategy(items),
            difficulty=self._difficulty(severity),
            affected_systems=self._impacts(items, systems, severity),
            vector_similarities=vector_similarities,
            analyzed_at=now,
        )
        logger.info(
            "Analyzed conflict %s: score=%.2f severity=%s strategy=%s",
            conflict.id,
            score,
            severity,
            analysis.suggested_strategy,
        )
        return AnalysisOutcome(analysis=analysis, root_cause=self._root_cause_result(conflict, items, root_causes))

    def suggest_strategy(self, items: list[ConflictItem]) -> ResolutionStrategy:
        """Pick a resolution strategy from source authority and reliability."""
        sources = sorted({i.source_system for i in items if i.source_system != DETECTOR_SOURCE})
        entity_types = {i.source_entity_type for i in items if i.source_entity_type}
        authoritative = {self._settings.authoritative_sources.get(t) for t in entity_types} - {None}
        has_priority = any(source in authoritative for source in sources)

        reliability = self._settings.source_reliability
        weights = [reliability[s] for s in sources if s in reliability]
        distinct = len(set(weights)) > 1
        divergent = distinct and (max(weights) - min(weights)) >= self._settings.weight_divergence_threshold

        if has_priority and divergent:
            return ResolutionStrategy.HYBRID
        if has_priority:
            return ResolutionStrategy.SOURCE_PRIORITY
        if distinct:
            return ResolutionStrategy.WEIGHTED_TRUTH
        return ResolutionStrategy.AI_CONSENSUS

    @staticmethod
    def _difficulty(severity: ConflictSeverity) -> ResolutionDifficulty:
        if severity == ConflictSeverity.CRITICAL:
            return ResolutionDifficulty.DIFFICULT
        if severity == ConflictSeverity.HIGH:
            return ResolutionDifficulty.MODERATE
        return ResolutionDifficulty.EASY

    @staticmethod
    def _impacts(items: list[ConflictItem], systems: list[str], severity: ConflictSeverity) -> list[AffectedSystemImpact]:
        ordered = sorted(SEVERITY_RANK, key=SEVERITY_RANK.__getitem__)
        primary_sources = {i.source_system for i in items if i.role == ItemRole.PRIMARY}
        impacts = []
        for system in systems:
            own = [i for i in items if i.source_system == system]
            level = severity if system in primary_sources else ordered[max(0, SEVERITY_RANK[severity] - 1)]
            if own:
                mean_conf = sum(i.declared_confidence for i in own) / len(own)
                description = f"{len(own)} of {len(items)} items, mean confidence {mean_conf:.2f}"
            else:
                description = "Affected without contributing items"
            impacts.append(AffectedSystemImpact(system=system, impact_level=level, description=description))
        return impacts

    def _root_causes(
        self,
        conflict: Conflict,
        items: list[ConflictItem],
        cadence: timedelta,
        similarities: list[VectorSimilarity],
    ) -> list[RootCause]:
        sources = sorted({i.source_system for i in items})
        timeline = sorted(items, key=lambda i: (i.observed_at, i.id))
        spread = timeline[-1].observed_at - timeline[0].observed_at if timeline else timedelta(0)
        stale = timeline[0] if len(timeline) > 1 and spread > cadence else None
        low_confidence = sorted({i.source_system for i in items if i.declared_confidence < 0.5})
        entities = {i.entity_key for i in items if i.entity_key}
        causes: list[RootCause] = []

        if conflict.conflict_type == ConflictType.DIVERGENCE:
            if spread > cadence:
                causes.append(RootCause(
                    "different measurement windows",
                    0.7,
                    [f"item timestamps span {_hours(spread)}h, reporting cadence {_hours(cadence)}h"],
                ))
            if len(sources) > 1:
                causes.append(RootCause("different calculation methodology", 0.6, [f"sources: {', '.join(sources)}"]))
            if stale is not None:
                causes.append(RootCause(f"stale data in {stale.source_system}", 0.5, [stale.observed_at.isoformat()]))
            causes.append(RootCause("measurement noise", 0.3))
        elif conflict.conflict_type == ConflictType.CONTRADICTION:
            if len(sources) > 1:
                values = sorted({str(extract_claim(i).value) for i in items})
                causes.append(RootCause(
                    "conflicting source interpretation", 0.6, [f"asserted values: {', '.join(values)}"]
                ))
            if stale is not None:
                causes.append(RootCause(f"stale data in {stale.source_system}", 0.55, [stale.observed_at.isoformat()]))
            for source in low_confidence:
                causes.append(RootCause(f"low-confidence source {source}", 0.5))
            if len(entities) > 1:
                causes.append(RootCause("entity mismatch between sources", 0.35))
        elif conflict.conflict_type == ConflictType.AMBIGUITY:
            causes.append(RootCause("insufficient signal separation", 0.6))
            if any(s.approximate for s in similarities):
                causes.append(RootCause("approximate lexical comparison", 0.5, ["one or more items lack embeddings"]))
            if len(entities) > 1:
                causes.append(RootCause("overlapping entity references", 0.4))
        elif conflict.conflict_type == ConflictType.MISSING_DATA:
            causes.append(RootCause("source reporting outage", 0.7))
            causes.append(RootCause("ingestion pipeline delay", 0.5))
            causes.append(RootCause("entity no longer monitored", 0.3))
        else:
            sequences = self._settings.status_sequences
            if any(extract_claim(i).metric in sequences for i in items):
                causes.append(RootCause("out-of-order status transition", 0.7))
            if len(sources) > 1:
                causes.append(RootCause("clock skew between sources", 0.5))
            causes.append(RootCause("unclassified structural mismatch", 0.3))
        return causes

    @staticmethod
    def _root_cause_result(
        conflict: Conflict,
        items: list[ConflictItem],
        causes: list[RootCause],
    ) -> RootCauseAnalysisResult:
        timeline = [
            {
                "item_id": i.id,
                "source_system": i.source_system,
                "role": str(i.role),
                "observed_at": i.observed_at.isoformat(),
            }
            for i in sorted(items, key=lambda i: (i.observed_at, i.id))
        ]
        if not causes:
            return RootCauseAnalysisResult(primary_cause="undetermined", timeline=timeline)
        return RootCauseAnalysisResult(
            primary_cause=causes[0].cause,
            contributing_causes=[c.cause for c in causes[1:]],
            timeline=timeline,
            recommendations=list(RECOMMENDATIONS[conflict.conflict_type]),
            confidence=causes[0].confidence,
        )
