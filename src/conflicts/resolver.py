"""Conflict resolution strategies.

Implements SOURCE_PRIORITY, WEIGHTED_TRUTH, AI_CONSENSUS and HYBRID, with
the strategy dispatched once per resolution. The resolver computes a new,
not-yet-accepted resolution; acceptance and status changes belong to the
orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from src.conflicts.detector import DETECTOR_SOURCE, Claim, extract_claim, relative_delta
from src.conflicts.generation import GenerationRequest, NarrativeGenerator, generate_with_retry
from src.core.config import Settings
from src.core.errors import MalformedGenerationError, ValidationError
from src.core.models import (
    ClaimValue,
    Conflict,
    ConflictItem,
    InsightConflictResolution,
    ItemRole,
    RecommendedAction,
    ResolutionStrategy,
    ResolveOptions,
    new_id,
)

logger = logging.getLogger(__name__)

# Confidence multiplier when the non-AI strategies of a hybrid run disagree
HYBRID_DISAGREEMENT_PENALTY = 0.9


def clamp_confidence(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


@dataclass
class StrategyOutcome:
    """Result of one strategy before it becomes a resolution record."""

    strategy: ResolutionStrategy
    resolved_summary: str
    confidence: float
    rationale: str
    resolved_value: ClaimValue = None
    narrative: str | None = None
    recommended_actions: list[RecommendedAction] = field(default_factory=list)
    source_weights: dict[str, float] | None = None
    priority_order: list[str] | None = None
    model_name: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None

    def as_context(self) -> dict[str, object]:
        return {
            "resolved_summary": self.resolved_summary,
            "resolved_value": self.resolved_value,
            "confidence": self.confidence,
            "rationale": self.rationale,
        }


def weighted_numeric(values: list[float], weights: list[float]) -> tuple[float, float]:
    """Weighted mean and scale-free weighted variance of numeric claims.

    Values are divided by the largest magnitude before the variance is
    taken so the variance stays within [0, 1].
    """
    mean = sum(w * v for w, v in zip(weights, values, strict=True))
    scale = max(abs(v) for v in values) or 1.0
    variance = sum(w * ((v - mean) / scale) ** 2 for w, v in zip(weights, values, strict=True))
    return mean, variance


def weighted_vote(votes: list[tuple[ClaimValue, float]]) -> tuple[dict[ClaimValue, float], float]:
    """Per-value weight totals and weighted Gini impurity of categorical claims."""
    totals: dict[ClaimValue, float] = defaultdict(float)
    for value, weight in votes:
        totals[value] += weight
    variance = 1.0 - sum(p * p for p in totals.values())
    return dict(totals), max(0.0, variance)


class ConflictResolver:
    """Produces resolutions for conflicts using pluggable strategies."""

    def __init__(self, settings: Settings, generator: NarrativeGenerator) -> None:
        self._settings = settings
        self._generator = generator

    async def resolve(
        self,
        conflict: Conflict,
        items: list[ConflictItem],
        strategy: ResolutionStrategy,
        options: ResolveOptions,
        now: datetime,
    ) -> InsightConflictResolution:
        """Run ``strategy`` and return an unaccepted resolution.

        Raises:
            ValidationError: Unusable weights or no items to resolve.
            GenerationError: The generative capability failed for AI strategies.
        """
        if not items:
            raise ValidationError("Conflict has no items to resolve", conflict.id)

        handlers = {
            ResolutionStrategy.SOURCE_PRIORITY: self._handle_source_priority,
            ResolutionStrategy.WEIGHTED_TRUTH: self._handle_weighted_truth,
            ResolutionStrategy.AI_CONSENSUS: self._handle_ai_consensus,
            ResolutionStrategy.HYBRID: self._handle_hybrid,
        }
        outcome = await handlers[strategy](conflict, items, options)
        logger.info(
            "Resolved conflict %s via %s: confidence=%.3f",
            conflict.id,
            strategy,
            outcome.confidence,
        )
        return InsightConflictResolution(
            id=new_id(),
            conflict_id=conflict.id,
            strategy=strategy,
            resolved_summary=outcome.resolved_summary,
            confidence=clamp_confidence(outcome.confidence),
            rationale=outcome.rationale,
            consensus_narrative=outcome.narrative,
            resolved_value=outcome.resolved_value,
            recommended_actions=outcome.recommended_actions,
            source_weights=outcome.source_weights,
            priority_order=outcome.priority_order,
            model_name=outcome.model_name,
            prompt_tokens=outcome.prompt_tokens,
            completion_tokens=outcome.completion_tokens,
            created_at=now,
        )

    # -- Strategy handlers ---

    async def _handle_source_priority(
        self, conflict: Conflict, items: list[ConflictItem], options: ResolveOptions
    ) -> StrategyOutcome:
        return self.source_priority(conflict, items, options.priority_order)

    async def _handle_weighted_truth(
        self, conflict: Conflict, items: list[ConflictItem], options: ResolveOptions
    ) -> StrategyOutcome:
        return self.weighted_truth(conflict, items, options.source_weights)

    async def _handle_ai_consensus(
        self, conflict: Conflict, items: list[ConflictItem], options: ResolveOptions
    ) -> StrategyOutcome:
        return await self.ai_consensus(conflict, items, context_notes=options.context_notes)

    async def _handle_hybrid(
        self, conflict: Conflict, items: list[ConflictItem], options: ResolveOptions
    ) -> StrategyOutcome:
        priority, weighted = await asyncio.gather(
            self._handle_source_priority(conflict, items, options),
            self._handle_weighted_truth(conflict, items, options),
        )
        ai = await self.ai_consensus(
            conflict,
            items,
            strategy_outputs={
                str(ResolutionStrategy.SOURCE_PRIORITY): priority.as_context(),
                str(ResolutionStrategy.WEIGHTED_TRUTH): weighted.as_context(),
            },
            context_notes=options.context_notes,
        )
        rationale = ai.rationale
        confidence = ai.confidence
        disagreement = self._disagreement(priority, weighted)
        if disagreement:
            confidence = confidence * HYBRID_DISAGREEMENT_PENALTY
            rationale = (
                f"{rationale} Non-AI strategies disagree ({disagreement}); "
                f"confidence demoted by {round((1 - HYBRID_DISAGREEMENT_PENALTY) * 100)}%."
            )
        return StrategyOutcome(
            strategy=ResolutionStrategy.HYBRID,
            resolved_summary=ai.resolved_summary,
            confidence=confidence,
            rationale=rationale,
            resolved_value=ai.resolved_value if ai.resolved_value is not None else weighted.resolved_value,
            narrative=ai.narrative,
            recommended_actions=ai.recommended_actions,
            source_weights=weighted.source_weights,
            priority_order=priority.priority_order,
            model_name=ai.model_name,
            prompt_tokens=ai.prompt_tokens,
            completion_tokens=ai.completion_tokens,
        )

    # -- Strategies ---

    def priority_order_for(self, items: list[ConflictItem], explicit: list[str] | None = None) -> list[str]:
        """Full source ranking: explicit order, else the entity type default, then the rest.

        Sources not named by either are appended by descending reliability,
        then by name.
        """
        sources = {i.source_system for i in items}
        order: list[str] = list(explicit or [])
        if not order:
            primary = next((i for i in items if i.role == ItemRole.PRIMARY), items[0])
            order = list(self._settings.default_priority_order.get(primary.source_entity_type or "", []))
        reliability = self._settings.source_reliability
        remaining = sorted(sources - set(order), key=lambda s: (-reliability.get(s, 0.0), s))
        return order + remaining

    def source_priority(
        self, conflict: Conflict, items: list[ConflictItem], priority_order: list[str] | None = None
    ) -> StrategyOutcome:
        order = self.priority_order_for(items, priority_order)
        by_source: dict[str, list[ConflictItem]] = defaultdict(list)
        for item in items:
            by_source[item.source_system].append(item)
        winner_source = next(s for s in order if s in by_source)
        chosen = sorted(
            by_source[winner_source],
            key=lambda i: (i.role != ItemRole.PRIMARY, -i.declared_confidence, -i.observed_at.timestamp(), i.id),
        )[0]
        rank = order.index(winner_source) + 1
        origin = "explicit priority order" if priority_order else "default priority order"
        return StrategyOutcome(
            strategy=ResolutionStrategy.SOURCE_PRIORITY,
            resolved_summary=chosen.text,
            confidence=chosen.declared_confidence,
            rationale=f"Selected {winner_source} (rank {rank} of {len(order)} in {origin}).",
            resolved_value=extract_claim(chosen).value,
            priority_order=order,
        )

    def resolve_weights(self, items: list[ConflictItem], supplied: dict[str, float] | None) -> dict[str, float]:
        """Per-source weights normalized to sum to 1.

        Raises:
            ValidationError: If the weights cannot be normalized (all zero).
        """
        sources = sorted({i.source_system for i in items})
        if supplied is not None:
            raw = {s: float(supplied.get(s, 0.0)) for s in sources}
        elif all(s in self._settings.source_reliability for s in sources):
            raw = {s: self._settings.source_reliability[s] for s in sources}
        else:
            raw = {
                s: sum(i.declared_confidence for i in items if i.source_system == s)
                / sum(1 for i in items if i.source_system == s)
                for s in sources
            }
            if sum(raw.values()) <= 0:
                raw = dict.fromkeys(sources, 1.0)

        total = sum(raw.values())
        if total <= 0 or not math.isfinite(total):
            raise ValidationError("Source weights do not sum to a positive value after normalization attempt")
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            logger.debug("Normalizing source weights summing to %.4f", total)
        return {s: w / total for s, w in raw.items()}

    def weighted_truth(
        self, conflict: Conflict, items: list[ConflictItem], source_weights: dict[str, float] | None = None
    ) -> StrategyOutcome:
        try:
            weights = self.resolve_weights(items, source_weights)
        except ValidationError as exc:
            exc.conflict_id = conflict.id
            raise

        claims = [(item, extract_claim(item)) for item in items if item.source_system != DETECTOR_SOURCE] or [
            (item, extract_claim(item)) for item in items
        ]
        primary = next((c for i, c in claims if i.role == ItemRole.PRIMARY), claims[0][1])
        considered = [(i, c) for i, c in claims if c.metric == primary.metric]
        per_source_count: dict[str, int] = defaultdict(int)
        for item, _ in considered:
            per_source_count[item.source_system] += 1
        item_weights = [weights.get(i.source_system, 0.0) / per_source_count[i.source_system] for i, _ in considered]
        total = sum(item_weights)
        if total <= 0:
            raise ValidationError("No weight assigned to any source asserting the resolved claim", conflict.id)
        item_weights = [w / total for w in item_weights]

        if all(c.is_numeric for _, c in considered):
            return self._weighted_numeric_outcome(primary, considered, item_weights, weights)
        return self._weighted_categorical_outcome(primary, considered, item_weights, weights)

    def _weighted_numeric_outcome(
        self,
        primary: Claim,
        considered: list[tuple[ConflictItem, Claim]],
        item_weights: list[float],
        weights: dict[str, float],
    ) -> StrategyOutcome:
        values = [float(c.value) for _, c in considered]  # type: ignore[arg-type]
        mean, variance = weighted_numeric(values, item_weights)
        confidence = clamp_confidence(1.0 - variance)
        return StrategyOutcome(
            strategy=ResolutionStrategy.WEIGHTED_TRUTH,
            resolved_summary=f"Weighted {primary.metric} is {mean:.4g} across {len(values)} insights",
            confidence=confidence,
            rationale=(
                f"Weighted average of {primary.metric} over {len(values)} values; "
                f"weighted variance {variance:.4f}."
            ),
            resolved_value=round(mean, 6),
            source_weights=weights,
        )

    def _weighted_categorical_outcome(
        self,
        primary: Claim,
        considered: list[tuple[ConflictItem, Claim]],
        item_weights: list[float],
        weights: dict[str, float],
    ) -> StrategyOutcome:
        votes = [(c.value, w) for (_, c), w in zip(considered, item_weights, strict=True)]
        totals, variance = weighted_vote(votes)
        best_total = max(totals.values())
        tied = [v for v, t in totals.items() if best_total - t <= self._settings.vote_tie_tolerance]

        def support(value: ClaimValue) -> ConflictItem:
            backers = [i for i, c in considered if c.value == value]
            return sorted(backers, key=lambda i: (-i.declared_confidence, i.source_system, i.id))[0]

        if len(tied) > 1:
            ranked = sorted(
                tied,
                key=lambda v: (-support(v).declared_confidence, support(v).source_system, str(v)),
            )
            winner = ranked[0]
            backer = support(winner)
            tie_note = (
                f" Tie between {', '.join(sorted(str(v) for v in tied))} "
                f"(within {self._settings.vote_tie_tolerance}); broken in favour of {winner} "
                f"reported by {backer.source_system} with higher source confidence "
                f"{backer.declared_confidence:.2f}."
            )
        else:
            winner = max(totals, key=totals.__getitem__)
            backer = support(winner)
            tie_note = ""

        confidence = clamp_confidence(1.0 - variance)
        shares = ", ".join(f"{v}={totals[v]:.2f}" for v in sorted(totals, key=str))
        return StrategyOutcome(
            strategy=ResolutionStrategy.WEIGHTED_TRUTH,
            resolved_summary=backer.text,
            confidence=confidence,
            rationale=f"Weighted majority vote on {primary.metric}: {shares}.{tie_note}",
            resolved_value=winner,
            source_weights=weights,
        )

    async def ai_consensus(
        self,
        conflict: Conflict,
        items: list[ConflictItem],
        strategy_outputs: dict[str, dict[str, object]] | None = None,
        context_notes: str | None = None,
    ) -> StrategyOutcome:
        analysis = None
        if conflict.analysis is not None:
            analysis = {
                "severity": str(conflict.analysis.severity),
                "severity_score": conflict.analysis.severity_score,
                "root_causes": [c.cause for c in conflict.analysis.root_causes],
            }
        request = GenerationRequest(
            conflict_id=conflict.id,
            conflict_type=str(conflict.conflict_type),
            title=conflict.title,
            items=[
                {
                    "text": i.text,
                    "source_system": i.source_system,
                    "role": str(i.role),
                    "confidence": i.confidence,
                    "metric": i.metric,
                    "value": i.value,
                }
                for i in items
            ],
            analysis=analysis,
            strategy_outputs=strategy_outputs or {},
            context_notes=context_notes,
        )
        result = await generate_with_retry(
            self._generator,
            request,
            max_retries=self._settings.llm_max_retries,
            base_delay=self._settings.llm_retry_base_delay,
        )
        if not result.narrative or not result.narrative.strip():
            raise MalformedGenerationError("Generation returned an empty narrative", conflict.id)
        if not isinstance(result.confidence, int | float) or math.isnan(result.confidence):
            raise MalformedGenerationError("Generation returned an unusable confidence", conflict.id)
        return StrategyOutcome(
            strategy=ResolutionStrategy.AI_CONSENSUS,
            resolved_summary=result.resolved_summary or result.narrative,
            confidence=clamp_confidence(float(result.confidence)),
            rationale=f"Consensus synthesized by {result.model_name or 'generative model'} from {len(items)} insights.",
            narrative=result.narrative,
            recommended_actions=result.recommended_actions,
            model_name=result.model_name,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
        )

    def _disagreement(self, priority: StrategyOutcome, weighted: StrategyOutcome) -> str | None:
        a, b = priority.resolved_value, weighted.resolved_value
        numeric = all(isinstance(v, int | float) and not isinstance(v, bool) for v in (a, b))
        if numeric:
            if relative_delta(float(a), float(b)) > self._settings.divergence_threshold:  # type: ignore[arg-type]
                return f"source_priority={a}, weighted_truth={b}"
        elif a != b:
            return f"source_priority={a}, weighted_truth={b}"
        gap = abs(priority.confidence - weighted.confidence)
        if gap > self._settings.hybrid_disagreement_threshold:
            return f"confidence gap {gap:.2f}"
        return None
