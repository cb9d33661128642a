"""Similarity engine shared by every conflict component.

Scores two insights in [0, 1]. With embeddings of equal dimensionality on
both sides the cosine similarity is rescaled from [-1, 1]; otherwise a
Jaccard token-overlap score is used and flagged as approximate.

Results are rounded to 12 decimals so identical inputs always produce
bit-identical scores and ``similarity(a, a)`` is exactly 1.0.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Protocol

_TOKEN_RE = re.compile(r"[^\w\s]+", re.UNICODE)
_PRECISION = 12


class Comparable(Protocol):
    """Anything carrying comparable text and an optional embedding."""

    @property
    def text(self) -> str: ...

    embedding: list[float] | None


@dataclass(frozen=True)
class SimilarityScore:
    score: float
    approximate: bool = False


def cosine_similarity(vec_a: list[float], vec_b: list[float]) -> float:
    """Cosine of the angle between two embeddings, in [-1, 1].

    Zero vectors score 0.0.

    Raises:
        ValueError: If the dimensionalities differ.
    """
    if len(vec_a) != len(vec_b):
        raise ValueError(f"Embedding dimensionality differs: {len(vec_a)} vs {len(vec_b)}")

    norm_a, norm_b = math.hypot(*vec_a), math.hypot(*vec_b)
    if not norm_a or not norm_b:
        return 0.0
    dot = math.fsum(a * b for a, b in zip(vec_a, vec_b, strict=True))
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def rescale_cosine(cosine: float) -> float:
    """Map cosine similarity from [-1, 1] onto [0, 1]."""
    return round(min(1.0, max(0.0, (cosine + 1.0) / 2.0)), _PRECISION)


def tokenize(text: str | None) -> set[str]:
    """Lower-cased, punctuation-stripped token set."""
    if not text:
        return set()
    return set(_TOKEN_RE.sub(" ", text.lower()).split())


def jaccard_similarity(text_a: str | None, text_b: str | None) -> float:
    tokens_a = tokenize(text_a)
    tokens_b = tokenize(text_b)
    if not tokens_a or not tokens_b:
        return 0.0
    return round(len(tokens_a & tokens_b) / len(tokens_a | tokens_b), _PRECISION)


def _usable(vec: list[float] | None) -> bool:
    return bool(vec) and any(x != 0 for x in vec)  # type: ignore[union-attr]


def score_pair(
    text_a: str | None,
    text_b: str | None,
    embedding_a: list[float] | None = None,
    embedding_b: list[float] | None = None,
) -> SimilarityScore:
    """Score two raw insights. Never raises."""
    if _usable(embedding_a) and _usable(embedding_b) and len(embedding_a) == len(embedding_b):  # type: ignore[arg-type]
        return SimilarityScore(rescale_cosine(cosine_similarity(embedding_a, embedding_b)))  # type: ignore[arg-type]
    return SimilarityScore(jaccard_similarity(text_a, text_b), approximate=True)


class SimilarityEngine:
    """Scores insights and conflicts against each other."""

    def score(self, a: Comparable, b: Comparable) -> SimilarityScore:
        return score_pair(a.text, b.text, a.embedding, b.embedding)

    def similarity(self, a: Comparable, b: Comparable) -> float:
        return self.score(a, b).score

    def best_match(self, candidate: Comparable, others: list[Comparable]) -> tuple[int, SimilarityScore] | None:
        """Index and score of the most similar entry in ``others``.

        Ties keep the earliest entry so results do not depend on dict order.
        """
        best: tuple[int, SimilarityScore] | None = None
        for index, other in enumerate(others):
            scored = self.score(candidate, other)
            if best is None or scored.score > best[1].score:
                best = (index, scored)
        return best

    def pairwise(self, entries: list[Comparable]) -> list[tuple[int, int, SimilarityScore]]:
        """All unordered pairs (i < j) with their scores."""
        pairs = []
        for i in range(len(entries)):
            for j in range(i + 1, len(entries)):
                pairs.append((i, j, self.score(entries[i], entries[j])))
        return pairs
