"""Ranking utilities for retrieval.

Every knowledge source is ranked with the same additive formula::

    final = alpha * semantic + (1 - alpha) * lexical
            + exact_match + quality + corrected + keyword
            + recency * recency_weight

The sum is unbounded; scores are only meaningful relative to each other.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from translation_rag.models import KnowledgeEntry
from translation_rag.retrieval.types import Boosts, ScoreBreakdown, ScoredCandidate

T = TypeVar("T")

SECONDS_PER_DAY = 86400.0


def semantic_from_distance(distance: Optional[float]) -> float:
    """Convert a cosine distance to a similarity clamped at zero."""

    if distance is None:
        return 0.0
    return max(0.0, 1.0 - float(distance))


def lexical_from_fields(similarities: Sequence[Optional[float]]) -> float:
    """Average per-field similarities; a null field contributes zero."""

    if not similarities:
        return 0.0
    return sum(value or 0.0 for value in similarities) / len(similarities)


def quality_boost(grade: Optional[str], boost_map: Mapping[str, float]) -> float:
    if grade is None:
        return 0.0
    key = getattr(grade, "value", grade)
    return float(boost_map.get(key, 0.0))


def recency_boost(
    created_at: Optional[datetime],
    now: datetime,
    decay_days: int,
) -> float:
    """Linear decay from 1 (created now) to 0 (``decay_days`` old or older)."""

    if created_at is None:
        return 0.0
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    age_days = (now - created_at).total_seconds() / SECONDS_PER_DAY
    return max(0.0, min(1.0, 1.0 - age_days / decay_days))


def keyword_boost(text: str, keywords: Iterable[str], per_keyword: float) -> float:
    """Add ``per_keyword`` for every keyword found as a case-insensitive substring."""

    haystack = text.casefold()
    return sum(per_keyword for keyword in keywords if keyword and keyword.casefold() in haystack)


def fuse(
    *,
    alpha: float,
    semantic_score: float,
    lexical_score: float,
    exact_match_boost: float = 0.0,
    quality_boost: float = 0.0,
    corrected_boost: float = 0.0,
    keyword_boost: float = 0.0,
    recency_boost: float = 0.0,
    recency_weight: float = 0.1,
) -> ScoreBreakdown:
    """Combine score components into a breakdown carrying the final score."""

    final_score = (
        alpha * semantic_score
        + (1.0 - alpha) * lexical_score
        + exact_match_boost
        + quality_boost
        + corrected_boost
        + keyword_boost
        + recency_boost * recency_weight
    )
    return ScoreBreakdown(
        semantic_score=semantic_score,
        lexical_score=lexical_score,
        exact_match_boost=exact_match_boost,
        quality_boost=quality_boost,
        corrected_boost=corrected_boost,
        keyword_boost=keyword_boost,
        recency_boost=recency_boost,
        final_score=final_score,
    )


def score_entry(
    entry: KnowledgeEntry,
    *,
    alpha: float,
    semantic_score: float,
    lexical_score: float,
    query_text: str,
    keywords: Sequence[str],
    boosts: Boosts,
) -> ScoreBreakdown:
    """Apply one source's boosts to an entry and fuse the result.

    Stores use this to order candidates before truncating and scorers use it
    to build the reported breakdown, so both always agree.
    """

    exact = boosts.exact_match if boosts.exact_match and entry.primary_text == query_text else 0.0
    quality = quality_boost(getattr(entry, "quality_score", None), boosts.quality_map) if boosts.quality_map else 0.0
    corrected = boosts.corrected if boosts.corrected and getattr(entry, "corrected_text", None) is not None else 0.0
    keyword = keyword_boost(entry.primary_text, keywords, boosts.keyword) if boosts.keyword else 0.0
    recency = (
        recency_boost(entry.created_at, boosts.now, boosts.recency_decay_days) if boosts.now is not None else 0.0
    )
    return fuse(
        alpha=alpha,
        semantic_score=semantic_score,
        lexical_score=lexical_score,
        exact_match_boost=exact,
        quality_boost=quality,
        corrected_boost=corrected,
        keyword_boost=keyword,
        recency_boost=recency,
        recency_weight=boosts.recency_weight,
    )


def _sort_key(candidate: ScoredCandidate) -> Tuple[float, int, str]:
    return (-candidate.score, candidate.position, candidate.id)


def rank(candidates: Iterable[ScoredCandidate[T]], cap: Optional[int] = None) -> List[ScoredCandidate[T]]:
    """Order by final score, breaking ties by store order then id."""

    ordered = sorted(candidates, key=_sort_key)
    return ordered if cap is None else ordered[:cap]


def merge_by_id(
    result_lists: Sequence[Sequence[ScoredCandidate[T]]],
    cap: Optional[int] = None,
) -> List[ScoredCandidate[T]]:
    """Deduplicate candidates by id, keeping the highest-scoring occurrence."""

    best: Dict[str, ScoredCandidate[T]] = {}
    for results in result_lists:
        for candidate in results:
            existing = best.get(candidate.id)
            if existing is None or candidate.score > existing.score:
                best[candidate.id] = candidate
    return rank(best.values(), cap)

