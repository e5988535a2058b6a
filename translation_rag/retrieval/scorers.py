"""Per-source scoring of knowledge-store hits."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from translation_rag.config import Settings, get_settings
from translation_rag.exceptions import SourceQueryFailed
from translation_rag.models import (
    GrammarRule,
    KnowledgeEntry,
    KnowledgeSource,
    LearningInsight,
    LexiconEntry,
    StyleNote,
    TranslationExample,
)
from translation_rag.retrieval.store import SOURCE_SPECS, KnowledgeStore, SourceQuery
from translation_rag.retrieval.types import Boosts, ScoredCandidate, SearchFilters, StoreHit
from translation_rag.utils import ranking

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=KnowledgeEntry)
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class SourceScorer(Generic[E]):
    """
    Score one knowledge source with the shared fusion formula.

    Subclasses only declare which source they read, their default cap, and
    which boosts apply. The store applies filters and the admission gate;
    the scorer turns raw similarities into a :class:`ScoreBreakdown` per hit,
    then sorts and caps.
    """

    source: KnowledgeSource
    cap_setting: str = "max_results"
    exact_match: bool = False
    quality: bool = False
    corrected: bool = False
    keywords: bool = False
    recency: bool = False

    def __init__(self, settings: Optional[Settings] = None, *, clock: Clock = utc_now) -> None:
        self.settings = settings or get_settings()
        self.spec = SOURCE_SPECS[self.source]
        self.clock = clock

    @property
    def default_cap(self) -> int:
        return int(getattr(self.settings, self.cap_setting))

    def score(
        self,
        store: KnowledgeStore,
        query_vector: Sequence[float],
        query_text: str,
        filters: SearchFilters,
        cap: Optional[int] = None,
        *,
        alpha: Optional[float] = None,
    ) -> List[ScoredCandidate[E]]:
        """Return at most ``cap`` candidates sorted by final score.

        A failing store lookup is logged and yields an empty list.
        """

        cap = cap or self.default_cap
        alpha = self.settings.default_alpha if alpha is None else alpha
        boosts = self.boosts(self.clock())
        query = SourceQuery(
            spec=self.spec,
            query_vector=query_vector,
            query_text=query_text,
            filters=filters,
            alpha=alpha,
            limit=cap * self.settings.candidate_multiplier,
            boosts=boosts,
        )
        try:
            hits = store.search(query)
            candidates = [self.score_hit(hit, query_text, filters, alpha, boosts) for hit in hits]
        except Exception as exc:
            failure = SourceQueryFailed(self.source.value, str(exc))
            logger.error(f"{failure}", exc_info=True)
            return []

        ranked = ranking.rank(candidates, cap)
        logger.debug(f"{self.source.value}: {len(hits)} hits, kept {len(ranked)}")
        return ranked

    def boosts(self, now: datetime) -> Boosts:
        """Boost constants for this source; disabled boosts stay at zero."""

        settings = self.settings
        return Boosts(
            exact_match=settings.exact_match_boost if self.exact_match else 0.0,
            quality_map=settings.quality_boost_map if self.quality else None,
            corrected=settings.corrected_boost if self.corrected else 0.0,
            keyword=settings.keyword_boost if self.keywords else 0.0,
            recency_weight=settings.recency_weight if self.recency else 0.0,
            recency_decay_days=settings.recency_decay_days,
            now=now if self.recency else None,
        )

    def score_hit(
        self,
        hit: StoreHit,
        query_text: str,
        filters: SearchFilters,
        alpha: float,
        boosts: Boosts,
    ) -> ScoredCandidate[E]:
        breakdown = ranking.score_entry(
            hit.entry,
            alpha=alpha,
            semantic_score=ranking.semantic_from_distance(hit.cosine_distance),
            lexical_score=ranking.lexical_from_fields(hit.field_similarities),
            query_text=query_text,
            keywords=filters.keywords,
            boosts=boosts,
        )
        return ScoredCandidate(entry=hit.entry, source=self.source, breakdown=breakdown, position=hit.position)


class TranslationExampleScorer(SourceScorer[TranslationExample]):
    """Approved translation-memory pairs; every boost except keywords applies."""

    source = KnowledgeSource.TRANSLATION_MEMORY
    cap_setting = "example_results"
    exact_match = True
    quality = True
    corrected = True
    recency = True


class LexiconScorer(SourceScorer[LexiconEntry]):
    source = KnowledgeSource.LEXICON
    cap_setting = "lexicon_results"
    exact_match = True
    keywords = True


class GrammarScorer(SourceScorer[GrammarRule]):
    source = KnowledgeSource.GRAMMAR
    cap_setting = "grammar_results"
    quality = True


class StyleScorer(SourceScorer[StyleNote]):
    source = KnowledgeSource.STYLE
    cap_setting = "style_results"


class LearningInsightScorer(SourceScorer[LearningInsight]):
    source = KnowledgeSource.LEARNING_INSIGHT
    cap_setting = "insight_results"


__all__ = [
    "GrammarScorer",
    "LearningInsightScorer",
    "LexiconScorer",
    "SourceScorer",
    "StyleScorer",
    "TranslationExampleScorer",
    "utc_now",
]
