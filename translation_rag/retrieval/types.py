"""Typed result objects for retrieval."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar

from translation_rag.models import (
    Dialect,
    GrammarRule,
    KnowledgeEntry,
    KnowledgeSource,
    LearningInsight,
    LexiconEntry,
    QualityGrade,
    ReviewStatus,
    StyleNote,
    TranslationExample,
)

T = TypeVar("T")


@dataclass(frozen=True)
class SearchOptions:
    """Caller-facing knobs for a retrieval call. ``None`` means "use settings"."""

    dialect: Optional[Dialect] = None
    domain: Optional[str] = None
    tags: Optional[Sequence[str]] = None
    keywords: Optional[Sequence[str]] = None
    max_results: Optional[int] = None
    alpha: Optional[float] = None
    min_score: Optional[float] = None

    def __post_init__(self) -> None:
        if self.alpha is not None and not 0.0 <= self.alpha <= 1.0:
            raise ValueError(f"alpha must be within [0, 1], got {self.alpha}")
        if self.max_results is not None and self.max_results < 1:
            raise ValueError(f"max_results must be positive, got {self.max_results}")
        if isinstance(self.dialect, str) and not isinstance(self.dialect, Dialect):
            object.__setattr__(self, "dialect", Dialect(self.dialect))


@dataclass(frozen=True)
class SearchFilters:
    """Structured filter handed to the knowledge store and the scorers."""

    dialect: Optional[Dialect] = None
    domain: Optional[str] = None
    tags: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()

    @classmethod
    def from_options(cls, options: SearchOptions, keywords: Sequence[str] = ()) -> "SearchFilters":
        return cls(
            dialect=options.dialect,
            domain=options.domain,
            tags=tuple(options.tags or ()),
            keywords=tuple(keywords),
        )


@dataclass(frozen=True)
class Boosts:
    """Boost constants one source applies on top of the semantic/lexical blend.

    A zero (or missing) constant disables that boost. ``now`` enables the
    recency boost; sources without a freshness dimension leave it unset.
    """

    exact_match: float = 0.0
    quality_map: Optional[Mapping[str, float]] = None
    corrected: float = 0.0
    keyword: float = 0.0
    recency_weight: float = 0.0
    recency_decay_days: int = 365
    now: Optional[datetime] = None


@dataclass(frozen=True)
class StoreHit:
    """One admitted row plus the raw similarity signals computed by the store.

    ``field_similarities`` holds one trigram similarity per lexical field of the
    source, in the scorer's field order; ``None`` marks a null field.
    ``position`` is the row's place in the store's candidate order.
    """

    entry: KnowledgeEntry
    source: KnowledgeSource
    cosine_distance: Optional[float]
    field_similarities: Tuple[Optional[float], ...]
    position: int = 0
    inherited_dialect: Optional[Dialect] = None
    inherited_domain: Optional[str] = None


@dataclass(frozen=True)
class ScoreBreakdown:
    semantic_score: float = 0.0
    lexical_score: float = 0.0
    exact_match_boost: float = 0.0
    quality_boost: float = 0.0
    corrected_boost: float = 0.0
    keyword_boost: float = 0.0
    recency_boost: float = 0.0
    final_score: float = 0.0


@dataclass(frozen=True)
class ScoredCandidate(Generic[T]):
    """A knowledge entry with every score component kept for inspection."""

    entry: T
    source: KnowledgeSource
    breakdown: ScoreBreakdown
    position: int = 0

    @property
    def id(self) -> str:
        return self.entry.id  # type: ignore[attr-defined]

    @property
    def score(self) -> float:
        return self.breakdown.final_score

    @property
    def semantic_score(self) -> float:
        return self.breakdown.semantic_score

    @property
    def lexical_score(self) -> float:
        return self.breakdown.lexical_score

    @property
    def exact_match_boost(self) -> float:
        return self.breakdown.exact_match_boost

    @property
    def quality_boost(self) -> float:
        return self.breakdown.quality_boost

    @property
    def corrected_boost(self) -> float:
        return self.breakdown.corrected_boost

    @property
    def keyword_boost(self) -> float:
        return self.breakdown.keyword_boost

    @property
    def recency_boost(self) -> float:
        return self.breakdown.recency_boost

    def as_dict(self) -> Dict[str, Any]:
        """JSON-friendly view used for logging and prompt debugging."""
        entry = self.entry
        if isinstance(entry, KnowledgeEntry):
            payload = entry.model_dump(mode="json", exclude={"embedding"})
        else:
            payload = _record_dict(entry)
        return {
            "source": self.source.value,
            "entry": payload,
            **asdict(self.breakdown),
        }


@dataclass(frozen=True)
class HybridRecord:
    """Translation-example shaped row used by the flattened legacy view.

    Grammar and style rows carry their content in ``source_text`` and an empty
    ``target_text``. ``source`` says which table the row came from.
    """

    id: str
    source: KnowledgeSource
    source_text: str
    target_text: str = ""
    corrected_text: Optional[str] = None
    context: Optional[str] = None
    domain: Optional[str] = None
    dialect: Optional[Dialect] = None
    quality_score: Optional[QualityGrade] = None
    review_status: Optional[ReviewStatus] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: KnowledgeEntry, source: KnowledgeSource) -> "HybridRecord":
        if isinstance(entry, TranslationExample):
            return cls(
                id=entry.id,
                source=source,
                source_text=entry.source_text,
                target_text=entry.target_text,
                corrected_text=entry.corrected_text,
                context=entry.context,
                domain=entry.domain,
                dialect=entry.dialect,
                quality_score=entry.quality_score,
                review_status=entry.review_status,
                created_at=entry.created_at,
            )
        if isinstance(entry, LexiconEntry):
            return cls(
                id=entry.id,
                source=source,
                source_text=entry.source_text,
                target_text=entry.target_text,
                domain=entry.domain,
                dialect=entry.dialect,
                created_at=entry.created_at,
            )
        if isinstance(entry, GrammarRule):
            return cls(
                id=entry.id,
                source=source,
                source_text=entry.content,
                dialect=entry.dialect,
                quality_score=entry.quality_score,
                created_at=entry.created_at,
            )
        if isinstance(entry, StyleNote):
            return cls(
                id=entry.id,
                source=source,
                source_text=entry.content,
                dialect=entry.dialect,
                created_at=entry.created_at,
            )
        if isinstance(entry, LearningInsight):
            return cls(
                id=entry.id,
                source=source,
                source_text=entry.rule,
                context=entry.explanation,
                domain=entry.domain,
                dialect=entry.dialect,
                created_at=entry.created_at,
            )
        raise TypeError(f"Unsupported entry type: {type(entry).__name__}")


@dataclass(frozen=True)
class RetrievalBundle:
    """Per-source ranked lists handed to the prompt builder."""

    learning_insights: List[ScoredCandidate[LearningInsight]] = field(default_factory=list)
    grammar_rules: List[ScoredCandidate[GrammarRule]] = field(default_factory=list)
    vocabulary: List[ScoredCandidate[LexiconEntry]] = field(default_factory=list)
    examples: List[ScoredCandidate[TranslationExample]] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "learning_insights": len(self.learning_insights),
            "grammar_rules": len(self.grammar_rules),
            "vocabulary": len(self.vocabulary),
            "examples": len(self.examples),
        }

    @property
    def is_empty(self) -> bool:
        return not any(self.counts().values())


def _record_dict(record: Any) -> Dict[str, Any]:
    data = asdict(record)
    for key, value in data.items():
        if hasattr(value, "value"):
            data[key] = value.value
        elif isinstance(value, datetime):
            data[key] = value.isoformat()
    return data
