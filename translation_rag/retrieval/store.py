"""Knowledge store contract shared by the Postgres and in-memory backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from translation_rag.models import ENTRY_TYPES, KnowledgeEntry, KnowledgeSource
from translation_rag.retrieval.types import Boosts, SearchFilters, StoreHit


@dataclass(frozen=True)
class SourceSpec:
    """How one knowledge source maps onto storage and lexical scoring.

    ``lexical_fields`` lists the text fields compared against the query; each
    item is a coalesce chain (first non-null attribute wins). The first chain's
    first attribute is the primary text used by the admission gate and the
    exact-match check.
    """

    source: KnowledgeSource
    table: str
    lexical_fields: Tuple[Tuple[str, ...], ...]
    column_names: Dict[str, str] = field(default_factory=dict)
    has_domain: bool = False
    has_tags: bool = False
    null_domain_matches: bool = True
    approved_only: bool = False
    inherits_translation_memory: bool = False

    @property
    def primary_field(self) -> str:
        return self.lexical_fields[0][0]

    @property
    def entry_type(self) -> type[KnowledgeEntry]:
        return ENTRY_TYPES[self.source]

    def column(self, field_name: str) -> str:
        """Storage column for an entry field; dotted names are already qualified."""
        return self.column_names.get(field_name, field_name)

    def entry_fields(self) -> List[str]:
        return [name for name in self.entry_type.model_fields if name != "embedding"]


SOURCE_SPECS: Dict[KnowledgeSource, SourceSpec] = {
    KnowledgeSource.TRANSLATION_MEMORY: SourceSpec(
        source=KnowledgeSource.TRANSLATION_MEMORY,
        table="translation_memory",
        lexical_fields=(("source_text",), ("corrected_text", "target_text"), ("context",)),
        has_domain=True,
        null_domain_matches=False,
        approved_only=True,
    ),
    KnowledgeSource.LEXICON: SourceSpec(
        source=KnowledgeSource.LEXICON,
        table="romani_lexicon",
        lexical_fields=(("source_text",),),
        has_domain=True,
        has_tags=True,
    ),
    KnowledgeSource.GRAMMAR: SourceSpec(
        source=KnowledgeSource.GRAMMAR,
        table="romani_grammar",
        lexical_fields=(("content",),),
        has_tags=True,
    ),
    KnowledgeSource.STYLE: SourceSpec(
        source=KnowledgeSource.STYLE,
        table="romani_style",
        lexical_fields=(("content",),),
        has_tags=True,
    ),
    KnowledgeSource.LEARNING_INSIGHT: SourceSpec(
        source=KnowledgeSource.LEARNING_INSIGHT,
        table='"LearningInsight"',
        lexical_fields=(("rule",), ("explanation",)),
        column_names={
            "dialect": "src.dialect",
            "source_translation_memory_id": '"sourceTranslationMemoryId"',
            "created_at": '"createdAt"',
        },
        has_domain=True,
        has_tags=True,
        inherits_translation_memory=True,
    ),
}


@dataclass(frozen=True)
class SourceQuery:
    """Everything a store needs to run one source lookup.

    ``boosts`` carries the source's boost constants so the store can order
    candidates by the same score the scorer reports.
    """

    spec: SourceSpec
    query_vector: Sequence[float]
    query_text: str
    filters: SearchFilters
    alpha: float
    limit: int
    boosts: Boosts = field(default_factory=Boosts)


class KnowledgeStore(Protocol):
    """Read-only similarity lookups over the knowledge sources.

    Implementations apply the filters and the admission gate, and return at
    most ``query.limit`` hits ordered by the full fused score, boosts
    included, so truncation never drops a candidate a boost would promote.
    """

    def search(self, query: SourceQuery) -> List[StoreHit]:
        """Return admitted rows for one source."""


def coalesce(values: Dict[str, Any], chain: Sequence[str]) -> Optional[Any]:
    """Return the first non-null value named in ``chain``."""

    for name in chain:
        value = values.get(name)
        if value is not None:
            return value
    return None


__all__ = [
    "KnowledgeStore",
    "SOURCE_SPECS",
    "SourceQuery",
    "SourceSpec",
    "coalesce",
]
