"""In-process knowledge store mirroring the pgvector / pg_trgm query semantics."""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from translation_rag.models import (
    ENTRY_TYPES,
    KnowledgeEntry,
    KnowledgeSource,
    ReviewStatus,
    TranslationExample,
)
from translation_rag.retrieval.store import SourceQuery, SourceSpec, coalesce
from translation_rag.retrieval.types import StoreHit
from translation_rag.utils import ranking

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[^\W_]+")
_SOURCE_BY_TYPE = {entry_type: source for source, entry_type in ENTRY_TYPES.items()}


def trigrams(text: str) -> Set[str]:
    """Trigram set as computed by ``pg_trgm``: lower-cased words padded with
    two leading blanks and one trailing blank."""

    grams: Set[str] = set()
    for word in _WORD_RE.findall(text.lower()):
        padded = f"  {word} "
        grams.update(padded[i : i + 3] for i in range(len(padded) - 2))
    return grams


def trigram_similarity(left: Optional[str], right: Optional[str]) -> Optional[float]:
    """Equivalent of ``similarity(left, right)``; ``None`` when either side is null."""

    if left is None or right is None:
        return None
    a, b = trigrams(left), trigrams(right)
    if not a or not b:
        return 0.0
    common = len(a & b)
    return common / float(len(a) + len(b) - common)


def cosine_distance(left: Sequence[float], right: Sequence[float]) -> Optional[float]:
    """Equivalent of pgvector's ``<=>``; ``None`` for zero-norm vectors."""

    a = np.asarray(left, dtype=float)
    b = np.asarray(right, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"Vector dimensions differ: {a.shape[0]} != {b.shape[0]}")
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return None
    return 1.0 - float(np.dot(a, b)) / norm


class InMemoryKnowledgeStore:
    """Knowledge store holding entries in insertion order.

    Useful for tests and local development without PostgreSQL. Filtering,
    the admission gate and candidate ordering follow :class:`PostgresKnowledgeStore`.
    """

    def __init__(
        self,
        entries: Iterable[KnowledgeEntry] = (),
        *,
        min_semantic_score: float = 0.05,
        min_lexical_score: float = 0.01,
        embedding_dimension: Optional[int] = None,
    ) -> None:
        self.min_semantic_score = min_semantic_score
        self.min_lexical_score = min_lexical_score
        self.embedding_dimension = embedding_dimension
        self._entries: Dict[KnowledgeSource, List[KnowledgeEntry]] = {source: [] for source in KnowledgeSource}
        for entry in entries:
            self.add(entry)

    def add(self, entry: KnowledgeEntry) -> None:
        source = _SOURCE_BY_TYPE.get(type(entry))
        if source is None:
            raise TypeError(f"Unsupported entry type: {type(entry).__name__}")
        if self.embedding_dimension is not None:
            entry = type(entry).model_validate(
                entry.model_dump(), context={"embedding_dimension": self.embedding_dimension}
            )
        self._entries[source].append(entry)

    def entries(self, source: KnowledgeSource) -> List[KnowledgeEntry]:
        return list(self._entries[source])

    def search(self, query: SourceQuery) -> List[StoreHit]:
        spec = query.spec
        scored: List[Tuple[float, int, StoreHit]] = []
        for position, entry in enumerate(self._entries[spec.source]):
            inherited = self._inherited_context(spec, entry)
            if not self._matches(spec, entry, query, inherited):
                continue
            values = entry.model_dump(exclude={"embedding"})
            similarities = tuple(
                trigram_similarity(coalesce(values, chain), query.query_text) for chain in spec.lexical_fields
            )
            distance = None
            if entry.embedding is not None:
                distance = cosine_distance(entry.embedding, query.query_vector)
            semantic = 0.0 if distance is None else max(0.0, 1.0 - distance)
            primary = similarities[0] or 0.0
            if not (semantic > self.min_semantic_score or primary > self.min_lexical_score):
                continue
            final = ranking.score_entry(
                entry,
                alpha=query.alpha,
                semantic_score=semantic,
                lexical_score=ranking.lexical_from_fields(similarities),
                query_text=query.query_text,
                keywords=query.filters.keywords,
                boosts=query.boosts,
            ).final_score
            hit = StoreHit(
                entry=entry,
                source=spec.source,
                cosine_distance=distance,
                field_similarities=similarities,
                position=position,
                inherited_dialect=inherited[0],
                inherited_domain=inherited[1],
            )
            scored.append((final, position, hit))

        scored.sort(key=lambda item: (-item[0], item[1]))
        hits = [hit for _, _, hit in scored[: query.limit]]
        logger.debug(f"In-memory {spec.source.value} search returned {len(hits)} hits")
        return hits

    def _inherited_context(self, spec: SourceSpec, entry: KnowledgeEntry) -> Tuple[Optional[str], Optional[str]]:
        if not spec.inherits_translation_memory:
            return None, None
        reference = getattr(entry, "source_translation_memory_id", None)
        if reference is None:
            return None, None
        for candidate in self._entries[KnowledgeSource.TRANSLATION_MEMORY]:
            if candidate.id == reference and isinstance(candidate, TranslationExample):
                return candidate.dialect, candidate.domain
        return None, None

    def _matches(
        self,
        spec: SourceSpec,
        entry: KnowledgeEntry,
        query: SourceQuery,
        inherited: Tuple[Optional[str], Optional[str]],
    ) -> bool:
        filters = query.filters
        if spec.approved_only and getattr(entry, "review_status", None) != ReviewStatus.APPROVED:
            return False

        if filters.dialect is not None:
            # Insight dialect comes from the referenced translation row only.
            dialect = inherited[0] if spec.inherits_translation_memory else entry.dialect
            if dialect is not None and dialect != filters.dialect:
                return False

        if spec.has_domain and filters.domain is not None:
            domain = getattr(entry, "domain", None)
            if domain is None and spec.inherits_translation_memory:
                domain = inherited[1]
            if domain is None:
                if not spec.null_domain_matches:
                    return False
            elif domain != filters.domain:
                return False

        if spec.has_tags and filters.tags:
            if not set(getattr(entry, "tags", ())) & set(filters.tags):
                return False
        return True


__all__ = ["InMemoryKnowledgeStore", "cosine_distance", "trigram_similarity", "trigrams"]
