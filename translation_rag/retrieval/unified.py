"""Unified retrieval across every knowledge source."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Dict, List, Optional, Sequence, Tuple

from translation_rag.config import Settings, get_settings
from translation_rag.embedding import EmbeddingRequester
from translation_rag.exceptions import InputTooLong, RetrievalFailed, SourceQueryFailed
from translation_rag.retrieval.keywords import extract_keywords
from translation_rag.retrieval.scorers import (
    Clock,
    GrammarScorer,
    LearningInsightScorer,
    LexiconScorer,
    SourceScorer,
    StyleScorer,
    TranslationExampleScorer,
    utc_now,
)
from translation_rag.retrieval.store import KnowledgeStore
from translation_rag.retrieval.types import (
    HybridRecord,
    RetrievalBundle,
    ScoredCandidate,
    SearchFilters,
    SearchOptions,
)
from translation_rag.utils import ranking, telemetry

logger = logging.getLogger(__name__)

SIMILAR_TRANSLATION_ALPHA = 0.8
SIMILAR_TRANSLATION_RESULTS = 5


class UnifiedRetriever:
    """
    Fan a query out to the knowledge sources and assemble ranked results.

    The retriever owns two thread pools: one for the query embeddings and one
    for the per-source lookups, so sources stuck past their deadline never
    delay the next embedding. Every source is joined against one deadline
    (``source_timeout_seconds``); a source that times out or fails contributes
    an empty list while the others are returned as usual.

    Usage:
        ```python
        with UnifiedRetriever.from_settings() as retriever:
            bundle = retriever.retrieve("Hur mår du?", SearchOptions(dialect="Lovari"))
        ```
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingRequester,
        settings: Optional[Settings] = None,
        *,
        max_workers: Optional[int] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.embedder = embedder
        self.insights = LearningInsightScorer(self.settings, clock=clock)
        self.grammar = GrammarScorer(self.settings, clock=clock)
        self.lexicon = LexiconScorer(self.settings, clock=clock)
        self.examples = TranslationExampleScorer(self.settings, clock=clock)
        self.style = StyleScorer(self.settings, clock=clock)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or self.settings.retrieval_workers,
            thread_name_prefix="retrieval",
        )
        self._embed_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="embedding")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "UnifiedRetriever":
        """Build a retriever backed by PostgreSQL and the configured embedding backend."""
        from translation_rag.retrieval.pg_store import PostgresKnowledgeStore

        settings = settings or get_settings()
        store = PostgresKnowledgeStore(
            min_semantic_score=settings.min_semantic_score,
            min_lexical_score=settings.min_lexical_score,
        )
        return cls(store, EmbeddingRequester.from_settings(settings), settings)

    def __enter__(self) -> "UnifiedRetriever":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._embed_executor.shutdown(wait=False, cancel_futures=True)

    def retrieve(self, query_text: str, options: Optional[SearchOptions] = None) -> RetrievalBundle:
        """
        Retrieve ranked knowledge for a translation prompt.

        Args:
            query_text: Source text to translate
            options: Optional dialect/domain/tag filters, keywords, cap and alpha

        Returns:
            RetrievalBundle with learning insights, grammar rules, vocabulary
            and translation examples, each sorted by final score

        Raises:
            InputTooLong: If the normalized query exceeds ``max_query_length``
            RetrievalFailed: If no query vector could be produced
        """
        options = options or SearchOptions()
        if not query_text or not query_text.strip():
            logger.warning("Empty query provided to unified retrieval")
            return RetrievalBundle()

        keywords = list(options.keywords) if options.keywords else extract_keywords(query_text)
        filters = SearchFilters.from_options(options, keywords)
        alpha = self._alpha(options)

        query_vector, lexicon_vector = self._embed_query(query_text, options)

        jobs = {
            "learning_insights": (self.insights, query_vector),
            "grammar_rules": (self.grammar, query_vector),
            "vocabulary": (self.lexicon, lexicon_vector),
            "examples": (self.examples, query_vector),
        }
        results = self._run_scorers(
            {
                name: (scorer, vector, options.max_results or scorer.default_cap)
                for name, (scorer, vector) in jobs.items()
            },
            query_text,
            filters,
            alpha,
        )
        bundle = RetrievalBundle(**results)

        counts = bundle.counts()
        logger.info(
            "Unified retrieval completed: "
            + ", ".join(f"{name}={count}" for name, count in counts.items())
        )
        telemetry.log_event(
            "retrieve",
            {
                **counts,
                "query_length": len(query_text),
                "keywords": len(keywords),
                "alpha": alpha,
                "dialect": options.dialect.value if options.dialect else None,
            },
        )
        return bundle

    def hybrid_search(
        self,
        query_text: str,
        options: Optional[SearchOptions] = None,
    ) -> List[ScoredCandidate[HybridRecord]]:
        """
        Single ranked list over translation memory, lexicon, grammar and style.

        Lexicon entries are matched against the framed lexicon embedding, as in
        :meth:`retrieve`. Every hit is flattened into a :class:`HybridRecord`
        tagged with the source it came from. Duplicate ids keep their highest
        score, scores below ``min_score`` are dropped and the top
        ``max_results`` remain.
        """
        options = options or SearchOptions()
        if not query_text or not query_text.strip():
            logger.warning("Empty query provided to hybrid search")
            return []

        keywords = list(options.keywords) if options.keywords else extract_keywords(query_text)
        filters = SearchFilters.from_options(options, keywords)
        alpha = self._alpha(options)
        max_results = options.max_results or self.settings.max_results
        min_score = self.settings.hybrid_min_score if options.min_score is None else options.min_score

        query_vector, lexicon_vector = self._embed_query(query_text, options)
        vectors = {
            self.examples: query_vector,
            self.lexicon: lexicon_vector,
            self.grammar: query_vector,
            self.style: query_vector,
        }
        per_source = self._run_scorers(
            {scorer.source.value: (scorer, vector, max_results) for scorer, vector in vectors.items()},
            query_text,
            filters,
            alpha,
        )

        flattened = [
            [
                ScoredCandidate(
                    entry=HybridRecord.from_entry(candidate.entry, candidate.source),
                    source=candidate.source,
                    breakdown=candidate.breakdown,
                    position=candidate.position,
                )
                for candidate in candidates
            ]
            for candidates in per_source.values()
        ]
        merged = ranking.merge_by_id(flattened)
        results = [candidate for candidate in merged if candidate.score >= min_score][:max_results]

        logger.debug(f"Hybrid search: {sum(len(c) for c in flattened)} candidates, returning {len(results)}")
        telemetry.log_event(
            "hybrid_search",
            {"results": len(results), "candidates": sum(len(c) for c in flattened), "alpha": alpha},
        )
        return results

    def find_similar_translations(
        self,
        source_text: str,
        target_text: str,
    ) -> List[ScoredCandidate[HybridRecord]]:
        """Hybrid matches for either side of an existing translation pair."""

        options = SearchOptions(alpha=SIMILAR_TRANSLATION_ALPHA, max_results=SIMILAR_TRANSLATION_RESULTS)
        source_results = self.hybrid_search(source_text, options)
        target_results = self.hybrid_search(target_text, options)
        return ranking.merge_by_id([source_results, target_results], self.settings.max_results)

    def _alpha(self, options: SearchOptions) -> float:
        return self.settings.default_alpha if options.alpha is None else options.alpha

    def _embed_dialect(self, options: SearchOptions):
        return options.dialect if self.settings.embed_query_with_dialect else None

    def _embed(self, text: str, options: SearchOptions) -> List[float]:
        try:
            return self.embedder.embed(text, self._embed_dialect(options))
        except InputTooLong:
            raise
        except Exception as exc:
            raise RetrievalFailed(f"Could not embed query: {exc}") from exc

    def _embed_query(self, query_text: str, options: SearchOptions) -> Tuple[List[float], List[float]]:
        """Embed the raw query and its lexicon framing in parallel.

        Both requests wait at most ``embedding_timeout_seconds``. A query
        embedding that does not arrive in time is replaced by the
        pseudo-embedding; a late lexicon embedding falls back to the query vector.
        """

        timeout = self.settings.embedding_timeout_seconds
        lexicon_text = self.settings.lexicon_query_template.format(query=query_text)
        query_future = self._embed_executor.submit(self._embed, query_text, options)
        lexicon_future = self._embed_executor.submit(self._embed, lexicon_text, options)

        try:
            query_vector = query_future.result(timeout=timeout)
        except FuturesTimeout:
            query_future.cancel()
            logger.warning(f"Query embedding timed out after {timeout}s, using the pseudo-embedding")
            query_vector = self.embedder.fallback(query_text, self._embed_dialect(options))
        try:
            lexicon_vector = lexicon_future.result(timeout=timeout)
        except FuturesTimeout:
            lexicon_future.cancel()
            logger.warning(f"Lexicon query embedding timed out after {timeout}s, using the raw query vector")
            lexicon_vector = query_vector
        except (InputTooLong, RetrievalFailed) as exc:
            logger.warning(f"Lexicon query embedding unavailable, using the raw query vector: {exc}")
            lexicon_vector = query_vector
        return query_vector, lexicon_vector

    def _run_scorers(
        self,
        jobs: Dict[str, Tuple[SourceScorer, Sequence[float], int]],
        query_text: str,
        filters: SearchFilters,
        alpha: float,
    ) -> Dict[str, List[ScoredCandidate]]:
        futures: Dict[str, Future] = {
            name: self._executor.submit(
                scorer.score, self.store, vector, query_text, filters, cap, alpha=alpha
            )
            for name, (scorer, vector, cap) in jobs.items()
        }
        done, _ = wait(futures.values(), timeout=self.settings.source_timeout_seconds)

        results: Dict[str, List[ScoredCandidate]] = {}
        for name, future in futures.items():
            source = jobs[name][0].source.value
            if future not in done:
                future.cancel()
                failure = SourceQueryFailed(source, f"timed out after {self.settings.source_timeout_seconds}s")
                logger.warning(f"{failure}")
                results[name] = []
                continue
            try:
                results[name] = future.result()
            except Exception as exc:
                failure = SourceQueryFailed(source, str(exc))
                logger.error(f"{failure}", exc_info=True)
                results[name] = []
        return results


__all__ = ["UnifiedRetriever"]
