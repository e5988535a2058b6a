"""Tests for the unified retrieval orchestrator."""

import threading
import time

import pytest

from translation_rag.embedding import EmbeddingRequester
from translation_rag.exceptions import InputTooLong, RetrievalFailed
from translation_rag.models import Dialect, KnowledgeSource
from translation_rag.retrieval import (
    HybridRecord,
    InMemoryKnowledgeStore,
    RetrievalBundle,
    SearchOptions,
    UnifiedRetriever,
)

from conftest import (
    ALIGNED,
    DIM,
    ORTHOGONAL,
    FailingEmbeddingBackend,
    FailingStore,
    FakeEmbeddingBackend,
    example,
    fixed_clock,
    lexicon,
)


def test_retrieve_fills_every_list(retriever):
    bundle = retriever.retrieve("Hur mår du idag?")

    assert isinstance(bundle, RetrievalBundle)
    assert [c.id for c in bundle.examples][:1] == ["tm-1"]
    assert {c.id for c in bundle.examples} == {"tm-1", "tm-2"}
    assert [c.id for c in bundle.grammar_rules] == ["gr-1"]
    assert [c.id for c in bundle.learning_insights] == ["li-1"]
    assert "lex-3" in {c.id for c in bundle.vocabulary}
    assert not bundle.is_empty


def test_retrieve_embeds_query_and_lexicon_framing(retriever, backend):
    retriever.retrieve("hej")
    assert sorted(backend.calls) == sorted(["hej", "Swedish: hej ||| Romani:"])


def test_retrieve_extracts_keywords_for_lexicon(retriever):
    bundle = retriever.retrieve("idag")
    [entry] = [c for c in bundle.vocabulary if c.id == "lex-3"]
    assert entry.keyword_boost == pytest.approx(0.3)
    assert entry.exact_match_boost == pytest.approx(0.5)


def test_retrieve_prefers_explicit_keywords(retriever):
    bundle = retriever.retrieve("idag", SearchOptions(keywords=["sastipe"]))
    assert all(c.keyword_boost == 0.0 for c in bundle.vocabulary)


def test_retrieve_is_deterministic(retriever):
    first = retriever.retrieve("Hur mår du idag?", SearchOptions(dialect=Dialect.LOVARI))
    second = retriever.retrieve("Hur mår du idag?", SearchOptions(dialect=Dialect.LOVARI))

    for name in ("learning_insights", "grammar_rules", "vocabulary", "examples"):
        assert [c.as_dict() for c in getattr(first, name)] == [c.as_dict() for c in getattr(second, name)]


def test_retrieve_applies_dialect_filter(retriever):
    bundle = retriever.retrieve("Hur mår du idag?", SearchOptions(dialect="Lovari"))

    assert [c.id for c in bundle.examples] == ["tm-1"]
    assert "lex-1" in {c.id for c in bundle.vocabulary}


def test_retrieve_respects_max_results(settings, embedder):
    entries = [lexicon(f"lex-{i:02d}", "bil", "vurdon", embedding=[1.0, i / 10, 0.0, 0.0]) for i in range(50)]
    with UnifiedRetriever(InMemoryKnowledgeStore(entries), embedder, settings) as unified:
        bundle = unified.retrieve("hej", SearchOptions(max_results=5))

    assert [c.id for c in bundle.vocabulary] == ["lex-00", "lex-01", "lex-02", "lex-03", "lex-04"]


def test_grammar_failure_is_isolated(store, embedder, settings, caplog):
    failing = FailingStore(store, {KnowledgeSource.GRAMMAR})
    with UnifiedRetriever(failing, embedder, settings, clock=fixed_clock) as unified:
        with caplog.at_level("ERROR"):
            bundle = unified.retrieve("Hur mår du idag?")

    assert bundle.grammar_rules == []
    assert bundle.examples
    assert bundle.vocabulary
    assert bundle.learning_insights
    assert "grammar query failed" in caplog.text


def test_slow_source_times_out(store, embedder, settings, caplog):
    release = threading.Event()

    class SlowStore:
        def search(self, query):
            if query.spec.source is KnowledgeSource.LEARNING_INSIGHT:
                release.wait(5)
            return store.search(query)

    fast = settings.model_copy(update={"source_timeout_seconds": 0.2})
    unified = UnifiedRetriever(SlowStore(), embedder, fast, clock=fixed_clock)
    try:
        with caplog.at_level("WARNING"):
            bundle = unified.retrieve("Hur mår du idag?")
    finally:
        release.set()
        unified.close()

    assert bundle.learning_insights == []
    assert bundle.examples
    assert "timed out" in caplog.text


def test_unavailable_embedding_backend_still_returns_bundle(store, settings):
    embedder = EmbeddingRequester(FailingEmbeddingBackend(), dimensions=DIM)
    with UnifiedRetriever(store, embedder, settings, clock=fixed_clock) as unified:
        bundle = unified.retrieve("hej")

    assert isinstance(bundle, RetrievalBundle)
    assert [c.id for c in bundle.vocabulary][:1] == ["lex-1"]


def test_empty_query_returns_empty_bundle(retriever, backend):
    bundle = retriever.retrieve("   ")
    assert bundle.is_empty
    assert backend.calls == []


def test_too_long_query_raises(retriever):
    with pytest.raises(InputTooLong):
        retriever.retrieve("x" * 1201)


def test_embedding_error_raises_retrieval_failed(store, settings):
    class BrokenEmbedder:
        def embed(self, text, dialect=None):
            raise RuntimeError("boom")

    with UnifiedRetriever(store, BrokenEmbedder(), settings) as unified:
        with pytest.raises(RetrievalFailed):
            unified.retrieve("hej")


def test_hybrid_search_flattens_with_provenance(retriever):
    results = retriever.hybrid_search("hej")

    assert results
    assert all(isinstance(c.entry, HybridRecord) for c in results)
    assert all(c.entry.source is c.source for c in results)
    top = results[0]
    assert top.id == "lex-1"
    assert top.source is KnowledgeSource.LEXICON
    assert top.entry.target_text == "sastipe"

    sources = {c.source for c in results}
    assert KnowledgeSource.LEARNING_INSIGHT not in sources
    style = [c for c in results if c.source is KnowledgeSource.STYLE]
    assert style and style[0].entry.target_text == ""

    scores = [c.score for c in results]
    assert scores == sorted(scores, reverse=True)


def test_hybrid_search_applies_min_score_and_cap(retriever):
    results = retriever.hybrid_search("hej", SearchOptions(max_results=2))
    assert len(results) == 2

    assert retriever.hybrid_search("hej", SearchOptions(min_score=100.0)) == []


def test_hybrid_search_deduplicates_ids(settings, embedder):
    store = InMemoryKnowledgeStore([example("shared", "hej", "sastipe"), lexicon("shared", "hej", "sastipe")])
    with UnifiedRetriever(store, embedder, settings, clock=fixed_clock) as unified:
        results = unified.hybrid_search("hej")

    assert [c.id for c in results] == ["shared"]
    assert results[0].source is KnowledgeSource.LEXICON


def test_find_similar_translations_merges_both_sides(retriever):
    results = retriever.find_similar_translations("hejdå", "Sar san adjes?")

    ids = [c.id for c in results]
    assert len(ids) == len(set(ids))
    assert "lex-2" in ids
    assert len(results) <= 10


def test_from_settings_builds_postgres_store(settings):
    from translation_rag.retrieval.pg_store import PostgresKnowledgeStore

    with UnifiedRetriever.from_settings(settings) as unified:
        assert isinstance(unified.store, PostgresKnowledgeStore)
        assert unified.embedder.dimensions == DIM
        assert unified.store.min_semantic_score == settings.min_semantic_score


def test_fake_backend_vector_drives_semantic_score(store, settings):
    backend = FakeEmbeddingBackend(default=[0.0, 0.0, 1.0, 0.0])
    embedder = EmbeddingRequester(backend, dimensions=DIM)
    with UnifiedRetriever(store, embedder, settings, clock=fixed_clock) as unified:
        bundle = unified.retrieve("hej")

    assert all(c.semantic_score == 0.0 for c in bundle.vocabulary)
    assert [c.id for c in bundle.vocabulary][:1] == ["lex-1"]


def test_hybrid_search_matches_lexicon_with_framed_embedding(store, settings):
    backend = FakeEmbeddingBackend({"hej": list(ORTHOGONAL), "Swedish: hej ||| Romani:": list(ALIGNED)})
    embedder = EmbeddingRequester(backend, dimensions=DIM)
    with UnifiedRetriever(store, embedder, settings, clock=fixed_clock) as unified:
        results = unified.hybrid_search("hej", SearchOptions(min_score=0.0))

    vocabulary = [c for c in results if c.source is KnowledgeSource.LEXICON]
    others = [c for c in results if c.source is not KnowledgeSource.LEXICON]
    assert vocabulary and all(c.semantic_score == pytest.approx(1.0) for c in vocabulary)
    assert all(c.semantic_score == 0.0 for c in others)


def test_stuck_sources_do_not_block_later_calls(store, embedder, settings, caplog):
    release = threading.Event()

    class StuckStore:
        def search(self, query):
            release.wait(10)
            return store.search(query)

    fast = settings.model_copy(update={"source_timeout_seconds": 0.2, "embedding_timeout_seconds": 1.0})
    unified = UnifiedRetriever(StuckStore(), embedder, fast, clock=fixed_clock)
    try:
        with caplog.at_level("WARNING"):
            for _ in range(3):
                started = time.monotonic()
                bundle = unified.retrieve("Hur mår du idag?")
                assert time.monotonic() - started < 1.0
                assert bundle.is_empty
    finally:
        release.set()
        unified.close()

    assert "timed out" in caplog.text


def test_slow_embedding_falls_back_to_pseudo_vector(store, settings, caplog):
    release = threading.Event()

    class SlowBackend(FakeEmbeddingBackend):
        def embed_query(self, text):
            release.wait(10)
            return super().embed_query(text)

    embedder = EmbeddingRequester(SlowBackend(), dimensions=DIM)
    fast = settings.model_copy(update={"embedding_timeout_seconds": 0.2})
    unified = UnifiedRetriever(store, embedder, fast, clock=fixed_clock)
    try:
        with caplog.at_level("WARNING"):
            started = time.monotonic()
            bundle = unified.retrieve("hej")
            elapsed = time.monotonic() - started
    finally:
        release.set()
        unified.close()

    assert elapsed < 2.0
    assert isinstance(bundle, RetrievalBundle)
    assert "Query embedding timed out" in caplog.text
