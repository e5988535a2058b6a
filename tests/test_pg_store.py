"""Tests for the PostgreSQL knowledge store using a fake connection."""

from contextlib import contextmanager
from datetime import datetime, timezone

import pytest
from pgvector import Vector
from psycopg import sql

from translation_rag.models import Dialect, KnowledgeSource, LearningInsight, QualityGrade, TranslationExample
from translation_rag.retrieval import SOURCE_SPECS, Boosts, SearchFilters, SourceQuery
from translation_rag.retrieval.pg_store import PostgresKnowledgeStore, build_source_query

from conftest import ALIGNED


class FakeCursor:
    def __init__(self, rows, executed):
        self.rows = rows
        self.executed = executed

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, statement, params):
        self.executed.append((statement, params))

    def fetchall(self):
        return self.rows


class FakeConnection:
    def __init__(self, rows):
        self.rows = rows
        self.executed = []
        self.row_factories = []

    def cursor(self, row_factory=None):
        self.row_factories.append(row_factory)
        return FakeCursor(self.rows, self.executed)


def _factory(conn):
    @contextmanager
    def connection():
        yield conn

    return connection


def _query(source, filters=None, limit=28, boosts=None):
    return SourceQuery(
        spec=SOURCE_SPECS[source],
        query_vector=ALIGNED,
        query_text="hej",
        filters=filters or SearchFilters(),
        alpha=0.7,
        limit=limit,
        boosts=boosts or Boosts(),
    )


def test_build_source_query_binds_named_parameters():
    statement, params = build_source_query(
        _query(KnowledgeSource.TRANSLATION_MEMORY), min_semantic_score=0.05, min_lexical_score=0.01
    )

    assert isinstance(statement, sql.Composed)
    assert isinstance(params["query_vector"], Vector)
    assert params["query_text"] == "hej"
    assert params["alpha"] == 0.7
    assert params["min_semantic"] == 0.05
    assert params["min_lexical"] == 0.01
    assert params["limit"] == 28
    assert "dialect" not in params
    assert "domain" not in params
    assert "exact_boost" not in params
    assert "now" not in params


def test_build_source_query_adds_filter_parameters():
    filters = SearchFilters(dialect=Dialect.LOVARI, domain="health", tags=("greeting",))
    _, params = build_source_query(
        _query(KnowledgeSource.LEXICON, filters), min_semantic_score=0.05, min_lexical_score=0.01
    )

    assert params["dialect"] == "Lovari"
    assert params["domain"] == "health"
    assert params["tags"] == ["greeting"]


def test_build_source_query_skips_filters_a_source_lacks():
    filters = SearchFilters(domain="health", tags=("greeting",))
    _, params = build_source_query(
        _query(KnowledgeSource.STYLE, filters), min_semantic_score=0.05, min_lexical_score=0.01
    )

    assert "domain" not in params
    assert params["tags"] == ["greeting"]


def test_build_source_query_orders_by_boosted_score():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    boosts = Boosts(
        exact_match=0.5,
        quality_map={"A": 0.2, "D": -0.1},
        corrected=0.15,
        recency_weight=0.1,
        recency_decay_days=365,
        now=now,
    )
    _, params = build_source_query(
        _query(KnowledgeSource.TRANSLATION_MEMORY, boosts=boosts), min_semantic_score=0.05, min_lexical_score=0.01
    )

    assert params["exact_boost"] == 0.5
    assert params["quality_key_0"] == "A"
    assert params["quality_boost_0"] == 0.2
    assert params["quality_key_1"] == "D"
    assert params["quality_boost_1"] == -0.1
    assert params["corrected_boost"] == 0.15
    assert params["now"] == now
    assert params["recency_weight"] == 0.1
    assert params["recency_decay_days"] == 365
    assert "keyword_boost" not in params


def test_build_source_query_binds_escaped_keyword_patterns():
    filters = SearchFilters(keywords=("hej", "100%", "a_b"))
    _, params = build_source_query(
        _query(KnowledgeSource.LEXICON, filters, boosts=Boosts(keyword=0.3)),
        min_semantic_score=0.05,
        min_lexical_score=0.01,
    )

    assert params["keyword_boost"] == 0.3
    assert params["keyword_0"] == "%hej%"
    assert params["keyword_1"] == "%100\\%%"
    assert params["keyword_2"] == "%a\\_b%"


def test_build_source_query_skips_boosts_for_missing_columns():
    _, params = build_source_query(
        _query(KnowledgeSource.LEXICON, boosts=Boosts(quality_map={"A": 0.2}, corrected=0.15)),
        min_semantic_score=0.05,
        min_lexical_score=0.01,
    )

    assert "quality_key_0" not in params
    assert "corrected_boost" not in params


def test_search_maps_rows_to_typed_hits():
    created = datetime(2025, 6, 1, tzinfo=timezone.utc)
    conn = FakeConnection(
        [
            {
                "id": 42,
                "dialect": "Lovari",
                "created_at": created,
                "source_text": "hej",
                "target_text": "sastipe",
                "corrected_text": None,
                "context": None,
                "domain": "greetings",
                "quality_score": "A",
                "review_status": "APPROVED",
                "cosine_distance": 0.2,
                "sim_0": 1.0,
                "sim_1": 0.0,
                "sim_2": None,
            }
        ]
    )
    store = PostgresKnowledgeStore(_factory(conn))

    [hit] = store.search(_query(KnowledgeSource.TRANSLATION_MEMORY))

    assert isinstance(hit.entry, TranslationExample)
    assert hit.entry.id == "42"
    assert hit.entry.dialect is Dialect.LOVARI
    assert hit.entry.quality_score is QualityGrade.A
    assert hit.entry.embedding is None
    assert hit.source is KnowledgeSource.TRANSLATION_MEMORY
    assert hit.cosine_distance == pytest.approx(0.2)
    assert hit.field_similarities == (1.0, 0.0, None)
    assert hit.position == 0
    assert len(conn.executed) == 1


def test_search_maps_inherited_insight_context():
    conn = FakeConnection(
        [
            {
                "id": "li-1",
                "dialect": None,
                "created_at": None,
                "rule": "Använd 'adjes' för idag",
                "category": "vocabulary",
                "confidence": 0.8,
                "explanation": None,
                "domain": None,
                "tags": None,
                "source_translation_memory_id": "tm-1",
                "cosine_distance": None,
                "sim_0": 0.1,
                "sim_1": None,
                "inherited_dialect": "Kelderash",
                "inherited_domain": "health",
            }
        ]
    )
    store = PostgresKnowledgeStore(_factory(conn))

    [hit] = store.search(_query(KnowledgeSource.LEARNING_INSIGHT))

    assert isinstance(hit.entry, LearningInsight)
    assert hit.entry.tags == []
    assert hit.cosine_distance is None
    assert hit.inherited_dialect is Dialect.KELDERASH
    assert hit.inherited_domain == "health"


def test_search_propagates_database_errors():
    class BrokenConnection(FakeConnection):
        def cursor(self, row_factory=None):
            raise RuntimeError("relation does not exist")

    store = PostgresKnowledgeStore(_factory(BrokenConnection([])))
    with pytest.raises(RuntimeError):
        store.search(_query(KnowledgeSource.GRAMMAR))

