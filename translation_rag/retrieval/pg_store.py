"""Knowledge store backed by PostgreSQL with pgvector and pg_trgm."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Any, Callable, Dict, List

import psycopg
from pgvector import Vector
from psycopg import sql
from psycopg.rows import dict_row

from translation_rag.database.connection import get_sync_connection
from translation_rag.models import Dialect
from translation_rag.retrieval.store import SourceQuery, SourceSpec
from translation_rag.retrieval.types import StoreHit

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], AbstractContextManager[psycopg.Connection]]

_ENUM_FIELDS = frozenset({"dialect", "quality_score", "review_status"})
_LIST_FIELDS = frozenset({"tags"})


def _column(spec: SourceSpec, field_name: str) -> sql.Composable:
    # Column names come from SOURCE_SPECS constants, never from user input.
    column = spec.column(field_name)
    if "." in column:
        return sql.SQL(column)
    return sql.SQL("t.") + sql.SQL(column)


def _chain(spec: SourceSpec, chain: tuple[str, ...]) -> sql.Composable:
    columns = [_column(spec, name) for name in chain]
    if len(columns) == 1:
        return columns[0]
    return sql.SQL("COALESCE({})").format(sql.SQL(", ").join(columns))


def _like_pattern(keyword: str) -> str:
    escaped = keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _score_expression(
    query: SourceQuery, semantic: sql.Composable, params: Dict[str, Any]
) -> sql.Composable:
    """Fused score in SQL, mirroring ``ranking.score_entry``; binds its own parameters."""

    spec = query.spec
    boosts = query.boosts
    fields = set(spec.entry_fields())
    primary = _column(spec, spec.primary_field)
    lexical = sql.SQL(" + ").join(
        sql.SQL("COALESCE(similarity({}, %(query_text)s), 0)").format(_chain(spec, chain))
        for chain in spec.lexical_fields
    )
    terms: List[sql.Composable] = [
        sql.SQL("%(alpha)s * {}").format(semantic),
        sql.SQL("(1 - %(alpha)s) * ({}) / {}").format(lexical, sql.Literal(len(spec.lexical_fields))),
    ]

    if boosts.exact_match:
        params["exact_boost"] = float(boosts.exact_match)
        terms.append(sql.SQL("CASE WHEN {} = %(query_text)s THEN %(exact_boost)s ELSE 0 END").format(primary))
    if boosts.quality_map and "quality_score" in fields:
        whens: List[sql.Composable] = []
        for index, (grade, value) in enumerate(sorted(boosts.quality_map.items())):
            params[f"quality_key_{index}"] = grade
            params[f"quality_boost_{index}"] = float(value)
            whens.append(
                sql.SQL("WHEN {key} THEN {value}").format(
                    key=sql.Placeholder(f"quality_key_{index}"), value=sql.Placeholder(f"quality_boost_{index}")
                )
            )
        terms.append(
            sql.SQL("CASE {}::text {} ELSE 0 END").format(_column(spec, "quality_score"), sql.SQL(" ").join(whens))
        )
    if boosts.corrected and "corrected_text" in fields:
        params["corrected_boost"] = float(boosts.corrected)
        terms.append(
            sql.SQL("CASE WHEN {} IS NOT NULL THEN %(corrected_boost)s ELSE 0 END").format(
                _column(spec, "corrected_text")
            )
        )
    if boosts.keyword:
        params["keyword_boost"] = float(boosts.keyword)
        for index, keyword in enumerate(k for k in query.filters.keywords if k):
            params[f"keyword_{index}"] = _like_pattern(keyword)
            terms.append(
                sql.SQL("CASE WHEN {} ILIKE {} THEN %(keyword_boost)s ELSE 0 END").format(
                    primary, sql.Placeholder(f"keyword_{index}")
                )
            )
    if boosts.now is not None and boosts.recency_weight:
        params["now"] = boosts.now
        params["recency_weight"] = float(boosts.recency_weight)
        params["recency_decay_days"] = float(boosts.recency_decay_days)
        terms.append(
            sql.SQL(
                "%(recency_weight)s * COALESCE(GREATEST(0, LEAST(1, 1 - EXTRACT(EPOCH FROM "
                "(%(now)s::timestamptz - {})) / 86400 / %(recency_decay_days)s)), 0)"
            ).format(_column(spec, "created_at"))
        )
    return sql.SQL("(") + sql.SQL(" + ").join(terms) + sql.SQL(")")


def build_source_query(query: SourceQuery, *, min_semantic_score: float, min_lexical_score: float) -> tuple[sql.Composed, Dict[str, Any]]:
    """Compose the similarity query for one source.

    Returns the SQL object and its named parameters. Filters are added as
    predicates only when set. Rows are ordered by the fused score including
    the source's boosts, so LIMIT keeps the candidates the scorer ranks first.
    """

    spec = query.spec
    filters = query.filters
    distance = sql.SQL("(t.embedding <=> %(query_vector)s)")
    semantic = sql.SQL("COALESCE(GREATEST(0, 1 - {}), 0)").format(distance)
    primary_similarity = sql.SQL("similarity({}, %(query_text)s)").format(_column(spec, spec.primary_field))

    select_items: List[sql.Composable] = []
    for name in spec.entry_fields():
        expr = _column(spec, name)
        if name in _ENUM_FIELDS:
            expr = sql.SQL("{}::text").format(expr)
        select_items.append(sql.SQL("{} AS {}").format(expr, sql.Identifier(name)))
    select_items.append(sql.SQL("{} AS cosine_distance").format(distance))
    for index, chain in enumerate(spec.lexical_fields):
        select_items.append(
            sql.SQL("similarity({}, %(query_text)s) AS {}").format(
                _chain(spec, chain), sql.Identifier(f"sim_{index}")
            )
        )

    joins: List[sql.Composable] = []
    domain_expr = _column(spec, "domain") if spec.has_domain else None
    if spec.inherits_translation_memory:
        joins.append(
            sql.SQL("LEFT JOIN translation_memory src ON {} = src.id").format(
                _column(spec, "source_translation_memory_id")
            )
        )
        select_items.append(sql.SQL("src.dialect::text AS inherited_dialect"))
        select_items.append(sql.SQL("src.domain AS inherited_domain"))
        domain_expr = sql.SQL("COALESCE(t.domain, src.domain)")

    params: Dict[str, Any] = {
        "query_vector": Vector(list(query.query_vector)),
        "query_text": query.query_text,
        "alpha": float(query.alpha),
        "min_semantic": float(min_semantic_score),
        "min_lexical": float(min_lexical_score),
        "limit": int(query.limit),
    }

    conditions: List[sql.Composable] = []
    if spec.approved_only:
        conditions.append(sql.SQL("t.review_status = 'APPROVED'"))
    if filters.dialect is not None:
        dialect_expr = _column(spec, "dialect")
        conditions.append(
            sql.SQL("({d} IS NULL OR {d}::text = %(dialect)s)").format(d=dialect_expr)
        )
        params["dialect"] = filters.dialect.value
    if domain_expr is not None and filters.domain is not None:
        if spec.null_domain_matches:
            conditions.append(sql.SQL("({d} IS NULL OR {d} = %(domain)s)").format(d=domain_expr))
        else:
            conditions.append(sql.SQL("{d} = %(domain)s").format(d=domain_expr))
        params["domain"] = filters.domain
    if spec.has_tags and filters.tags:
        conditions.append(sql.SQL("t.tags && %(tags)s::text[]"))
        params["tags"] = list(filters.tags)
    conditions.append(
        sql.SQL("({semantic} > %(min_semantic)s OR {primary} > %(min_lexical)s)").format(
            semantic=semantic, primary=primary_similarity
        )
    )

    statement = sql.SQL(
        """
        SELECT {select_items}
        FROM {table} t
        {joins}
        WHERE {conditions}
        ORDER BY {score} DESC,
                 {created_at} ASC NULLS LAST,
                 t.id ASC
        LIMIT %(limit)s
        """
    ).format(
        select_items=sql.SQL(",\n               ").join(select_items),
        table=sql.SQL(spec.table),
        joins=sql.SQL(" ").join(joins),
        conditions=sql.SQL("\n          AND ").join(conditions),
        score=_score_expression(query, semantic, params),
        created_at=_column(spec, "created_at"),
    )
    return statement, params


class PostgresKnowledgeStore:
    """
    Similarity lookups against the knowledge tables.

    Each source is served by one statement combining the pgvector cosine
    distance (``<=>``), pg_trgm ``similarity()`` per lexical field, the
    dialect/domain/tag filters and the admission gate. Rows are validated into
    typed entries before they leave this class.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory = get_sync_connection,
        *,
        min_semantic_score: float = 0.05,
        min_lexical_score: float = 0.01,
    ) -> None:
        self.connection_factory = connection_factory
        self.min_semantic_score = min_semantic_score
        self.min_lexical_score = min_lexical_score

    def search(self, query: SourceQuery) -> List[StoreHit]:
        statement, params = build_source_query(
            query,
            min_semantic_score=self.min_semantic_score,
            min_lexical_score=self.min_lexical_score,
        )
        with self.connection_factory() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(statement, params)
                rows = cur.fetchall()

        logger.debug(f"{query.spec.table} similarity search returned {len(rows)} rows")
        return [self._to_hit(query.spec, row, position) for position, row in enumerate(rows)]

    def _to_hit(self, spec: SourceSpec, row: Dict[str, Any], position: int) -> StoreHit:
        data = dict(row)
        distance = data.pop("cosine_distance", None)
        similarities = tuple(
            None if data.get(f"sim_{index}") is None else float(data[f"sim_{index}"])
            for index in range(len(spec.lexical_fields))
        )
        for index in range(len(spec.lexical_fields)):
            data.pop(f"sim_{index}", None)
        inherited_dialect = data.pop("inherited_dialect", None)
        inherited_domain = data.pop("inherited_domain", None)
        data["id"] = str(data["id"])
        for name in _LIST_FIELDS:
            if name in data and data[name] is None:
                data[name] = []

        entry = spec.entry_type.model_validate(data)
        return StoreHit(
            entry=entry,
            source=spec.source,
            cosine_distance=None if distance is None else float(distance),
            field_similarities=similarities,
            position=position,
            inherited_dialect=Dialect(inherited_dialect) if inherited_dialect else None,
            inherited_domain=inherited_domain,
        )


__all__ = ["PostgresKnowledgeStore", "build_source_query"]
