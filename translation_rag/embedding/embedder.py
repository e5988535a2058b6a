"""Query embedding with a deterministic degraded mode."""

from __future__ import annotations

import logging
import math
import re
import threading
from collections import OrderedDict
from typing import List, Optional, Protocol

from langchain_openai import OpenAIEmbeddings

from translation_rag.config import Settings, get_settings
from translation_rag.exceptions import DimensionMismatch, EmbeddingUnavailable, InputTooLong
from translation_rag.models import Dialect

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


class EmbeddingBackend(Protocol):
    """Anything exposing the LangChain ``embed_query`` call."""

    def embed_query(self, text: str) -> List[float]:
        """Return the embedding for a single text."""


def normalize_text(text: str, dialect: Dialect | str | None = None) -> str:
    """Collapse whitespace and prepend the dialect tag used at ingestion time."""

    base = _WHITESPACE_RE.sub(" ", text).strip()
    if dialect is None or not base:
        return base
    name = dialect.value if isinstance(dialect, Dialect) else str(dialect)
    return f"[Dialect:{name}] {base}"


def pseudo_embedding(text: str, dimensions: int) -> List[float]:
    """Return a reproducible stand-in vector derived from character codes.

    Component ``i`` is ``sin(ord(text[i % len(text)]) * (i + 1))``, so values stay
    within [-1, 1] and identical text always maps to the identical vector.
    """

    if not text:
        return [0.0] * dimensions
    length = len(text)
    return [math.sin(ord(text[i % length]) * (i + 1)) for i in range(dimensions)]


class EmbeddingRequester:
    """Embedding implementation backed by OpenAI with deterministic fallback.

    Backend failures, timeouts and wrong-sized vectors never reach the caller:
    they are logged and replaced by :func:`pseudo_embedding` so ranking stays
    available (with degraded quality). Only over-long input is an error.

    Successful backend vectors are memoised in a least-recently-used cache of
    at most ``cache_size`` texts, shared by the retrieval worker threads.
    """

    def __init__(
        self,
        backend: Optional[EmbeddingBackend] = None,
        *,
        dimensions: int = 1536,
        max_length: int = 1200,
        cache_size: int = 1024,
    ) -> None:
        self.backend = backend
        self.dimensions = dimensions
        self.max_length = max_length
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self._cache_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "EmbeddingRequester":
        """Build a requester, wiring the OpenAI client only when a key is configured."""

        settings = settings or get_settings()
        backend: Optional[EmbeddingBackend] = None
        if settings.is_openai_configured:
            backend = OpenAIEmbeddings(
                model=settings.embedding_model,
                api_key=settings.openai_api_key,
                dimensions=settings.embedding_dimension,
                timeout=settings.embedding_timeout_seconds,
                max_retries=settings.embedding_max_retries,
            )
        else:
            logger.warning("OpenAI API key not configured - query embeddings use the pseudo-embedding fallback")
        return cls(
            backend,
            dimensions=settings.embedding_dimension,
            max_length=settings.max_query_length,
            cache_size=settings.embedding_cache_size,
        )

    def embed(self, text: str, dialect: Dialect | str | None = None) -> List[float]:
        """Embed ``text``, optionally framed with a dialect tag.

        Raises:
            ValueError: If the text is empty after normalization.
            InputTooLong: If the normalized text exceeds ``max_length``.
        """

        clean_text = normalize_text(text, dialect)
        if not clean_text:
            raise ValueError("Empty text provided for embedding")
        if len(clean_text) > self.max_length:
            raise InputTooLong(len(clean_text), self.max_length)

        cached = self._cached(clean_text)
        if cached is not None:
            return cached

        try:
            vector = self._request(clean_text)
        except EmbeddingUnavailable as exc:
            logger.warning(f"Using pseudo-embedding fallback: {exc}")
            return pseudo_embedding(clean_text, self.dimensions)

        self._remember(clean_text, vector)
        return vector

    def fallback(self, text: str, dialect: Dialect | str | None = None) -> List[float]:
        """Pseudo-embedding for ``text`` without contacting the backend."""

        return pseudo_embedding(normalize_text(text, dialect), self.dimensions)

    def _cached(self, clean_text: str) -> Optional[List[float]]:
        with self._cache_lock:
            vector = self._cache.get(clean_text)
            if vector is not None:
                self._cache.move_to_end(clean_text)
            return vector

    def _remember(self, clean_text: str, vector: List[float]) -> None:
        if self.cache_size <= 0:
            return
        with self._cache_lock:
            self._cache[clean_text] = vector
            self._cache.move_to_end(clean_text)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

    def _request(self, clean_text: str) -> List[float]:
        if self.backend is None:
            raise EmbeddingUnavailable("no embedding backend configured")
        try:
            vector = self.backend.embed_query(clean_text)
        except Exception as exc:
            raise EmbeddingUnavailable(f"embedding backend call failed: {exc}") from exc
        if vector is None or len(vector) != self.dimensions:
            raise DimensionMismatch(self.dimensions, 0 if vector is None else len(vector))
        return [float(value) for value in vector]


__all__ = ["EmbeddingBackend", "EmbeddingRequester", "normalize_text", "pseudo_embedding"]
