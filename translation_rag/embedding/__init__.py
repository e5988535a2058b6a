"""Query embedding helpers."""

from .embedder import EmbeddingBackend, EmbeddingRequester, normalize_text, pseudo_embedding

__all__ = [
    "EmbeddingBackend",
    "EmbeddingRequester",
    "normalize_text",
    "pseudo_embedding",
]
