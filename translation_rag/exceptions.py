"""Error taxonomy for the retrieval engine."""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for all retrieval engine errors."""


class InputTooLong(RetrievalError, ValueError):
    """Raised when normalized input text exceeds the configured length limit."""

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"Text too long: {length} > {limit}")
        self.length = length
        self.limit = limit


class EmbeddingUnavailable(RetrievalError):
    """The embedding backend is unreachable or not configured.

    Recovered locally by the pseudo-embedding fallback; only logged.
    """


class DimensionMismatch(EmbeddingUnavailable):
    """The embedding backend returned a vector of unexpected size."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected {expected}-dimensional embedding, got {actual}")
        self.expected = expected
        self.actual = actual


class SourceQueryFailed(RetrievalError):
    """A single knowledge source lookup failed or timed out."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} query failed: {reason}")
        self.source = source
        self.reason = reason


class RetrievalFailed(RetrievalError):
    """No query representation could be produced, so nothing can be ranked."""


__all__ = [
    "RetrievalError",
    "InputTooLong",
    "EmbeddingUnavailable",
    "DimensionMismatch",
    "SourceQueryFailed",
    "RetrievalFailed",
]
