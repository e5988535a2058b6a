"""Retrieval engine exports."""

from .keywords import extract_keywords
from .memory_store import InMemoryKnowledgeStore
from .scorers import (
    GrammarScorer,
    LearningInsightScorer,
    LexiconScorer,
    SourceScorer,
    StyleScorer,
    TranslationExampleScorer,
)
from .store import SOURCE_SPECS, KnowledgeStore, SourceQuery, SourceSpec
from .types import (
    Boosts,
    HybridRecord,
    RetrievalBundle,
    ScoreBreakdown,
    ScoredCandidate,
    SearchFilters,
    SearchOptions,
    StoreHit,
)
from .unified import UnifiedRetriever

__all__ = [
    "Boosts",
    "GrammarScorer",
    "HybridRecord",
    "InMemoryKnowledgeStore",
    "KnowledgeStore",
    "LearningInsightScorer",
    "LexiconScorer",
    "RetrievalBundle",
    "SOURCE_SPECS",
    "ScoreBreakdown",
    "ScoredCandidate",
    "SearchFilters",
    "SearchOptions",
    "SourceQuery",
    "SourceScorer",
    "SourceSpec",
    "StoreHit",
    "StyleScorer",
    "TranslationExampleScorer",
    "UnifiedRetriever",
    "extract_keywords",
]
