"""Convenience exports for model packages."""

from .entries import (
    ENTRY_TYPES,
    Dialect,
    GrammarRule,
    KnowledgeEntry,
    KnowledgeSource,
    LearningInsight,
    LexiconEntry,
    QualityGrade,
    ReviewStatus,
    StyleNote,
    TranslationExample,
)

__all__ = [
    "ENTRY_TYPES",
    "Dialect",
    "GrammarRule",
    "KnowledgeEntry",
    "KnowledgeSource",
    "LearningInsight",
    "LexiconEntry",
    "QualityGrade",
    "ReviewStatus",
    "StyleNote",
    "TranslationExample",
]
