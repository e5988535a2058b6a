"""Pydantic models for the rows stored in each knowledge source."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class Dialect(str, Enum):
    """Romani dialects known to the knowledge base."""

    LOVARI = "Lovari"
    KELDERASH = "Kelderash"
    ARLI = "Arli"


class QualityGrade(str, Enum):
    """Ordinal reviewer grade, ``A`` being the best."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"


class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class KnowledgeSource(str, Enum):
    """Provenance tag naming the table a row was read from."""

    TRANSLATION_MEMORY = "translation_memory"
    LEXICON = "lexicon"
    GRAMMAR = "grammar"
    STYLE = "style"
    LEARNING_INSIGHT = "learning_insight"


class KnowledgeEntry(BaseModel):
    """Fields shared by every knowledge-source row.

    Rows are validated when they leave the store. Pass
    ``context={"embedding_dimension": n}`` to ``model_validate`` to reject
    embeddings of the wrong size.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: str
    dialect: Dialect | None = None
    created_at: datetime | None = None
    embedding: List[float] | None = Field(default=None, repr=False)

    @field_validator("embedding", mode="after")
    @classmethod
    def _check_dimension(cls, value: List[float] | None, info: ValidationInfo) -> List[float] | None:
        if value is None or not info.context:
            return value
        expected = info.context.get("embedding_dimension")
        if expected is not None and len(value) != expected:
            raise ValueError(f"embedding has {len(value)} dimensions, expected {expected}")
        return value

    @property
    def primary_text(self) -> str:
        raise NotImplementedError


class TranslationExample(KnowledgeEntry):
    """Approved Swedish/Romani sentence pair from the translation memory."""

    source_text: str
    target_text: str
    corrected_text: str | None = None
    context: str | None = None
    domain: str | None = None
    quality_score: QualityGrade | None = None
    review_status: ReviewStatus | None = None

    @property
    def primary_text(self) -> str:
        return self.source_text


class LexiconEntry(KnowledgeEntry):
    """Single vocabulary pair."""

    source_text: str
    target_text: str
    domain: str | None = None
    tags: List[str] = Field(default_factory=list)

    @property
    def primary_text(self) -> str:
        return self.source_text


class GrammarRule(KnowledgeEntry):
    content: str
    quality_score: QualityGrade | None = None
    tags: List[str] = Field(default_factory=list)

    @property
    def primary_text(self) -> str:
        return self.content


class StyleNote(KnowledgeEntry):
    content: str
    tags: List[str] = Field(default_factory=list)

    @property
    def primary_text(self) -> str:
        return self.content


class LearningInsight(KnowledgeEntry):
    """Rule distilled from reviewer corrections.

    ``source_translation_memory_id`` is a lookup-only back-reference; the row
    it points to may have been deleted.
    """

    rule: str
    category: str
    confidence: float = Field(ge=0.0, le=1.0)
    explanation: str | None = None
    domain: str | None = None
    tags: List[str] = Field(default_factory=list)
    source_translation_memory_id: str | None = None

    @property
    def primary_text(self) -> str:
        return self.rule


ENTRY_TYPES = {
    KnowledgeSource.TRANSLATION_MEMORY: TranslationExample,
    KnowledgeSource.LEXICON: LexiconEntry,
    KnowledgeSource.GRAMMAR: GrammarRule,
    KnowledgeSource.STYLE: StyleNote,
    KnowledgeSource.LEARNING_INSIGHT: LearningInsight,
}
