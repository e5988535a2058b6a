"""Application configuration powered by environment variables."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Load .env file automatically when this module is imported.
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=_env_path, override=False)

DEFAULT_QUALITY_BOOST_MAP: Dict[str, float] = {"A": 0.15, "B": 0.05, "C": 0.0, "D": -0.10}


class Settings(BaseSettings):
    """Strongly-typed configuration for the retrieval engine.

    All settings can be configured via environment variables. The numeric
    retrieval constants are part of the ranking contract: changing them changes
    every score the engine produces, so they are loaded once per process and
    treated as immutable afterwards.
    """

    # ========================================================================
    # Database Configuration
    # ========================================================================
    database_url: str = Field(
        default="",
        description="Full PostgreSQL connection string. If not provided, "
        "constructed from individual postgres_* fields.",
    )
    postgres_host: str = Field(
        default="localhost", description="PostgreSQL server hostname"
    )
    postgres_port: int = Field(
        default=5432, ge=1, le=65535, description="PostgreSQL server port"
    )
    postgres_user: str = Field(
        default="translator", min_length=1, description="PostgreSQL username"
    )
    postgres_password: str = Field(
        default="translator", min_length=1, description="PostgreSQL password"
    )
    postgres_db: str = Field(
        default="romani_translation", min_length=1, description="PostgreSQL database name"
    )
    statement_timeout_ms: Optional[int] = Field(
        default=None,
        ge=0,
        description="Per-statement timeout for pooled connections. Defaults to, "
        "and is capped at, source_timeout_seconds.",
    )
    pool_min_size: int = Field(default=1, ge=0, description="Connections kept open by the pool")
    pool_max_size: Optional[int] = Field(
        default=None, ge=1, description="Pool size limit. Defaults to retrieval_workers."
    )
    connect_timeout_seconds: int = Field(
        default=10, ge=1, description="Timeout for opening a new database connection"
    )

    # ========================================================================
    # Embedding Configuration
    # ========================================================================
    openai_api_key: Optional[str] = Field(
        default=None, description="OpenAI API key for query embeddings"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model name"
    )
    embedding_dimension: int = Field(
        default=1536, ge=1, description="Dimensionality of every stored and query vector"
    )
    embedding_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Upper bound for one embedding request"
    )
    embedding_max_retries: int = Field(
        default=0, ge=0, le=5, description="Retries performed by the embedding client"
    )
    embedding_cache_size: int = Field(
        default=1024, ge=0, description="Query embeddings memoised per process (0 disables)"
    )
    max_query_length: int = Field(
        default=1200, ge=1, description="Maximum characters accepted for an embedding input"
    )
    embed_query_with_dialect: bool = Field(
        default=False,
        description="Prefix query embeddings with the dialect filter tag",
    )

    # ========================================================================
    # Retrieval Configuration
    # ========================================================================
    default_alpha: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Weight for semantic vs. lexical similarity (0-1)",
    )
    min_lexical_score: float = Field(
        default=0.01, ge=0.0, le=1.0, description="Lexical admission threshold"
    )
    min_semantic_score: float = Field(
        default=0.05, ge=0.0, le=1.0, description="Semantic admission threshold"
    )
    recency_decay_days: int = Field(
        default=365, ge=1, description="Days after which the recency boost reaches zero"
    )
    quality_boost_map: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_QUALITY_BOOST_MAP),
        description="Additive boost per quality grade",
    )
    exact_match_boost: float = Field(default=0.5, description="Boost for verbatim matches")
    corrected_boost: float = Field(
        default=0.15, description="Boost for examples carrying a human correction"
    )
    keyword_boost: float = Field(
        default=0.3, description="Boost per keyword found in a lexicon entry"
    )
    recency_weight: float = Field(
        default=0.1, description="Weight applied to the recency boost in the final score"
    )
    max_results: int = Field(
        default=10, ge=1, le=100, description="Default number of results per list"
    )
    example_results: int = Field(default=7, ge=1, le=100)
    lexicon_results: int = Field(default=10, ge=1, le=100)
    grammar_results: int = Field(default=7, ge=1, le=100)
    style_results: int = Field(default=7, ge=1, le=100)
    insight_results: int = Field(default=7, ge=1, le=100)
    candidate_multiplier: int = Field(
        default=4,
        ge=1,
        le=50,
        description="Store candidates fetched per returned result before re-ranking",
    )
    hybrid_min_score: float = Field(
        default=0.1, description="Minimum final score kept by the flattened hybrid view"
    )
    source_timeout_seconds: float = Field(
        default=15.0, gt=0, description="Upper bound for one knowledge-source query"
    )
    retrieval_workers: int = Field(
        default=6, ge=1, le=32, description="Threads used to fan out source queries"
    )
    lexicon_query_template: str = Field(
        default="Swedish: {query} ||| Romani:",
        description="Framing used to embed queries against lexicon entries",
    )

    # ========================================================================
    # Telemetry Configuration (Weights & Biases)
    # ========================================================================
    wandb_enabled: bool = Field(
        default=False, description="Enable Weights & Biases logging"
    )
    wandb_project: Optional[str] = Field(default=None, description="W&B project name")
    wandb_entity: Optional[str] = Field(
        default=None, description="W&B entity/team name"
    )
    wandb_run_name: Optional[str] = Field(
        default=None, description="W&B run name (auto-generated if not provided)"
    )

    model_config = {
        "env_file": str(_env_path),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "validate_assignment": True,
    }

    @field_validator("openai_api_key", mode="after")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        """Validate OpenAI API key format."""
        if v and not v.startswith(("sk-", "user_provided")):
            logger.warning(
                "OpenAI API key does not start with 'sk-'. "
                "This may indicate an invalid key."
            )
        return v

    @field_validator("quality_boost_map", mode="after")
    @classmethod
    def validate_quality_boost_map(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Require a boost for each of the four quality grades."""
        missing = set(DEFAULT_QUALITY_BOOST_MAP) - set(v)
        if missing:
            raise ValueError(f"quality_boost_map is missing grades: {sorted(missing)}")
        return v

    @field_validator("lexicon_query_template", mode="after")
    @classmethod
    def validate_lexicon_template(cls, v: str) -> str:
        if "{query}" not in v:
            raise ValueError("lexicon_query_template must contain '{query}'")
        return v

    def model_post_init(self, __context) -> None:  # type: ignore[override]
        """Construct DATABASE_URL if not explicitly provided and derive pool limits."""
        source_timeout_ms = int(self.source_timeout_seconds * 1000)
        if self.statement_timeout_ms is None or self.statement_timeout_ms > source_timeout_ms:
            self.statement_timeout_ms = source_timeout_ms
        if self.pool_max_size is None:
            self.pool_max_size = max(self.retrieval_workers, self.pool_min_size, 1)
        if not self.database_url:
            self.database_url = (
                f"postgresql://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
            logger.debug("Constructed database_url from individual postgres settings")

    @property
    def is_openai_configured(self) -> bool:
        """Check if OpenAI API key is configured."""
        return bool(self.openai_api_key and self.openai_api_key != "user_provided")

    @property
    def is_wandb_configured(self) -> bool:
        """Check if Weights & Biases is properly configured."""
        return self.wandb_enabled and bool(self.wandb_project)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton settings instance.

    Configuration is read once per process; callers that need different
    constants (tests, experiments) construct ``Settings`` directly and inject it.
    """
    return Settings()


# Global settings instance for convenient imports
settings = get_settings()
