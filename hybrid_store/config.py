"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables.
No secrets are hardcoded.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StoreMode(str, Enum):
    """Which shadow indexes a store maintains."""

    VECTOR = "vector"
    LEXICAL = "lexical"
    HYBRID = "hybrid"

    @property
    def has_vector_index(self) -> bool:
        return self in (StoreMode.VECTOR, StoreMode.HYBRID)

    @property
    def has_lexical_index(self) -> bool:
        return self in (StoreMode.LEXICAL, StoreMode.HYBRID)


class SyncStrategy(str, Enum):
    """How shadow indexes are kept in lockstep with the primary table."""

    TRIGGER = "trigger"
    EXPLICIT = "explicit"


class DistanceMetric(str, Enum):
    """Distance metrics supported by the vec0 virtual table."""

    L2 = "l2"
    COSINE = "cosine"
    L1 = "l1"


class LLMSettings(BaseSettings):
    """Keyword-extraction model configuration.

    Any OpenAI-compatible chat completions endpoint works (Ollama, vLLM, OpenAI).
    """

    model_config = SettingsConfigDict(env_prefix="LLM_")

    base_url: str = Field(
        default="http://localhost:11434/v1",
        description="LLM API base URL (Ollama default)",
    )
    model: str = Field(
        default="llama3:8b",
        description="Model name to use for keyword extraction",
    )
    api_key: SecretStr = Field(
        default=SecretStr("not-required"),
        description="API key (not required for Ollama)",
    )
    timeout: float = Field(
        default=30.0,
        description="Request timeout in seconds",
    )
    max_tokens: int = Field(
        default=64,
        description="Maximum tokens in response",
    )
    temperature: float = Field(
        default=0.0,
        description="Sampling temperature (lower = more deterministic)",
    )
    enabled: bool = Field(
        default=False,
        description="Rewrite hybrid queries into keywords before lexical search",
    )


class EmbeddingSettings(BaseSettings):
    """Embedding service configuration."""

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_")

    base_url: str = Field(
        default="http://localhost:8080",
        description="Embedding service base URL",
    )
    model: str = Field(
        default="BAAI/bge-large-en-v1.5",
        description="Embedding model name",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Bearer token for hosted embedding APIs",
    )
    timeout: float = Field(
        default=30.0,
        description="Per-request timeout in seconds",
    )
    retry_max_time: float = Field(
        default=60.0,
        description="Total time budget for retrying transient failures",
    )
    max_tries: int = Field(
        default=5,
        ge=1,
        description="Maximum attempts per request, including the first",
    )


class StoreSettings(BaseSettings):
    """Hybrid document store configuration."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    database_path: str = Field(
        default="hybrid_store.db",
        description="SQLite database file, or :memory:",
    )
    table: str = Field(
        default="documents",
        description="Primary table name; shadow indexes derive from it",
    )
    vector_dimensions: int = Field(
        default=1024,
        description="Embedding dimensionality enforced on every insert",
    )
    mode: StoreMode = Field(
        default=StoreMode.HYBRID,
        description="Which shadow indexes to maintain",
    )
    sync_strategy: SyncStrategy = Field(
        default=SyncStrategy.TRIGGER,
        description="Trigger-based or explicit shadow index synchronization",
    )
    distance_metric: DistanceMetric = Field(
        default=DistanceMetric.L2,
        description="Distance metric for the vector index",
    )
    batch_size: int = Field(
        default=32,
        description="Texts per embedding request when ingesting",
    )
    rrf_k: int = Field(
        default=60,
        description="Reciprocal rank fusion smoothing constant",
    )
    overfetch_factor: int = Field(
        default=2,
        description="Candidate multiplier applied to the requested limit",
    )
    busy_timeout_ms: int = Field(
        default=10000,
        description="SQLite busy timeout in milliseconds",
    )

    @field_validator("batch_size", "rrf_k", "overfetch_factor")
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value


class Settings(BaseSettings):
    """Main application settings.

    Aggregates all configuration sections.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application settings
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    # API settings
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host",
    )
    api_port: int = Field(
        default=8000,
        description="API server port",
    )

    # Nested settings
    store: StoreSettings = Field(default_factory=StoreSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()
