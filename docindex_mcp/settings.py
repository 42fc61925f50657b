"""Unified ingestion pipeline configuration."""

from __future__ import annotations

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from docindex_mcp.constants import (
    DEFAULT_COLLECTION_NAME,
    DEFAULT_DEDUP_KEY_LENGTH,
    DEFAULT_EMBEDDING_BATCH_SIZE,
    DEFAULT_EMBEDDING_DIMENSION,
    DEFAULT_FILTER_MULTIPLIER,
    DEFAULT_HOST,
    DEFAULT_INTER_REQUEST_DELAY,
    DEFAULT_JOB_TIMEOUT_SECONDS,
    DEFAULT_MAX_CRAWL_DEPTH,
    DEFAULT_MAX_PAGES,
    DEFAULT_MAX_RESULTS,
    DEFAULT_MAX_SECTIONS,
    DEFAULT_MIN_SCORE,
    DEFAULT_MULTI_DOC_BUDGET,
    DEFAULT_PAGE_CONCURRENCY,
    DEFAULT_PORT,
    DEFAULT_RETRY_COUNT,
    DEFAULT_SITEMAP_MIN_URLS,
    DEFAULT_STEP_RETRIES,
    DEFAULT_USER_AGENT,
    DEFAULT_WORD_TO_TOKEN_RATIO,
    FIRECRAWL_DEFAULT_TIMEOUT,
    HIGH_TARGET_CONFIDENCE,
    IMPORTANT_SECTION_MIN_CHARS,
    LOW_TARGET_CONFIDENCE,
    MAX_CODE_LENGTH,
    MAX_PAGE_CONCURRENCY,
    MAX_PAGES_LIMIT,
    MIN_CODE_LENGTH,
    QDRANT_DEFAULT_TIMEOUT,
    RETRY_INITIAL_DELAY,
    SITEMAP_DEFAULT_TIMEOUT,
    TARGET_CONFIDENCE_THRESHOLD,
    TARGETED_PER_DOC_QUOTA,
    TEI_DEFAULT_TIMEOUT,
    DistanceMetric,
    LogLevel,
)


class DocIndexSettings(BaseSettings):
    """Settings for discovery, extraction, embedding, retrieval and job control."""

    # Server/Transport Settings
    transport: str = "stdio"
    server_host: str = DEFAULT_HOST
    server_port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    server_name: str = "docindex-mcp"

    # Qdrant Settings
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: SecretStr | None = None
    qdrant_collection: str = DEFAULT_COLLECTION_NAME
    qdrant_timeout: float = Field(default=QDRANT_DEFAULT_TIMEOUT, gt=0)
    qdrant_distance: DistanceMetric = DistanceMetric.COSINE
    qdrant_vector_size: int = Field(
        default=DEFAULT_EMBEDDING_DIMENSION,
        description="Must match embedding_dimension",
    )
    qdrant_upsert_wait: bool = True

    # TEI Settings
    tei_url: str = Field(default="http://localhost:8080", alias="TEI_URL")
    tei_model: str | None = Field(default="BAAI/bge-base-en-v1.5", alias="TEI_MODEL")
    tei_timeout: float = Field(default=TEI_DEFAULT_TIMEOUT, gt=0, alias="TEI_TIMEOUT")
    tei_max_retries: int = Field(
        default=DEFAULT_RETRY_COUNT, ge=0, alias="TEI_MAX_RETRIES"
    )

    # Embedding Settings
    embedding_dimension: int = Field(default=DEFAULT_EMBEDDING_DIMENSION, ge=32)
    embedding_batch_size: int = Field(
        default=DEFAULT_EMBEDDING_BATCH_SIZE, ge=1, le=512, alias="EMBEDDING_BATCH_SIZE"
    )
    word_to_token_ratio: float = Field(
        default=DEFAULT_WORD_TO_TOKEN_RATIO, ge=0.1, le=5.0, alias="WORD_TO_TOKEN_RATIO"
    )

    # Firecrawl Settings
    firecrawl_url: str = "https://api.firecrawl.dev/v0/scrape"
    firecrawl_key_1: SecretStr | None = Field(default=None, alias="FIRECRAWL_KEY_1")
    firecrawl_key_2: SecretStr | None = Field(default=None, alias="FIRECRAWL_KEY_2")
    firecrawl_key_3: SecretStr | None = Field(default=None, alias="FIRECRAWL_KEY_3")
    firecrawl_api_keys: list[SecretStr] = Field(default_factory=list)
    firecrawl_timeout: float = Field(default=FIRECRAWL_DEFAULT_TIMEOUT, gt=0)

    # Discovery Settings
    max_pages: int = Field(default=DEFAULT_MAX_PAGES, ge=1, le=MAX_PAGES_LIMIT)
    max_crawl_depth: int = Field(default=DEFAULT_MAX_CRAWL_DEPTH, ge=0, le=10)
    sitemap_min_urls: int = Field(default=DEFAULT_SITEMAP_MIN_URLS, ge=0)
    sitemap_timeout: float = Field(default=SITEMAP_DEFAULT_TIMEOUT, gt=0)
    user_agent: str = DEFAULT_USER_AGENT
    check_robots_sitemaps: bool = True

    # Extraction Settings
    min_code_length: int = Field(default=MIN_CODE_LENGTH, ge=1)
    max_code_length: int = Field(default=MAX_CODE_LENGTH, ge=100)
    important_section_min_chars: int = Field(default=IMPORTANT_SECTION_MIN_CHARS, ge=1)

    # Deduplication Settings
    max_sections: int = Field(default=DEFAULT_MAX_SECTIONS, ge=1)
    dedup_key_length: int = Field(default=DEFAULT_DEDUP_KEY_LENGTH, ge=20, le=1000)

    # Retrieval Settings
    search_filter_multiplier: int = Field(default=DEFAULT_FILTER_MULTIPLIER, ge=1)
    min_score: float = Field(default=DEFAULT_MIN_SCORE, ge=-1.0, le=1.0)
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1, le=100)
    multi_doc_budget: int = Field(default=DEFAULT_MULTI_DOC_BUDGET, ge=1)
    targeted_per_doc_quota: int = Field(default=TARGETED_PER_DOC_QUOTA, ge=1)
    high_target_confidence: float = Field(default=HIGH_TARGET_CONFIDENCE, ge=0.0, le=1.0)
    low_target_confidence: float = Field(default=LOW_TARGET_CONFIDENCE, ge=0.0, le=1.0)
    target_confidence_threshold: float = Field(
        default=TARGET_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0
    )

    # Orchestration Settings
    page_concurrency: int = Field(
        default=DEFAULT_PAGE_CONCURRENCY, ge=1, le=MAX_PAGE_CONCURRENCY
    )
    inter_request_delay: float = Field(default=DEFAULT_INTER_REQUEST_DELAY, ge=0.0)
    step_retries: int = Field(default=DEFAULT_STEP_RETRIES, ge=0, le=10)
    step_retry_delay: float = Field(default=RETRY_INITIAL_DELAY, ge=0.0)
    job_timeout_seconds: float = Field(default=DEFAULT_JOB_TIMEOUT_SECONDS, gt=0)

    # Database Settings
    database_url: str = "sqlite+aiosqlite:///./docindex.db"
    database_echo: bool = False

    # Logging & Debug
    log_level: str = "INFO"
    debug: bool = False
    log_to_file: bool = False
    log_file: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    def __repr__(self) -> str:
        """Custom repr that masks sensitive fields."""
        secret_fields = {
            "qdrant_api_key",
            "firecrawl_key_1",
            "firecrawl_key_2",
            "firecrawl_key_3",
            "firecrawl_api_keys",
        }
        field_strs = []
        for field_name, field_value in self.__dict__.items():
            if field_name in secret_fields and field_value:
                field_strs.append(f"{field_name}='***'")
            else:
                field_strs.append(f"{field_name}={field_value!r}")
        return f"{self.__class__.__name__}({', '.join(field_strs)})"

    @property
    def firecrawl_keys(self) -> list[str]:
        """All configured Firecrawl API keys, numbered keys first, deduplicated."""
        keys: list[str] = []
        numbered = (self.firecrawl_key_1, self.firecrawl_key_2, self.firecrawl_key_3)
        for secret in (*numbered, *self.firecrawl_api_keys):
            if secret is None:
                continue
            value = secret.get_secret_value().strip()
            if value and value not in keys:
                keys.append(value)
        return keys

    @field_validator("firecrawl_api_keys", mode="before")
    @classmethod
    def split_key_list(cls, v: object) -> object:
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v

    @field_validator("qdrant_url", "tei_url", "firecrawl_url")
    @classmethod
    def validate_urls(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            return f"http://{v}"
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = [level.value for level in LogLevel]
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_lower

    @model_validator(mode="after")
    def _validate_vector_dims(self) -> DocIndexSettings:
        """Ensure qdrant_vector_size matches embedding_dimension."""
        if self.qdrant_vector_size != self.embedding_dimension:
            raise ValueError(
                "qdrant_vector_size must equal embedding_dimension "
                f"(got {self.qdrant_vector_size} vs {self.embedding_dimension})."
            )
        return self

    @model_validator(mode="after")
    def _validate_code_bounds(self) -> DocIndexSettings:
        if self.min_code_length >= self.max_code_length:
            raise ValueError("min_code_length must be smaller than max_code_length")
        return self


# Singleton with lazy loading to prevent circular imports
_settings: DocIndexSettings | None = None


def get_settings() -> DocIndexSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = DocIndexSettings()
    return _settings


def __getattr__(name: str):
    """Support dynamic attribute access for smooth imports."""
    if name == "settings":
        return get_settings()
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
