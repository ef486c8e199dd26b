"""Application settings management using Pydantic Settings."""

import os
from dataclasses import dataclass
from typing import Any, Literal, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from context_fusion.models.context import PrivacyLevel

LOW_END_MEMORY_MB = 2048
HIGH_END_MEMORY_MB = 8192


class Settings(BaseSettings):
    """Application configuration settings.

    All settings can be configured via environment variables with the
    prefix `CONTEXT_FUSION_`. For example, `CONTEXT_FUSION_CACHE_MAX_ENTRIES`.
    """

    # Embedding
    embedding_provider: Literal["none", "local", "openai"] = Field(
        default="none", description="Embedding provider used for grouping and queries"
    )
    embedding_model: str = Field(
        default="all-MiniLM-L6-v2", description="Embedding model name"
    )
    embedding_dimensions: int = Field(
        default=384,
        ge=1,
        le=4096,
        description="Embedding vector dimensions",
    )

    # OpenAI (optional)
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    openai_embedding_model: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )

    # Cache
    cache_max_entries: int = Field(
        default=10_000,
        ge=1,
        description="Maximum number of cache entries",
    )
    cache_max_memory_mb: float = Field(
        default=100.0,
        gt=0,
        description="Soft memory budget for cache entries in megabytes",
    )
    cache_default_ttl_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="TTL applied when none is given (seconds)",
    )
    cache_cleanup_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Interval of the background expiry sweep (seconds)",
    )
    score_cache_ttl_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="TTL for memoized relevance scores (seconds)",
    )

    # Scoring
    decay_half_life_days: float = Field(
        default=30.0,
        gt=0,
        description="Half-life of the temporal decay function in days",
    )
    decay_rate: float = Field(
        default=0.5,
        gt=0.0,
        lt=1.0,
        description="Decay base applied once per half-life",
    )
    recent_queries_limit: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Capacity of a user profile's recent-queries list",
    )

    # Fusion
    similarity_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Cosine similarity threshold for grouping by embedding",
    )
    text_similarity_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Word-set Jaccard threshold for grouping without embeddings",
    )
    score_conflict_threshold: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Relevance spread inside a group that counts as a conflict",
    )
    max_group_size: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum number of chunks per semantic group",
    )

    # Orchestration
    privacy_level: PrivacyLevel = Field(
        default=PrivacyLevel.PUBLIC,
        description="Minimum privacy level a request must declare",
    )
    max_context_tokens: int = Field(
        default=10_000,
        ge=1,
        description="Default token budget of a context response",
    )
    default_relevance_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Default minimum relevance of returned chunks",
    )
    source_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-source fetch timeout (seconds)",
    )
    stage_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Deadline applied to the scoring and fusion stages (seconds)",
    )
    max_concurrent_sources: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum number of sources fetched concurrently",
    )
    max_workers: int = Field(
        default=8,
        ge=1,
        le=1024,
        description="Maximum concurrent scoring/fusion tasks",
    )

    # Token Counter settings
    token_counter_model: str = Field(
        default="gpt-4",
        description="Model name for tiktoken token counting",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_prefix="CONTEXT_FUSION_", env_file=".env", env_file_encoding="utf-8"
    )

    @model_validator(mode="after")
    def validate_provider_config(self) -> Self:
        """Validate provider-specific configuration."""
        if self.embedding_provider == "openai" and not self.openai_api_key:
            raise ValueError(
                "OpenAI API key is required when embedding_provider='openai'. "
                "Set CONTEXT_FUSION_OPENAI_API_KEY environment variable."
            )
        return self

    @property
    def cache_max_memory_bytes(self) -> int:
        """Memory budget of the cache in bytes."""
        return int(self.cache_max_memory_mb * 1024 * 1024)


@dataclass(frozen=True)
class EnvironmentProfile:
    """Host capabilities used to size default limits."""

    cpu_count: int
    memory_mb: int | None

    @property
    def is_low_end(self) -> bool:
        return self.memory_mb is not None and self.memory_mb < LOW_END_MEMORY_MB

    @property
    def is_high_end(self) -> bool:
        return self.memory_mb is not None and self.memory_mb > HIGH_END_MEMORY_MB


def detect_environment() -> EnvironmentProfile:
    """Detect CPU and memory capacity of the current host.

    This is a pure read of host facts; call it once at startup and pass
    the result to `recommended_limits`.

    Returns:
        Detected environment profile (memory is None when unavailable)
    """
    cpu_count = os.cpu_count() or 1
    memory_mb: int | None
    try:
        memory_mb = os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES") // (1024 * 1024)
    except (AttributeError, ValueError, OSError):
        memory_mb = None
    return EnvironmentProfile(cpu_count=cpu_count, memory_mb=memory_mb)


def recommended_limits(profile: EnvironmentProfile) -> dict[str, Any]:
    """Derive cache and worker limits for a host profile.

    Args:
        profile: Environment profile from `detect_environment`

    Returns:
        Keyword overrides suitable for `Settings(**overrides)`
    """
    if profile.is_low_end:
        return {
            "cache_max_entries": 1_000,
            "cache_max_memory_mb": 25.0,
            "max_workers": 2,
            "max_concurrent_sources": 4,
        }
    if profile.is_high_end:
        return {
            "cache_max_entries": 50_000,
            "cache_max_memory_mb": 500.0,
            "max_workers": min(profile.cpu_count * 2, 32),
            "max_concurrent_sources": 20,
        }
    return {
        "cache_max_entries": 10_000,
        "cache_max_memory_mb": 100.0,
        "max_workers": max(2, min(profile.cpu_count, 16)),
        "max_concurrent_sources": 10,
    }
