"""Pytest configuration and fixtures for context-fusion tests."""

from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from context_fusion.config.settings import Settings
from context_fusion.embeddings.base import EmbeddingProvider
from context_fusion.models.context import (
    ContextChunk,
    ContextRequest,
    ContextSource,
    PrivacyLevel,
    RelevanceScore,
)
from context_fusion.services.context_cache import ContextCache
from context_fusion.services.embedding_service import EmbeddingService
from context_fusion.services.fusion_engine import FusionEngine
from context_fusion.services.orchestrator import ContextOrchestrator
from context_fusion.services.scoring_engine import ScoringEngine

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def test_settings() -> Settings:
    """Test configuration settings."""
    return Settings(
        embedding_provider="none",
        cache_max_entries=1000,
        cache_max_memory_mb=10.0,
        cache_default_ttl_seconds=3600,
        privacy_level=PrivacyLevel.PUBLIC,
        max_context_tokens=1000,
        default_relevance_threshold=0.0,
        source_timeout_seconds=1.0,
        stage_timeout_seconds=5.0,
        max_workers=4,
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> ContextCache:
    """Cache without background sweep, driven by the fake clock."""
    return ContextCache(
        max_entries=100,
        max_memory_bytes=10 * 1024 * 1024,
        default_ttl_seconds=60,
        clock=clock,
    )


@pytest.fixture
def make_source() -> Callable[..., ContextSource]:
    """Factory for sources with deterministic ids."""

    def factory(name: str = "docs", **kwargs: Any) -> ContextSource:
        kwargs.setdefault("id", f"src-{name}")
        kwargs.setdefault("privacy_level", PrivacyLevel.PUBLIC)
        kwargs.setdefault("last_updated", NOW)
        return ContextSource(name=name, **kwargs)

    return factory


@pytest.fixture
def make_chunk(make_source: Callable[..., ContextSource]) -> Callable[..., ContextChunk]:
    """Factory for chunks with token counts set (no tokenizer needed)."""

    def factory(
        chunk_id: str,
        content: str = "python asyncio event loop",
        source: ContextSource | None = None,
        relevance: float | None = None,
        token_count: int = 10,
        **kwargs: Any,
    ) -> ContextChunk:
        kwargs.setdefault("created_at", NOW)
        kwargs.setdefault("updated_at", NOW)
        if relevance is not None:
            kwargs["relevance_score"] = RelevanceScore(score=relevance)
        return ContextChunk(
            id=chunk_id,
            content=content,
            source=source or make_source(),
            token_count=token_count,
            **kwargs,
        )

    return factory


@pytest.fixture
def mock_embedding_provider() -> EmbeddingProvider:
    """Mock embedding provider for fast tests."""
    mock = AsyncMock(spec=EmbeddingProvider)

    async def embed_side_effect(text: str, *, is_query: bool = False) -> list[float]:
        return [0.1] * 8

    mock.embed.side_effect = embed_side_effect

    # Make embed_batch return the same number of embeddings as input texts
    async def embed_batch_side_effect(
        texts: list[str], *, is_query: bool = False
    ) -> list[list[float]]:
        return [[0.1] * 8 for _ in texts]

    mock.embed_batch.side_effect = embed_batch_side_effect
    mock.dimensions.return_value = 8
    return mock


@pytest.fixture
def embedding_service(
    mock_embedding_provider: EmbeddingProvider, cache: ContextCache
) -> EmbeddingService:
    """Embedding service with mock provider."""
    return EmbeddingService(provider=mock_embedding_provider, cache=cache)


@pytest.fixture
def scoring_engine(cache: ContextCache, clock: FakeClock) -> ScoringEngine:
    """Scoring engine without embeddings."""
    return ScoringEngine(cache=cache, clock=clock, max_workers=4)


@pytest.fixture
def fusion_engine(scoring_engine: ScoringEngine) -> FusionEngine:
    return FusionEngine(scoring_engine=scoring_engine, max_workers=4)


@pytest.fixture
def request_factory() -> Callable[..., ContextRequest]:
    def factory(**kwargs: Any) -> ContextRequest:
        kwargs.setdefault("query", "python asyncio")
        kwargs.setdefault("max_tokens", 1000)
        kwargs.setdefault("min_relevance", 0.0)
        kwargs.setdefault("privacy_level", PrivacyLevel.PUBLIC)
        return ContextRequest(**kwargs)

    return factory


@pytest_asyncio.fixture
async def orchestrator(
    test_settings: Settings, cache: ContextCache, scoring_engine: ScoringEngine
) -> AsyncIterator[ContextOrchestrator]:
    """Orchestrator sharing the fake-clock cache and scoring engine."""
    orch = ContextOrchestrator(test_settings, cache=cache, scoring_engine=scoring_engine)
    yield orch
    await orch.close()
