"""Tests for the memoizing embedding service."""

import pytest

from context_fusion.services.context_cache import ContextCache
from context_fusion.services.embedding_service import EmbeddingService


@pytest.mark.asyncio
class TestEmbeddingService:
    """Test embedding generation and memoization."""

    async def test_generate_memoizes(self, embedding_service, mock_embedding_provider):
        first = await embedding_service.generate("hello")
        second = await embedding_service.generate("hello")

        assert first == second == [0.1] * 8
        assert mock_embedding_provider.embed.await_count == 1

    async def test_query_and_passage_cached_separately(
        self, embedding_service, mock_embedding_provider
    ):
        await embedding_service.generate("hello", is_query=True)
        await embedding_service.generate("hello", is_query=False)

        assert mock_embedding_provider.embed.await_count == 2

    async def test_batch_only_embeds_missing(
        self, embedding_service, mock_embedding_provider, cache: ContextCache
    ):
        await embedding_service.generate("a")

        result = await embedding_service.generate_batch(["a", "b", "c"])

        assert len(result) == 3
        mock_embedding_provider.embed_batch.assert_awaited_once_with(["b", "c"], is_query=False)
        assert len(cache.get_keys()) == 3

    async def test_batch_fully_cached_skips_provider(
        self, embedding_service, mock_embedding_provider
    ):
        await embedding_service.generate_batch(["a", "b"])
        await embedding_service.generate_batch(["b", "a"])

        assert mock_embedding_provider.embed_batch.await_count == 1

    async def test_empty_batch_rejected(self, embedding_service):
        with pytest.raises(ValueError, match="cannot be empty"):
            await embedding_service.generate_batch([])

    async def test_without_cache(self, mock_embedding_provider):
        service = EmbeddingService(provider=mock_embedding_provider)

        await service.generate("x")
        await service.generate("x")

        assert mock_embedding_provider.embed.await_count == 2
        assert service.dimensions() == 8
