"""Embedding service for vector generation."""

import hashlib
import logging

from context_fusion.embeddings.base import EmbeddingProvider
from context_fusion.services.context_cache import MISSING, ContextCache

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Service for generating embeddings, memoized in the shared cache."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: ContextCache | None = None,
        ttl_seconds: float | None = None,
    ) -> None:
        """Initialize embedding service.

        Args:
            provider: Embedding provider instance
            cache: Optional cache used to memoize embeddings
            ttl_seconds: TTL of memoized embeddings (None = cache default)
        """
        self.provider = provider
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def generate(self, text: str, *, is_query: bool = False) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Input text
            is_query: True for search queries, False for documents/passages.

        Returns:
            Embedding vector
        """
        key = self._cache_key(text, is_query)
        if self.cache is not None:
            cached = self.cache.get(key, MISSING)
            if cached is not MISSING:
                return cached

        embedding = await self.provider.embed(text, is_query=is_query)
        if self.cache is not None:
            self.cache.set(key, embedding, ttl=self.ttl_seconds, metadata={"kind": "embedding"})
        return embedding

    async def generate_batch(
        self, texts: list[str], *, is_query: bool = False
    ) -> list[list[float]]:
        """Generate embeddings for multiple texts.

        Only texts missing from the cache are sent to the provider.

        Args:
            texts: List of input texts
            is_query: True for search queries, False for documents/passages.

        Returns:
            List of embedding vectors in input order

        Raises:
            ValueError: If texts list is empty
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        results: list[list[float] | None] = [None] * len(texts)
        pending: list[int] = []
        for i, text in enumerate(texts):
            cached = (
                self.cache.get(self._cache_key(text, is_query), MISSING)
                if self.cache is not None
                else MISSING
            )
            if cached is MISSING:
                pending.append(i)
            else:
                results[i] = cached

        if pending:
            logger.debug("Embedding %d of %d texts", len(pending), len(texts))
            embeddings = await self.provider.embed_batch(
                [texts[i] for i in pending], is_query=is_query
            )
            for i, embedding in zip(pending, embeddings, strict=True):
                results[i] = embedding
                if self.cache is not None:
                    self.cache.set(
                        self._cache_key(texts[i], is_query),
                        embedding,
                        ttl=self.ttl_seconds,
                        metadata={"kind": "embedding"},
                    )

        return [embedding for embedding in results if embedding is not None]

    def dimensions(self) -> int:
        """Get embedding vector dimensions.

        Returns:
            Number of dimensions
        """
        return self.provider.dimensions()

    @staticmethod
    def _cache_key(text: str, is_query: bool) -> str:
        kind = "query" if is_query else "passage"
        return f"embedding:{kind}:{hashlib.sha256(text.encode()).hexdigest()}"
