"""Abstract base class for embedding providers."""

from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """Inference backend turning text into fixed-length vectors.

    Variants differ in where inference runs (in-process model or remote
    API); they are chosen by configuration, never by probing the host.
    """

    @abstractmethod
    async def embed(self, text: str, *, is_query: bool = False) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Input text
            is_query: True for search queries, False for chunk content.

        Returns:
            Embedding vector
        """

    @abstractmethod
    async def embed_batch(
        self, texts: list[str], *, is_query: bool = False
    ) -> list[list[float]]:
        """Generate embeddings for multiple texts.

        Args:
            texts: List of input texts
            is_query: True for search queries, False for chunk content.

        Returns:
            List of embedding vectors
        """

    @abstractmethod
    def dimensions(self) -> int:
        """Get embedding vector dimensions."""
