"""Remote embedding provider using the OpenAI API."""

from typing import Any

from context_fusion.embeddings.base import EmbeddingProvider


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Remote-API variant backed by OpenAI embeddings."""

    def __init__(
        self, api_key: str, model: str = "text-embedding-3-small", dimensions: int = 1536
    ) -> None:
        """Initialize OpenAI embedding provider.

        Args:
            api_key: OpenAI API key
            model: Embedding model name
            dimensions: Requested embedding dimensions
        """
        self.api_key = api_key
        self.model = model
        self._dimensions = dimensions
        self._client: Any | None = None

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ImportError(
                    'openai is not installed. Install with: pip install "context-fusion[openai]"'
                ) from e

            self._client = AsyncOpenAI(api_key=self.api_key)

        return self._client

    async def embed(self, text: str, *, is_query: bool = False) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        return (await self.embed_batch([text], is_query=is_query))[0]

    async def embed_batch(
        self, texts: list[str], *, is_query: bool = False
    ) -> list[list[float]]:
        if not texts:
            raise ValueError("Texts list cannot be empty")

        client = self._get_client()
        response = await client.embeddings.create(
            input=texts, model=self.model, dimensions=self._dimensions
        )
        # Results carry their input index; order by it
        return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]

    def dimensions(self) -> int:
        return self._dimensions
