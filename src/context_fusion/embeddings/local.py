"""In-process embedding provider using sentence-transformers."""

import asyncio
from typing import Any

from context_fusion.embeddings.base import EmbeddingProvider

# E5 model patterns that require prefixes
E5_MODEL_PATTERNS = ("e5-small", "e5-base", "e5-large", "e5-mistral")


class LocalEmbeddingProvider(EmbeddingProvider):
    """Local-backend variant: runs a sentence-transformers model in a worker thread."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2") -> None:
        """Initialize local embedding provider.

        Args:
            model_name: sentence-transformers model name
        """
        self.model_name = model_name
        self._model: Any | None = None
        self._dimensions: int | None = None
        self._is_e5_model = any(p in model_name.lower() for p in E5_MODEL_PATTERNS)

    def _prepare(self, text: str, is_query: bool) -> str:
        if not self._is_e5_model:
            return text
        return ("query: " if is_query else "passage: ") + text

    def _load_model(self) -> Any:
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ImportError(
                    "sentence-transformers is not installed. "
                    'Install with: pip install "context-fusion[local]"'
                ) from e

            self._model = SentenceTransformer(self.model_name)
            self._dimensions = self._model.get_sentence_embedding_dimension()

        return self._model

    async def embed(self, text: str, *, is_query: bool = False) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        model = self._load_model()
        embedding = await asyncio.to_thread(
            model.encode, self._prepare(text, is_query), convert_to_numpy=True
        )
        return embedding.tolist()

    async def embed_batch(
        self, texts: list[str], *, is_query: bool = False
    ) -> list[list[float]]:
        if not texts:
            raise ValueError("Texts list cannot be empty")

        model = self._load_model()
        embeddings = await asyncio.to_thread(
            model.encode,
            [self._prepare(text, is_query) for text in texts],
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        return [emb.tolist() for emb in embeddings]

    def dimensions(self) -> int:
        """Get embedding vector dimensions.

        Raises:
            RuntimeError: If model fails to load properly
        """
        if self._dimensions is None:
            self._load_model()

        if self._dimensions is None:
            raise RuntimeError(
                f"Failed to determine embedding dimensions for model: {self.model_name}"
            )

        return self._dimensions
