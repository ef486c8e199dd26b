"""Embedding providers for vector generation."""

from context_fusion.config.settings import Settings
from context_fusion.embeddings.base import EmbeddingProvider
from context_fusion.embeddings.local import LocalEmbeddingProvider
from context_fusion.embeddings.openai import OpenAIEmbeddingProvider


def create_embedding_provider(settings: Settings) -> EmbeddingProvider | None:
    """Build the provider variant named by `settings.embedding_provider`.

    Args:
        settings: Application settings

    Returns:
        Provider instance, or None when embeddings are disabled
    """
    if settings.embedding_provider == "none":
        return None
    if settings.embedding_provider == "local":
        return LocalEmbeddingProvider(settings.embedding_model)
    if not settings.openai_api_key:
        raise ValueError("OpenAI API key required for openai provider")
    return OpenAIEmbeddingProvider(
        api_key=settings.openai_api_key,
        model=settings.openai_embedding_model,
        dimensions=settings.embedding_dimensions,
    )


__all__ = [
    "EmbeddingProvider",
    "LocalEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "create_embedding_provider",
]
