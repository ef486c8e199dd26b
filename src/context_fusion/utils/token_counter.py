"""Token counting utilities backed by tiktoken."""

from functools import lru_cache
from typing import Any

import tiktoken


@lru_cache(maxsize=16)
def _get_encoding(model: str) -> Any:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        # Fallback to cl100k_base for unknown models
        return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str, model: str = "gpt-4") -> int:
    """Count tokens using tiktoken.

    Args:
        text: Text to count tokens for
        model: Model name for tokenizer

    Returns:
        Exact token count
    """
    if not text:
        return 0

    return len(_get_encoding(model).encode(text))


def chunk_tokens(chunk: Any, model: str = "gpt-4") -> int:
    """Token count of a chunk, preferring its precomputed count.

    Args:
        chunk: Object with `token_count` and `content` attributes
        model: Model name for tokenizer

    Returns:
        Token count
    """
    if chunk.token_count is not None:
        return chunk.token_count
    return count_tokens(chunk.content, model)
