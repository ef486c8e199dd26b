"""Tests for token counting."""

from types import SimpleNamespace

import pytest

from context_fusion.utils import token_counter
from context_fusion.utils.token_counter import _get_encoding, chunk_tokens, count_tokens


class FakeEncoding:
    """Whitespace tokenizer standing in for a downloaded tiktoken encoding."""

    def __init__(self, name: str) -> None:
        self.name = name

    def encode(self, text: str) -> list[int]:
        return list(range(len(text.split())))


@pytest.fixture
def fake_tiktoken(monkeypatch):
    requested: list[str] = []

    def encoding_for_model(model: str) -> FakeEncoding:
        requested.append(model)
        if model == "unknown-model":
            raise KeyError(model)
        return FakeEncoding(model)

    monkeypatch.setattr(token_counter.tiktoken, "encoding_for_model", encoding_for_model)
    monkeypatch.setattr(token_counter.tiktoken, "get_encoding", FakeEncoding)
    _get_encoding.cache_clear()
    yield requested
    _get_encoding.cache_clear()


class TestCountTokens:
    def test_empty_text(self, fake_tiktoken):
        assert count_tokens("") == 0
        assert fake_tiktoken == []

    def test_counts_with_model_encoding(self, fake_tiktoken):
        assert count_tokens("one two three", model="gpt-4") == 3
        assert fake_tiktoken == ["gpt-4"]

    def test_encoding_is_cached_per_model(self, fake_tiktoken):
        count_tokens("a b", model="gpt-4")
        count_tokens("c d", model="gpt-4")

        assert fake_tiktoken == ["gpt-4"]

    def test_unknown_model_falls_back_to_cl100k(self, fake_tiktoken):
        assert count_tokens("a b c d", model="unknown-model") == 4
        assert _get_encoding("unknown-model").name == "cl100k_base"


class TestChunkTokens:
    def test_prefers_precomputed_count(self, fake_tiktoken):
        chunk = SimpleNamespace(token_count=99, content="one two")

        assert chunk_tokens(chunk) == 99
        assert fake_tiktoken == []

    def test_counts_content_when_missing(self, fake_tiktoken):
        chunk = SimpleNamespace(token_count=None, content="one two")

        assert chunk_tokens(chunk) == 2
