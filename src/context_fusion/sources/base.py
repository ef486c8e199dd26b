"""Abstract base class for source connectors."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from context_fusion.models.context import ContextChunk, ContextSource
from context_fusion.utils.similarity import tokenize


class SourceConnector(ABC):
    """Adapter producing raw chunks from one data source.

    Fetch failures are allowed; the orchestrator treats them as
    zero chunks from this source.
    """

    def __init__(self, source: ContextSource) -> None:
        self.source = source

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def is_active(self) -> bool:
        return self.source.is_active

    @abstractmethod
    async def fetch(
        self, query: str, filters: dict[str, Any] | None = None
    ) -> list[ContextChunk]:
        """Fetch candidate chunks for a query.

        Args:
            query: Query text
            filters: Optional connector-specific filters

        Returns:
            Candidate chunks attributed to this source
        """

    async def close(self) -> None:
        """Release connector resources."""


class StaticSource(SourceConnector):
    """In-memory connector over a fixed list of chunks.

    A chunk is returned when it shares at least one word with the query,
    or always when `match_all` is set. Supported filters: `tags` (any
    match) and `limit`.
    """

    def __init__(
        self,
        source: ContextSource,
        chunks: Iterable[ContextChunk] = (),
        match_all: bool = False,
    ) -> None:
        super().__init__(source)
        self.match_all = match_all
        self._chunks: list[ContextChunk] = []
        self.add_chunks(chunks)

    def add_chunks(self, chunks: Iterable[ContextChunk]) -> None:
        """Add chunks, re-attributing them to this connector's source."""
        for chunk in chunks:
            if chunk.source.id != self.source.id:
                chunk = chunk.model_copy(update={"source": self.source})
            self._chunks.append(chunk)

    async def fetch(
        self, query: str, filters: dict[str, Any] | None = None
    ) -> list[ContextChunk]:
        filters = filters or {}
        query_words = set(tokenize(query))
        tags = set(filters.get("tags") or ())

        results = []
        for chunk in self._chunks:
            if not self.match_all and not query_words & set(tokenize(chunk.content)):
                continue
            if tags and not tags & chunk.tags:
                continue
            results.append(chunk)

        limit = filters.get("limit")
        return results[:limit] if limit else results
