"""Privacy filters applied before scoring."""

from abc import ABC, abstractmethod

from context_fusion.models.context import ContextChunk, PrivacyLevel


class PrivacyFilter(ABC):
    """Decides whether a chunk may appear in a response."""

    @abstractmethod
    def is_allowed(self, chunk: ContextChunk, requested_level: PrivacyLevel) -> bool:
        """Check a chunk against the privacy level of the request."""


class PrivacyLevelFilter(PrivacyFilter):
    """Allows chunks whose source is no more restricted than the request."""

    def is_allowed(self, chunk: ContextChunk, requested_level: PrivacyLevel) -> bool:
        return chunk.source.privacy_level.rank <= requested_level.rank
