"""Context models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PrivacyLevel(str, Enum):
    """Privacy level classification, ordered from least to most restricted."""

    PUBLIC = "public"
    PRIVATE = "private"
    ENTERPRISE = "enterprise"
    RESTRICTED = "restricted"

    @property
    def rank(self) -> int:
        """Position in the public < private < enterprise < restricted order."""
        return _PRIVACY_ORDER.index(self)


_PRIVACY_ORDER = (
    PrivacyLevel.PUBLIC,
    PrivacyLevel.PRIVATE,
    PrivacyLevel.ENTERPRISE,
    PrivacyLevel.RESTRICTED,
)


class SourceType(str, Enum):
    """Source type classification."""

    DOCUMENT = "document"
    API = "api"
    DATABASE = "database"
    REALTIME = "realtime"
    VECTOR = "vector"
    CACHE = "cache"


class ContextSource(BaseModel):
    """Provenance of a chunk."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    source_type: SourceType = SourceType.DOCUMENT
    url: str | None = None
    privacy_level: PrivacyLevel = PrivacyLevel.PRIVATE
    authority_score: float = Field(default=0.5, ge=0.0, le=1.0)
    freshness_score: float = Field(default=1.0, ge=0.0, le=1.0)
    is_active: bool = True
    last_updated: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ContextSource):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


class RelevanceScore(BaseModel):
    """Composite relevance score with per-algorithm breakdown."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0.0, le=1.0)
    breakdown: dict[str, float] = Field(default_factory=dict)
    confidence_lower: float | None = Field(default=None, ge=0.0, le=1.0)
    confidence_upper: float | None = Field(default=None, ge=0.0, le=1.0)
    confidence_level: float = Field(default=0.95, ge=0.0, le=1.0)

    def is_above_threshold(self, threshold: float) -> bool:
        return self.score >= threshold


class ContextChunk(BaseModel):
    """Immutable unit of retrieved content.

    Identity is the id: two chunks with the same id compare equal and
    hash equally regardless of their other fields. Use `with_score` or
    `model_copy(update=...)` to derive changed copies.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str
    source: ContextSource
    embedding: list[float] | None = None
    relevance_score: RelevanceScore | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    token_count: int | None = Field(default=None, ge=0)
    tags: frozenset[str] = Field(default_factory=frozenset)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ContextChunk):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    @property
    def score_value(self) -> float:
        """Relevance score, or 0.0 when the chunk is unscored."""
        return self.relevance_score.score if self.relevance_score else 0.0

    @property
    def summary(self) -> str:
        if len(self.content) <= 100:
            return self.content
        return self.content[:100] + "..."

    def with_score(self, score: RelevanceScore) -> "ContextChunk":
        return self.model_copy(update={"relevance_score": score})


class ContextRequest(BaseModel):
    """Request for a fused context payload."""

    query: str = Field(min_length=1)
    user_id: str | None = None
    session_id: str | None = None
    max_tokens: int = Field(default=10_000, ge=1)
    max_chunks: int | None = Field(default=None, ge=1)
    min_relevance: float = Field(default=0.5, ge=0.0, le=1.0)
    privacy_level: PrivacyLevel = PrivacyLevel.PRIVATE
    include_metadata: bool = True
    sources: list[str] | None = None
    exclude_sources: list[str] | None = None
    require_results: bool = False
    timeout_seconds: float | None = Field(default=None, gt=0)


class ContextResponse(BaseModel):
    """Fused context payload."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    query: str
    chunks: list[ContextChunk] = Field(default_factory=list)
    user_id: str | None = None
    session_id: str | None = None
    max_tokens: int
    privacy_level: PrivacyLevel
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    processing_time_ms: float = 0.0

    @property
    def total_tokens(self) -> int:
        return sum(chunk.token_count or 0 for chunk in self.chunks)
