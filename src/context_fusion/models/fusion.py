"""Fusion stage models."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from context_fusion.models.context import ContextChunk


class ResolutionRationale(str, Enum):
    """Why a group member was superseded."""

    DUPLICATE = "duplicate"
    SUPERSEDED_BY_AUTHORITY = "superseded_by_authority"
    SUPERSEDED_BY_FRESHNESS = "superseded_by_freshness"
    SUPERSEDED_BY_RELEVANCE = "superseded_by_relevance"


class ConflictType(str, Enum):
    """Kind of disagreement detected inside a group."""

    NONE = "none"
    SCORE_DIVERGENCE = "score_divergence"
    CLAIM_DISAGREEMENT = "claim_disagreement"


class SemanticGroup(BaseModel):
    """Chunks judged mutually similar, in canonical order (leader first)."""

    id: str
    chunk_ids: list[str]
    method: Literal["embedding", "text", "singleton"] = "singleton"

    @property
    def size(self) -> int:
        return len(self.chunk_ids)


class SupersededChunk(BaseModel):
    """A group member dropped during conflict resolution."""

    chunk_id: str
    superseded_by: str
    rationale: ResolutionRationale


class ConflictResolutionResult(BaseModel):
    """Outcome of resolving one multi-member group."""

    group_id: str
    winner_ids: list[str]
    superseded: list[SupersededChunk] = Field(default_factory=list)
    conflict_type: ConflictType = ConflictType.NONE
    ambiguous: bool = False


class QualityAssessment(BaseModel):
    """Aggregate reliability of a group."""

    group_id: str
    member_count: int
    mean_authority: float
    mean_freshness: float
    mean_relevance: float
    relevance_variance: float
    overall_score: float = Field(ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)


class FusionResult(BaseModel):
    """Output of one fusion run."""

    final_chunks: list[ContextChunk] = Field(default_factory=list)
    conflicts: list[ConflictResolutionResult] = Field(default_factory=list)
    quality: list[QualityAssessment] = Field(default_factory=list)
    groups: list[SemanticGroup] = Field(default_factory=list)
    input_count: int = 0
    superseded_count: int = 0
    budget_skipped_count: int = 0

    @property
    def group_count(self) -> int:
        return len(self.groups)

    @property
    def total_tokens(self) -> int:
        return sum(chunk.token_count or 0 for chunk in self.final_chunks)
