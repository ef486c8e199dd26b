"""Data models for context-fusion."""

from context_fusion.models.cache import CacheEntry, CacheStats
from context_fusion.models.context import (
    ContextChunk,
    ContextRequest,
    ContextResponse,
    ContextSource,
    PrivacyLevel,
    RelevanceScore,
    SourceType,
)
from context_fusion.models.fusion import (
    ConflictResolutionResult,
    ConflictType,
    FusionResult,
    QualityAssessment,
    ResolutionRationale,
    SemanticGroup,
    SupersededChunk,
)
from context_fusion.models.scoring import AlgorithmStats, ScoringAlgorithmConfig, UserProfile

__all__ = [
    "AlgorithmStats",
    "CacheEntry",
    "CacheStats",
    "ConflictResolutionResult",
    "ConflictType",
    "ContextChunk",
    "ContextRequest",
    "ContextResponse",
    "ContextSource",
    "FusionResult",
    "PrivacyLevel",
    "QualityAssessment",
    "RelevanceScore",
    "ResolutionRationale",
    "ScoringAlgorithmConfig",
    "SemanticGroup",
    "SourceType",
    "SupersededChunk",
    "UserProfile",
]
