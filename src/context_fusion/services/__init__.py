"""Core services: cache, scoring, fusion, orchestration."""

from context_fusion.services.context_cache import MISSING, ContextCache
from context_fusion.services.embedding_service import EmbeddingService
from context_fusion.services.fusion_engine import FusionEngine
from context_fusion.services.orchestrator import ContextOrchestrator
from context_fusion.services.scoring_engine import ScoringEngine
from context_fusion.services.temporal_decay import TemporalDecayFunction

__all__ = [
    "MISSING",
    "ContextCache",
    "ContextOrchestrator",
    "EmbeddingService",
    "FusionEngine",
    "ScoringEngine",
    "TemporalDecayFunction",
]
