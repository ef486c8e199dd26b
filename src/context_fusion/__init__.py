"""Context fusion: cache, score and merge multi-source context."""

from context_fusion.config.settings import Settings
from context_fusion.models.context import (
    ContextChunk,
    ContextRequest,
    ContextResponse,
    ContextSource,
    PrivacyLevel,
    SourceType,
)
from context_fusion.services.orchestrator import ContextOrchestrator

__version__ = "1.0.0"

__all__ = [
    "ContextChunk",
    "ContextOrchestrator",
    "ContextRequest",
    "ContextResponse",
    "ContextSource",
    "PrivacyLevel",
    "Settings",
    "SourceType",
]
