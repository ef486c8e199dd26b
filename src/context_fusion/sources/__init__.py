"""Source connectors and privacy filters consumed by the orchestrator."""

from context_fusion.sources.base import SourceConnector, StaticSource
from context_fusion.sources.privacy import PrivacyFilter, PrivacyLevelFilter

__all__ = ["PrivacyFilter", "PrivacyLevelFilter", "SourceConnector", "StaticSource"]
