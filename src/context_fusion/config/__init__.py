"""Configuration management."""

from context_fusion.config.settings import (
    EnvironmentProfile,
    Settings,
    detect_environment,
    recommended_limits,
)

__all__ = ["EnvironmentProfile", "Settings", "detect_environment", "recommended_limits"]
