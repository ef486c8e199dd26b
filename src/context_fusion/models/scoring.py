"""Scoring models."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from context_fusion.services.temporal_decay import TemporalDecayFunction


class ScoringAlgorithmConfig(BaseModel):
    """Configuration of one algorithm in the scoring ensemble.

    Weights need not sum to 1; the engine normalizes over the enabled
    algorithms that produced a value.
    """

    name: str = Field(min_length=1)
    weight: float = 1.0
    parameters: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True


class UserProfile(BaseModel):
    """Per-user personalization state.

    Profiles are immutable; `update_preferences` returns the next revision.
    `engagement_score` never decreases here, decay is applied on read.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    topic_preferences: dict[str, float] = Field(default_factory=dict)
    source_preferences: dict[str, float] = Field(default_factory=dict)
    content_type_preferences: dict[str, float] = Field(default_factory=dict)
    recent_queries: tuple[str, ...] = ()
    query_frequency: dict[str, int] = Field(default_factory=dict)
    last_activity: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    engagement_score: float = Field(default=0.0, ge=0.0)
    revision: int = Field(default=0, ge=0)

    def update_preferences(
        self,
        topic: str | None = None,
        source: str | None = None,
        content_type: str | None = None,
        query: str | None = None,
        interaction_score: float = 1.0,
        recent_queries_limit: int = 10,
        now: datetime | None = None,
    ) -> "UserProfile":
        """Apply one interaction as a bounded, monotone nudge.

        Args:
            topic: Topic the user engaged with
            source: Source name the user engaged with
            content_type: Content type the user engaged with
            query: Query the user issued
            interaction_score: Strength of the interaction (0.0-1.0)
            recent_queries_limit: Capacity of the recent-queries list
            now: Activity timestamp (defaults to current UTC time)

        Returns:
            New profile with revision incremented

        Raises:
            ValueError: If interaction_score is outside [0, 1]
        """
        if not 0.0 <= interaction_score <= 1.0:
            raise ValueError(
                f"interaction_score must be between 0.0 and 1.0, got {interaction_score}"
            )

        topics = _nudge(self.topic_preferences, topic, interaction_score)
        sources = _nudge(self.source_preferences, source, interaction_score)
        content_types = _nudge(self.content_type_preferences, content_type, interaction_score)

        recent = self.recent_queries
        frequency = self.query_frequency
        if query:
            recent = (query, *(q for q in self.recent_queries if q != query))
            recent = recent[:recent_queries_limit]
            frequency = {**self.query_frequency, query: self.query_frequency.get(query, 0) + 1}

        return self.model_copy(
            update={
                "topic_preferences": topics,
                "source_preferences": sources,
                "content_type_preferences": content_types,
                "recent_queries": recent,
                "query_frequency": frequency,
                "last_activity": now or datetime.now(timezone.utc),
                "engagement_score": self.engagement_score + 0.1 * interaction_score,
                "revision": self.revision + 1,
            }
        )

    def decayed_engagement(self, decay: "TemporalDecayFunction") -> float:
        """Engagement in [0, 1] after decaying by time since last activity."""
        return min(1.0, self.engagement_score) * decay.calculate_score(self.last_activity)


def _nudge(preferences: dict[str, float], key: str | None, amount: float) -> dict[str, float]:
    if not key:
        return preferences
    return {**preferences, key: min(1.0, preferences.get(key, 0.0) + amount)}


@dataclass
class AlgorithmStats:
    """Running counters for one scoring algorithm."""

    calls: int = 0
    failures: int = 0
    skipped: int = 0
    total_contribution: float = 0.0

    @property
    def mean_contribution(self) -> float:
        succeeded = self.calls - self.failures - self.skipped
        return self.total_contribution / succeeded if succeeded > 0 else 0.0
