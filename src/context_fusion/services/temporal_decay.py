"""Temporal decay of relevance by content age."""

import math
from datetime import datetime, timezone

from context_fusion.exceptions import ConfigurationError

SECONDS_PER_DAY = 86400.0


class TemporalDecayFunction:
    """Exponential decay: `decay_rate ** (age_days / half_life_days)`.

    With the default decay rate of 0.5 the score halves once per
    half-life. Content dated in the future counts as age zero.
    """

    def __init__(
        self,
        half_life_days: float = 30.0,
        decay_rate: float = 0.5,
        reference_date: datetime | None = None,
    ) -> None:
        """Initialize the decay function.

        Args:
            half_life_days: Days per application of the decay rate (> 0)
            decay_rate: Base of the decay, strictly between 0 and 1
            reference_date: Fixed "now" (None = current UTC time per call)

        Raises:
            ConfigurationError: If half-life or decay rate are out of range
        """
        if not math.isfinite(half_life_days) or half_life_days <= 0:
            raise ConfigurationError(
                "temporal_decay.init", reason=f"half_life_days must be > 0, got {half_life_days}"
            )
        if not 0.0 < decay_rate < 1.0:
            raise ConfigurationError(
                "temporal_decay.init", reason=f"decay_rate must be in (0, 1), got {decay_rate}"
            )
        self.half_life_days = half_life_days
        self.decay_rate = decay_rate
        self.reference_date = reference_date

    def age_days(self, timestamp: datetime) -> float:
        """Non-negative age of a timestamp in days."""
        reference = self.reference_date or datetime.now(timezone.utc)
        delta = (_as_utc(reference) - _as_utc(timestamp)).total_seconds() / SECONDS_PER_DAY
        return max(0.0, delta)

    def calculate_score(self, timestamp: datetime) -> float:
        """Decay score in [0, 1]; exactly 1.0 at age zero."""
        age = self.age_days(timestamp)
        if age == 0.0:
            return 1.0
        score = self.decay_rate ** (age / self.half_life_days)
        return min(1.0, max(0.0, score))


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
