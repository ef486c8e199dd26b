"""Built-in scoring algorithms.

Each algorithm maps a `ScoringInput` and its configured parameters to a
value in [0, 1], or to None when it has nothing to say about the pair
(for example personalization without a user profile). None values are
left out of the engine's normalization.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from context_fusion.models.context import ContextChunk
from context_fusion.models.scoring import ScoringAlgorithmConfig, UserProfile
from context_fusion.services.temporal_decay import TemporalDecayFunction
from context_fusion.utils.similarity import cosine_similarity, tokenize, word_set


@dataclass(frozen=True)
class ScoringInput:
    """Everything an algorithm may read for one (chunk, query) pair."""

    chunk: ContextChunk
    query: str
    now: datetime
    profile: UserProfile | None = None
    query_embedding: list[float] | None = None
    decay: TemporalDecayFunction = field(default_factory=TemporalDecayFunction)


AlgorithmFunction = Callable[[ScoringInput, dict[str, Any]], float | None]


def content_relevance(inp: ScoringInput, params: dict[str, Any]) -> float:
    """Exact phrase match, word overlap and a length band bonus."""
    query = inp.query.lower().strip()
    content = inp.chunk.content.lower()
    if not query:
        return 0.0

    score = 0.0
    if query in content:
        score += params.get("phrase_weight", 0.6)

    query_words = set(tokenize(query))
    if query_words:
        overlap = len(query_words & word_set(content)) / len(query_words)
        score += overlap * params.get("overlap_weight", 0.4)

    if params.get("min_length", 50) <= len(content) <= params.get("max_length", 2000):
        score += params.get("length_bonus", 0.1)

    return min(1.0, score)


def semantic_similarity(inp: ScoringInput, params: dict[str, Any]) -> float | None:
    """Cosine similarity of embeddings, else the chunk's supplied relevance hint."""
    if inp.query_embedding and inp.chunk.embedding:
        return max(0.0, cosine_similarity(inp.query_embedding, inp.chunk.embedding))
    if inp.chunk.relevance_score is not None:
        return inp.chunk.relevance_score.score
    return None


def temporal_relevance(inp: ScoringInput, params: dict[str, Any]) -> float:
    decay = inp.decay
    if "half_life_days" in params or "decay_rate" in params:
        decay = TemporalDecayFunction(
            half_life_days=params.get("half_life_days", decay.half_life_days),
            decay_rate=params.get("decay_rate", decay.decay_rate),
            reference_date=inp.now,
        )
    return decay.calculate_score(inp.chunk.created_at)


def source_authority(inp: ScoringInput, params: dict[str, Any]) -> float:
    return inp.chunk.source.authority_score


def user_personalization(inp: ScoringInput, params: dict[str, Any]) -> float | None:
    """Blend the user's topic, source and content-type preferences.

    Starts from a neutral base and nudges upward per matching preference,
    plus the user's engagement decayed by time since last activity.
    """
    profile = inp.profile
    if profile is None:
        return None

    chunk = inp.chunk
    score = params.get("base", 0.5)
    for tag in sorted(chunk.tags):
        score += params.get("topic_weight", 0.1) * profile.topic_preferences.get(tag, 0.0)
    score += params.get("source_weight", 0.2) * profile.source_preferences.get(
        chunk.source.name, 0.0
    )
    content_type = str(chunk.metadata.get("content_type", "text"))
    score += params.get("content_type_weight", 0.1) * profile.content_type_preferences.get(
        content_type, 0.0
    )
    score += params.get("engagement_weight", 0.1) * profile.decayed_engagement(inp.decay)
    return min(1.0, score)


def content_freshness(inp: ScoringInput, params: dict[str, Any]) -> float:
    """Step function of days since the chunk was last updated."""
    age = inp.decay.age_days(inp.chunk.updated_at)
    if age < 1:
        return 1.0
    if age <= 7:
        return 0.9
    if age <= 30:
        return 0.7
    if age <= 90:
        return 0.5
    if age <= 365:
        return 0.3
    return 0.1


def engagement_potential(inp: ScoringInput, params: dict[str, Any]) -> float:
    """Heuristic likelihood the chunk is worth reading."""
    chunk = inp.chunk
    score = 0.0
    if 100 <= len(chunk.content) <= 1000:
        score += 0.3
    elif len(chunk.content) > 1000:
        score += 0.15
    score += min(0.3, 0.1 * len(chunk.tags))
    score += min(0.2, 0.05 * len(chunk.metadata))
    score += 0.2 * chunk.source.freshness_score
    return min(1.0, score)


def default_algorithms() -> list[tuple[ScoringAlgorithmConfig, AlgorithmFunction]]:
    """Built-in ensemble with its default weights."""
    return [
        (ScoringAlgorithmConfig(name="content_relevance", weight=0.25), content_relevance),
        (ScoringAlgorithmConfig(name="semantic_similarity", weight=0.30), semantic_similarity),
        (ScoringAlgorithmConfig(name="temporal_relevance", weight=0.15), temporal_relevance),
        (ScoringAlgorithmConfig(name="source_authority", weight=0.10), source_authority),
        (ScoringAlgorithmConfig(name="user_personalization", weight=0.15), user_personalization),
        (ScoringAlgorithmConfig(name="content_freshness", weight=0.05), content_freshness),
        (
            ScoringAlgorithmConfig(name="engagement_potential", weight=0.05, enabled=False),
            engagement_potential,
        ),
    ]
