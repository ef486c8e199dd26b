"""Multi-algorithm relevance scoring with personalization."""

import asyncio
import hashlib
import inspect
import logging
import math
import statistics
from collections import defaultdict
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from context_fusion.exceptions import ConfigurationError, StageTimeoutError
from context_fusion.models.context import ContextChunk, RelevanceScore
from context_fusion.models.fusion import QualityAssessment
from context_fusion.models.scoring import AlgorithmStats, ScoringAlgorithmConfig, UserProfile
from context_fusion.services.context_cache import MISSING, ContextCache
from context_fusion.services.embedding_service import EmbeddingService
from context_fusion.services.scoring_algorithms import (
    AlgorithmFunction,
    ScoringInput,
    default_algorithms,
)
from context_fusion.services.temporal_decay import TemporalDecayFunction

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_valid_score(value: Any) -> bool:
    """Finite real number; bools are rejected."""
    return (
        not isinstance(value, bool)
        and isinstance(value, (int, float))
        and math.isfinite(value)
    )


class ScoringEngine:
    """Weighted ensemble of scoring algorithms.

    The composite score is `sum(w * a) / sum(w)` over enabled algorithms
    that produced a value, clamped to [0, 1]. Algorithms that raise or
    return garbage are dropped from that call and counted as failures.
    Scores are memoized in the cache under a key that carries the user's
    profile revision and the engine's config revision, so any profile or
    weight change makes stale entries unreachable.
    """

    # Quality assessment weights
    QUALITY_RELEVANCE_WEIGHT: float = 0.30
    QUALITY_AUTHORITY_WEIGHT: float = 0.25
    QUALITY_FRESHNESS_WEIGHT: float = 0.20
    QUALITY_CONSISTENCY_WEIGHT: float = 0.15
    QUALITY_CORROBORATION_WEIGHT: float = 0.10

    def __init__(
        self,
        cache: ContextCache | None = None,
        embedding_service: EmbeddingService | None = None,
        algorithms: Sequence[ScoringAlgorithmConfig] | None = None,
        half_life_days: float = 30.0,
        decay_rate: float = 0.5,
        score_cache_ttl_seconds: float = 1800.0,
        recent_queries_limit: int = 10,
        max_workers: int = 8,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize scoring engine.

        Args:
            cache: Cache for memoized scores (None disables memoization)
            embedding_service: Service embedding queries for semantic similarity
            algorithms: Overrides for the built-in algorithm configs
            half_life_days: Temporal decay half-life
            decay_rate: Temporal decay base
            score_cache_ttl_seconds: TTL of memoized scores
            recent_queries_limit: Capacity of profiles' recent-queries list
            max_workers: Maximum chunks scored concurrently
            clock: Source of the current UTC time

        Raises:
            ConfigurationError: If weights or decay parameters are invalid
        """
        self.cache = cache
        self.embedding_service = embedding_service
        self.score_cache_ttl_seconds = score_cache_ttl_seconds
        self.recent_queries_limit = recent_queries_limit
        self.max_workers = max_workers
        self._clock = clock
        self._half_life_days = half_life_days
        self._decay_rate = decay_rate
        # Validates the decay parameters
        TemporalDecayFunction(half_life_days, decay_rate)

        self.config_revision = 0
        self._configs: dict[str, ScoringAlgorithmConfig] = {}
        self._functions: dict[str, AlgorithmFunction] = {}
        self._stats: dict[str, AlgorithmStats] = {}
        for config, function in default_algorithms():
            self._install(config, function)
        for config in algorithms or ():
            self.update_algorithm_config(config.name, config)

        self._profiles: dict[str, UserProfile] = {}
        self._profile_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

        self.scored_count = 0
        self.cache_hit_count = 0

    # Algorithm configuration

    def register_algorithm(
        self, config: ScoringAlgorithmConfig, function: AlgorithmFunction
    ) -> None:
        """Add a custom algorithm to the ensemble.

        Raises:
            ConfigurationError: If the name is taken or the weight is invalid
        """
        if config.name in self._configs:
            raise ConfigurationError(
                "scoring.register_algorithm",
                resource_id=config.name,
                reason="algorithm already registered",
            )
        self._install(config, function)
        self.config_revision += 1

    def update_algorithm_config(self, name: str, config: ScoringAlgorithmConfig) -> None:
        """Replace the configuration of a registered algorithm.

        Raises:
            ConfigurationError: If the algorithm is unknown or the config is invalid
        """
        if name not in self._configs:
            raise ConfigurationError(
                "scoring.update_algorithm_config", resource_id=name, reason="unknown algorithm"
            )
        if config.name != name:
            raise ConfigurationError(
                "scoring.update_algorithm_config",
                resource_id=name,
                reason=f"config name '{config.name}' does not match",
            )
        self._validate(config)
        self._configs[name] = config
        self.config_revision += 1
        logger.info(
            "Updated scoring algorithm %s (weight=%s, enabled=%s)",
            name,
            config.weight,
            config.enabled,
        )

    def get_algorithm_config(self, name: str) -> ScoringAlgorithmConfig | None:
        return self._configs.get(name)

    def _install(self, config: ScoringAlgorithmConfig, function: AlgorithmFunction) -> None:
        self._validate(config)
        self._configs[config.name] = config
        self._functions[config.name] = function
        self._stats[config.name] = AlgorithmStats()

    def _validate(self, config: ScoringAlgorithmConfig) -> None:
        if not math.isfinite(config.weight) or config.weight < 0:
            raise ConfigurationError(
                "scoring.validate_config",
                resource_id=config.name,
                reason=f"weight must be a non-negative finite number, got {config.weight}",
            )
        params = config.parameters
        if "half_life_days" in params or "decay_rate" in params:
            TemporalDecayFunction(
                params.get("half_life_days", self._half_life_days),
                params.get("decay_rate", self._decay_rate),
            )

    # Profiles

    async def update_user_profile(
        self,
        user_id: str,
        topic: str | None = None,
        source: str | None = None,
        content_type: str | None = None,
        query: str | None = None,
        interaction_score: float = 1.0,
    ) -> UserProfile:
        """Record a user interaction, creating the profile on first use.

        Args:
            user_id: User identifier
            topic: Topic (tag) the user engaged with
            source: Source name the user engaged with
            content_type: Content type the user engaged with
            query: Query the user issued
            interaction_score: Strength of the interaction (0.0-1.0)

        Returns:
            The updated profile

        Raises:
            ValueError: If user_id is empty or interaction_score is out of range
        """
        if not user_id:
            raise ValueError("user_id must be a non-empty string")

        async with self._profile_locks[user_id]:
            current = self._profiles.get(user_id) or UserProfile(user_id=user_id)
            updated = current.update_preferences(
                topic=topic,
                source=source,
                content_type=content_type,
                query=query,
                interaction_score=interaction_score,
                recent_queries_limit=self.recent_queries_limit,
                now=self._clock(),
            )
            self._profiles[user_id] = updated

        logger.debug("Updated profile %s to revision %d", user_id, updated.revision)
        return updated

    def get_user_profile(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)

    # Scoring

    async def score(
        self,
        chunk: ContextChunk,
        query: str,
        user_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> RelevanceScore:
        """Score one chunk against a query.

        Args:
            chunk: Chunk to score
            query: Query text
            user_id: Optional user whose profile personalizes the score
            context: Optional overrides: `query_embedding`, `now`

        Returns:
            Composite relevance score with per-algorithm breakdown
        """
        context = context or {}
        profile = self._profiles.get(user_id) if user_id else None

        # Caller-supplied context changes the result, so skip memoization
        cache_key: str | None = None
        if self.cache is not None and not context:
            cache_key = self._cache_key(chunk, query, user_id, profile)
            cached = self.cache.get(cache_key, MISSING)
            if cached is not MISSING:
                self.cache_hit_count += 1
                return cached

        now = context.get("now") or self._clock()
        query_embedding = context.get("query_embedding")
        if query_embedding is None and chunk.has_embedding:
            query_embedding = await self._embed_query(query)

        inp = ScoringInput(
            chunk=chunk,
            query=query,
            now=now,
            profile=profile,
            query_embedding=query_embedding,
            decay=TemporalDecayFunction(self._half_life_days, self._decay_rate, now),
        )
        result = await self._compute(inp)
        self.scored_count += 1

        if cache_key is not None:
            self.cache.set(  # type: ignore[union-attr]
                cache_key,
                result,
                ttl=self.score_cache_ttl_seconds,
                metadata={"kind": "score", "chunk_id": chunk.id},
            )
        return result

    async def score_chunks(
        self,
        chunks: Sequence[ContextChunk],
        query: str,
        user_id: str | None = None,
        context: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> list[ContextChunk]:
        """Score chunks concurrently and attach the scores.

        Args:
            chunks: Chunks to score
            query: Query text
            user_id: Optional user for personalization
            context: Optional overrides passed to `score`
            timeout: Deadline for the whole batch in seconds

        Returns:
            Copies of the chunks carrying their scores, in input order

        Raises:
            StageTimeoutError: If the deadline passes before all chunks are scored
        """
        semaphore = asyncio.Semaphore(self.max_workers)

        async def score_one(chunk: ContextChunk) -> ContextChunk:
            async with semaphore:
                return chunk.with_score(await self.score(chunk, query, user_id, context))

        try:
            async with asyncio.timeout(timeout):
                return list(await asyncio.gather(*(score_one(c) for c in chunks)))
        except TimeoutError as e:
            raise StageTimeoutError(
                "scoring.score_chunks",
                resource_id=f"{len(chunks)} chunks",
                reason=f"deadline of {timeout}s exceeded",
            ) from e

    async def _compute(self, inp: ScoringInput) -> RelevanceScore:
        weighted_sum = 0.0
        total_weight = 0.0
        contributions: dict[str, float] = {}

        for name, config in self._configs.items():
            if not config.enabled:
                continue
            stats = self._stats[name]
            stats.calls += 1
            try:
                value = self._functions[name](inp, config.parameters)
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                stats.failures += 1
                logger.warning(
                    "Scoring algorithm %s failed for chunk %s: %s", name, inp.chunk.id, e
                )
                continue

            if value is None:
                stats.skipped += 1
                continue
            if not _is_valid_score(value):
                stats.failures += 1
                logger.warning(
                    "Scoring algorithm %s returned invalid value %r for chunk %s",
                    name,
                    value,
                    inp.chunk.id,
                )
                continue

            value = min(1.0, max(0.0, float(value)))
            stats.total_contribution += value
            weighted_sum += config.weight * value
            total_weight += config.weight
            contributions[name] = config.weight * value

        composite = weighted_sum / total_weight if total_weight > 0 else 0.0
        composite = min(1.0, max(0.0, composite))
        breakdown = {
            name: contribution / total_weight for name, contribution in contributions.items()
        }
        lower, upper, level = self._confidence_interval(inp.chunk, composite)
        return RelevanceScore(
            score=composite,
            breakdown=breakdown,
            confidence_lower=lower,
            confidence_upper=upper,
            confidence_level=level,
        )

    @staticmethod
    def _confidence_interval(chunk: ContextChunk, score: float) -> tuple[float, float, float]:
        """Interval around a score, narrower for long, authoritative content."""
        confidence = 0.8
        if len(chunk.content) < 50:
            confidence -= 0.2
        elif len(chunk.content) > 1000:
            confidence += 0.1

        authority = chunk.source.authority_score
        if authority > 0.8:
            confidence += 0.1
        elif authority < 0.3:
            confidence -= 0.2

        if score < 0.1 or score > 0.9:
            confidence -= 0.1

        confidence = min(1.0, max(0.0, confidence))
        margin = (1.0 - confidence) * 0.5
        return max(0.0, score - margin), min(1.0, score + margin), confidence

    async def _embed_query(self, query: str) -> list[float] | None:
        if self.embedding_service is None:
            return None
        try:
            return await self.embedding_service.generate(query, is_query=True)
        except Exception as e:
            logger.warning("Query embedding failed, using relevance hints instead: %s", e)
            return None

    def _cache_key(
        self,
        chunk: ContextChunk,
        query: str,
        user_id: str | None,
        profile: UserProfile | None,
    ) -> str:
        query_hash = hashlib.sha256(query.encode()).hexdigest()
        revision = profile.revision if profile else 0
        return (
            f"score:{chunk.id}:{query_hash}:{user_id or 'anonymous'}:"
            f"{revision}:{self.config_revision}"
        )

    # Quality

    def assess_group_quality(
        self, group_id: str, chunks: Sequence[ContextChunk]
    ) -> QualityAssessment:
        """Score the aggregate reliability of a group of chunks.

        Args:
            group_id: Group identifier
            chunks: Group members (must not be empty)

        Returns:
            Quality assessment with overall score in [0, 1]
        """
        if not chunks:
            raise ValueError("Cannot assess quality of an empty group")

        relevances = [chunk.score_value for chunk in chunks]
        mean_authority = statistics.fmean(c.source.authority_score for c in chunks)
        mean_freshness = statistics.fmean(c.source.freshness_score for c in chunks)
        mean_relevance = statistics.fmean(relevances)
        variance = statistics.pvariance(relevances)
        stddev = math.sqrt(variance)

        consistency = 1.0 - min(1.0, 2.0 * stddev)
        corroboration = min(1.0, (len(chunks) - 1) / 4)
        overall = (
            self.QUALITY_RELEVANCE_WEIGHT * mean_relevance
            + self.QUALITY_AUTHORITY_WEIGHT * mean_authority
            + self.QUALITY_FRESHNESS_WEIGHT * mean_freshness
            + self.QUALITY_CONSISTENCY_WEIGHT * consistency
            + self.QUALITY_CORROBORATION_WEIGHT * corroboration
        )

        issues: list[str] = []
        if mean_authority < 0.5:
            issues.append("low_source_authority")
        if mean_freshness < 0.3:
            issues.append("possibly_outdated")
        if stddev > 0.2:
            issues.append("high_score_variance")

        return QualityAssessment(
            group_id=group_id,
            member_count=len(chunks),
            mean_authority=mean_authority,
            mean_freshness=mean_freshness,
            mean_relevance=mean_relevance,
            relevance_variance=variance,
            overall_score=min(1.0, max(0.0, overall)),
            issues=issues,
        )

    # Experiments

    async def run_ab_test(
        self,
        chunks: Sequence[ContextChunk],
        query: str,
        variant_a: ScoringAlgorithmConfig,
        variant_b: ScoringAlgorithmConfig,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """Compare two single-algorithm configurations on the same chunks.

        Neither variant touches the engine's configuration, stats or cache.

        Returns:
            Per-variant scores and means, plus the winning variant name
        """
        for variant in (variant_a, variant_b):
            if variant.name not in self._functions:
                raise ConfigurationError(
                    "scoring.run_ab_test", resource_id=variant.name, reason="unknown algorithm"
                )
            self._validate(variant)

        profile = self._profiles.get(user_id) if user_id else None
        now = self._clock()
        query_embedding = None
        if any(chunk.has_embedding for chunk in chunks):
            query_embedding = await self._embed_query(query)
        decay = TemporalDecayFunction(self._half_life_days, self._decay_rate, now)

        results: dict[str, Any] = {}
        for label, variant in (("variant_a", variant_a), ("variant_b", variant_b)):
            scores: dict[str, float] = {}
            for chunk in chunks:
                inp = ScoringInput(chunk, query, now, profile, query_embedding, decay)
                try:
                    value = self._functions[variant.name](inp, variant.parameters)
                    if inspect.isawaitable(value):
                        value = await value
                except Exception as e:
                    logger.warning("A/B variant %s failed on %s: %s", variant.name, chunk.id, e)
                    value = None
                if value is not None and not _is_valid_score(value):
                    logger.warning(
                        "A/B variant %s returned invalid value %r for %s",
                        variant.name,
                        value,
                        chunk.id,
                    )
                    value = None
                scores[chunk.id] = min(1.0, max(0.0, float(value))) if value is not None else 0.0
            mean = statistics.fmean(scores.values()) if scores else 0.0
            results[label] = {"name": variant.name, "mean_score": mean, "scores": scores}

        mean_a = results["variant_a"]["mean_score"]
        mean_b = results["variant_b"]["mean_score"]
        if mean_a > mean_b:
            results["winner"] = "variant_a"
        elif mean_b > mean_a:
            results["winner"] = "variant_b"
        else:
            results["winner"] = "tie"
        return results

    def get_stats(self) -> dict[str, Any]:
        """Read-only scoring diagnostics."""
        return {
            "scored_count": self.scored_count,
            "cache_hit_count": self.cache_hit_count,
            "profile_count": len(self._profiles),
            "config_revision": self.config_revision,
            "algorithms": {
                name: {
                    "weight": config.weight,
                    "enabled": config.enabled,
                    "calls": self._stats[name].calls,
                    "failures": self._stats[name].failures,
                    "skipped": self._stats[name].skipped,
                    "mean_contribution": self._stats[name].mean_contribution,
                }
                for name, config in self._configs.items()
            },
        }
