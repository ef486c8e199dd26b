"""Request orchestration: fetch, filter, score, fuse."""

import asyncio
import logging
import time
import uuid
from dataclasses import asdict
from typing import Any

from context_fusion.config.settings import Settings
from context_fusion.embeddings import create_embedding_provider
from context_fusion.exceptions import (
    ContextFusionError,
    ContextNotFoundError,
    ErrorKind,
    PrivacyViolationError,
)
from context_fusion.models.context import (
    ContextChunk,
    ContextRequest,
    ContextResponse,
    PrivacyLevel,
)
from context_fusion.models.fusion import ConflictType
from context_fusion.services.context_cache import ContextCache
from context_fusion.services.embedding_service import EmbeddingService
from context_fusion.services.fusion_engine import FusionEngine
from context_fusion.services.scoring_engine import ScoringEngine
from context_fusion.sources.base import SourceConnector
from context_fusion.sources.privacy import PrivacyFilter, PrivacyLevelFilter

logger = logging.getLogger(__name__)


class ContextOrchestrator:
    """Builds context responses from registered source connectors."""

    def __init__(
        self,
        settings: Settings,
        cache: ContextCache | None = None,
        scoring_engine: ScoringEngine | None = None,
        fusion_engine: FusionEngine | None = None,
        privacy_filter: PrivacyFilter | None = None,
        embedding_service: EmbeddingService | None = None,
    ) -> None:
        """Initialize orchestrator, building any collaborator not supplied.

        Args:
            settings: Application settings
            cache: Shared cache
            scoring_engine: Scoring engine
            fusion_engine: Fusion engine
            privacy_filter: Filter applied before scoring
            embedding_service: Embedding service used by scoring and fusion
        """
        self.settings = settings
        # An empty cache is falsy (it defines __len__), so compare against None
        if cache is None:
            cache = ContextCache(
                max_entries=settings.cache_max_entries,
                max_memory_bytes=settings.cache_max_memory_bytes,
                default_ttl_seconds=settings.cache_default_ttl_seconds,
                cleanup_interval_seconds=settings.cache_cleanup_interval_seconds,
            )
        self.cache = cache
        self.embedding_service = embedding_service

        if scoring_engine is None:
            scoring_engine = ScoringEngine(
                cache=self.cache,
                embedding_service=embedding_service,
                half_life_days=settings.decay_half_life_days,
                decay_rate=settings.decay_rate,
                score_cache_ttl_seconds=settings.score_cache_ttl_seconds,
                recent_queries_limit=settings.recent_queries_limit,
                max_workers=settings.max_workers,
            )
        self.scoring_engine = scoring_engine

        if fusion_engine is None:
            fusion_engine = FusionEngine(
                scoring_engine=self.scoring_engine,
                embedding_service=embedding_service,
                similarity_threshold=settings.similarity_threshold,
                text_similarity_threshold=settings.text_similarity_threshold,
                score_conflict_threshold=settings.score_conflict_threshold,
                max_group_size=settings.max_group_size,
                max_workers=settings.max_workers,
                token_counter_model=settings.token_counter_model,
            )
        self.fusion_engine = fusion_engine
        if privacy_filter is None:
            privacy_filter = PrivacyLevelFilter()
        self.privacy_filter = privacy_filter
        self._sources: dict[str, SourceConnector] = {}

        # Statistics
        self.request_count = 0
        self.failed_source_count = 0
        self.empty_response_count = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContextOrchestrator":
        """Build an orchestrator with the embedding provider named in settings."""
        provider = create_embedding_provider(settings)
        if provider is None:
            return cls(settings)

        cache = ContextCache(
            max_entries=settings.cache_max_entries,
            max_memory_bytes=settings.cache_max_memory_bytes,
            default_ttl_seconds=settings.cache_default_ttl_seconds,
            cleanup_interval_seconds=settings.cache_cleanup_interval_seconds,
        )
        return cls(
            settings,
            cache=cache,
            embedding_service=EmbeddingService(provider, cache=cache),
        )

    # Sources

    def add_source(self, connector: SourceConnector) -> None:
        """Register a connector, replacing any connector with the same name."""
        if connector.name in self._sources:
            logger.info("Replacing source connector %s", connector.name)
        self._sources[connector.name] = connector

    def remove_source(self, name: str) -> bool:
        """Unregister a connector.

        Returns:
            True if a connector was removed
        """
        return self._sources.pop(name, None) is not None

    def get_source(self, name: str) -> SourceConnector | None:
        return self._sources.get(name)

    @property
    def source_names(self) -> list[str]:
        return sorted(self._sources)

    # Orchestration

    async def get_context(
        self,
        query: str,
        user_id: str | None = None,
        session_id: str | None = None,
        max_tokens: int | None = None,
        max_chunks: int | None = None,
        min_relevance: float | None = None,
        privacy_level: PrivacyLevel | None = None,
        sources: list[str] | None = None,
        exclude_sources: list[str] | None = None,
    ) -> ContextResponse:
        """Build a request from settings defaults and orchestrate it."""
        request = ContextRequest(
            query=query,
            user_id=user_id,
            session_id=session_id,
            max_tokens=max_tokens or self.settings.max_context_tokens,
            max_chunks=max_chunks,
            min_relevance=(
                self.settings.default_relevance_threshold
                if min_relevance is None
                else min_relevance
            ),
            privacy_level=privacy_level or self.settings.privacy_level,
            sources=sources,
            exclude_sources=exclude_sources,
        )
        return await self.orchestrate(request)

    async def orchestrate(self, request: ContextRequest) -> ContextResponse:
        """Fetch, filter, score and fuse context for a request.

        Args:
            request: Context request

        Returns:
            Context response; empty when nothing clears min_relevance

        Raises:
            PrivacyViolationError: If the request's privacy level is below the configured one
            StageTimeoutError: If scoring or fusion exceeds its deadline
            ContextNotFoundError: If nothing survives and the request requires results
        """
        start = time.perf_counter()
        request_id = str(uuid.uuid4())
        self.request_count += 1

        if request.privacy_level.rank < self.settings.privacy_level.rank:
            raise PrivacyViolationError(
                "orchestrate",
                resource_id=request_id,
                reason=(
                    f"request privacy level '{request.privacy_level.value}' is below "
                    f"configured level '{self.settings.privacy_level.value}'"
                ),
            )

        connectors = self._select_sources(request)
        candidates, source_errors = await self._fetch_all(connectors, request.query)
        allowed = [
            chunk
            for chunk in candidates
            if self.privacy_filter.is_allowed(chunk, request.privacy_level)
        ]

        stage_timeout = request.timeout_seconds or self.settings.stage_timeout_seconds
        scored = await self.scoring_engine.score_chunks(
            allowed, request.query, user_id=request.user_id, timeout=stage_timeout
        )
        relevant = [chunk for chunk in scored if chunk.score_value >= request.min_relevance]
        fusion = await self.fusion_engine.fuse(relevant, request, timeout=stage_timeout)

        if not fusion.final_chunks:
            self.empty_response_count += 1
            if request.require_results:
                raise ContextNotFoundError(
                    "orchestrate",
                    resource_id=request_id,
                    reason=f"no chunks at or above min_relevance {request.min_relevance}",
                )

        chunks = fusion.final_chunks
        if not request.include_metadata:
            chunks = [chunk.model_copy(update={"metadata": {}}) for chunk in chunks]

        metadata: dict[str, Any] = {
            "request_id": request_id,
            "source_count": len(connectors),
            "failed_sources": [error.resource_id for error in source_errors],
            "candidate_count": len(candidates),
            "filtered_count": len(candidates) - len(allowed),
            "scored_count": len(scored),
            "relevant_count": len(relevant),
            "chunk_count": len(chunks),
            "total_tokens": fusion.total_tokens,
            "group_count": fusion.group_count,
            "conflict_count": sum(
                1 for c in fusion.conflicts if c.conflict_type is not ConflictType.NONE
            ),
            "superseded_count": fusion.superseded_count,
            "budget_skipped_count": fusion.budget_skipped_count,
        }
        if request.include_metadata:
            metadata["source_errors"] = [error.to_dict() for error in source_errors]
            metadata["quality"] = [q.model_dump() for q in fusion.quality]

        processing_time_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Request %s: %d candidates from %d sources -> %d chunks in %.1fms",
            request_id,
            len(candidates),
            len(connectors),
            len(chunks),
            processing_time_ms,
        )
        return ContextResponse(
            id=request_id,
            query=request.query,
            chunks=chunks,
            user_id=request.user_id,
            session_id=request.session_id,
            max_tokens=request.max_tokens,
            privacy_level=request.privacy_level,
            metadata=metadata,
            processing_time_ms=processing_time_ms,
        )

    def _select_sources(self, request: ContextRequest) -> list[SourceConnector]:
        selected = []
        for name in self.source_names:
            connector = self._sources[name]
            if not connector.is_active:
                continue
            if request.sources is not None and name not in request.sources:
                continue
            if request.exclude_sources and name in request.exclude_sources:
                continue
            selected.append(connector)
        return selected

    async def _fetch_all(
        self, connectors: list[SourceConnector], query: str
    ) -> tuple[list[ContextChunk], list[ContextFusionError]]:
        """Fetch from all connectors concurrently; failures yield zero chunks."""
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_sources)

        async def fetch_one(
            connector: SourceConnector,
        ) -> tuple[list[ContextChunk], ContextFusionError | None]:
            async with semaphore:
                try:
                    chunks = await asyncio.wait_for(
                        connector.fetch(query), timeout=self.settings.source_timeout_seconds
                    )
                    return list(chunks), None
                except TimeoutError:
                    reason = f"timed out after {self.settings.source_timeout_seconds}s"
                except Exception as e:
                    reason = f"{type(e).__name__}: {e}"
            error = ContextFusionError(
                ErrorKind.SOURCE_FAILURE,
                "orchestrate.fetch",
                resource_id=connector.name,
                reason=reason,
            )
            logger.warning("%s", error)
            return [], error

        results = await asyncio.gather(*(fetch_one(c) for c in connectors))

        candidates: list[ContextChunk] = []
        errors: list[ContextFusionError] = []
        for chunks, error in results:
            candidates.extend(chunks)
            if error is not None:
                errors.append(error)
        self.failed_source_count += len(errors)
        return candidates, errors

    def get_stats(self) -> dict[str, Any]:
        """Read-only diagnostics across cache, scoring, and fusion."""
        return {
            "request_count": self.request_count,
            "failed_source_count": self.failed_source_count,
            "empty_response_count": self.empty_response_count,
            "sources": self.source_names,
            "cache": asdict(self.cache.get_stats()),
            "scoring": self.scoring_engine.get_stats(),
            "fusion": self.fusion_engine.get_stats(),
        }

    async def close(self) -> None:
        """Close all connectors and stop the cache sweep."""
        results = await asyncio.gather(
            *(connector.close() for connector in self._sources.values()),
            return_exceptions=True,
        )
        for name, result in zip(self._sources, results, strict=True):
            if isinstance(result, Exception):
                logger.warning("Closing source %s failed: %s", name, result)
        await self.cache.close()
