"""Context fusion MCP tools."""

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from context_fusion.exceptions import ContextFusionError
from context_fusion.models.context import ContextChunk, ContextSource, RelevanceScore
from context_fusion.services.context_cache import ContextCache
from context_fusion.services.orchestrator import ContextOrchestrator
from context_fusion.services.scoring_engine import ScoringEngine
from context_fusion.sources.base import StaticSource
from context_fusion.tools import create_error_response, error_response_from_exception
from context_fusion.utils.validators import (
    ValidationError,
    validate_positive_int,
    validate_privacy_level,
    validate_query,
    validate_source_type,
    validate_tags,
    validate_unit_interval,
)

logger = logging.getLogger(__name__)

# Embeddings are large and not useful to tool callers
_RESPONSE_EXCLUDE = {"chunks": {"__all__": {"embedding"}}}


def _parse_chunk(raw: dict[str, Any], source: ContextSource, index: int) -> ContextChunk:
    if not isinstance(raw, dict):
        raise ValidationError(f"chunks[{index}] must be an object")
    content = raw.get("content")
    if not content or not isinstance(content, str):
        raise ValidationError(f"chunks[{index}].content must be a non-empty string")

    fields: dict[str, Any] = {
        "content": content,
        "source": source,
        "tags": frozenset(validate_tags(raw.get("tags"))),
        "metadata": raw.get("metadata") or {},
    }
    for key in ("id", "embedding", "token_count", "created_at", "updated_at"):
        if raw.get(key) is not None:
            fields[key] = raw[key]
    if raw.get("relevance_hint") is not None:
        hint = validate_unit_interval(raw["relevance_hint"], f"chunks[{index}].relevance_hint")
        fields["relevance_score"] = RelevanceScore(score=hint)
    return ContextChunk(**fields)


async def source_register(
    orchestrator: ContextOrchestrator,
    name: str,
    chunks: list[dict[str, Any]],
    source_type: str = "document",
    authority_score: float = 0.5,
    freshness_score: float = 1.0,
    privacy_level: str = "private",
    match_all: bool = False,
) -> dict[str, Any]:
    """Register an in-memory source of chunks.

    Args:
        orchestrator: Orchestrator instance
        name: Unique source name (replaces an existing source of that name)
        chunks: Chunk objects with `content` and optional `id`, `tags`,
            `metadata`, `embedding`, `token_count`, `relevance_hint`,
            `created_at`, `updated_at`
        source_type: Source type (document/api/database/realtime/vector/cache)
        authority_score: Source authority (0.0-1.0)
        freshness_score: Source freshness (0.0-1.0)
        privacy_level: Source privacy level (public/private/enterprise/restricted)
        match_all: Return every chunk regardless of word overlap with the query

    Returns:
        Registered source summary
    """
    try:
        if not name or not name.strip():
            raise ValidationError("Source name must be a non-empty string")
        if not isinstance(chunks, list):
            raise ValidationError("chunks must be a list of objects")

        source = ContextSource(
            name=name.strip(),
            source_type=validate_source_type(source_type),
            authority_score=validate_unit_interval(authority_score, "authority_score"),
            freshness_score=validate_unit_interval(freshness_score, "freshness_score"),
            privacy_level=validate_privacy_level(privacy_level),
        )
        parsed = [_parse_chunk(raw, source, i) for i, raw in enumerate(chunks)]
        orchestrator.add_source(StaticSource(source, parsed, match_all=match_all))

        return {
            "source_id": source.id,
            "name": source.name,
            "chunk_count": len(parsed),
            "sources": orchestrator.source_names,
        }

    except ValueError as e:
        return create_error_response(message=str(e), error_type="ValidationError")
    except Exception as e:
        logger.exception("Unexpected error in source_register: %s", e)
        return create_error_response(
            message=f"Failed to register source: {str(e)}",
            error_type="RuntimeError",
        )


async def source_remove(orchestrator: ContextOrchestrator, name: str) -> dict[str, Any]:
    """Unregister a source by name."""
    if not orchestrator.remove_source(name):
        return create_error_response(
            message=f"Source not found: {name}",
            error_type="NotFoundError",
            details={"sources": orchestrator.source_names},
        )
    return {"removed": name, "sources": orchestrator.source_names}


async def context_build(
    orchestrator: ContextOrchestrator,
    query: str,
    user_id: str | None = None,
    session_id: str | None = None,
    max_tokens: int | None = None,
    max_chunks: int | None = None,
    min_relevance: float | None = None,
    privacy_level: str | None = None,
    sources: list[str] | None = None,
    exclude_sources: list[str] | None = None,
) -> dict[str, Any]:
    """Build fused context from the registered sources.

    Args:
        orchestrator: Orchestrator instance
        query: Query text
        user_id: Optional user for personalization
        session_id: Optional session identifier echoed in the response
        max_tokens: Token budget (default from settings)
        max_chunks: Maximum number of chunks
        min_relevance: Minimum relevance (0.0-1.0, default from settings)
        privacy_level: Requested privacy level (default from settings)
        sources: Only use these sources
        exclude_sources: Skip these sources

    Returns:
        Context response with chunks, metadata and timing
    """
    try:
        query = validate_query(query)
        if max_tokens is not None:
            validate_positive_int(max_tokens, "max_tokens", max_value=1_000_000)
        if max_chunks is not None:
            validate_positive_int(max_chunks, "max_chunks", max_value=10_000)
        if min_relevance is not None:
            validate_unit_interval(min_relevance, "min_relevance")

        response = await orchestrator.get_context(
            query,
            user_id=user_id,
            session_id=session_id,
            max_tokens=max_tokens,
            max_chunks=max_chunks,
            min_relevance=min_relevance,
            privacy_level=validate_privacy_level(privacy_level) if privacy_level else None,
            sources=sources,
            exclude_sources=exclude_sources,
        )

        result = response.model_dump(mode="json", exclude=_RESPONSE_EXCLUDE)
        result["total_tokens"] = response.total_tokens
        return result

    except ContextFusionError as e:
        return error_response_from_exception(e)
    except ValueError as e:
        return create_error_response(message=str(e), error_type="ValidationError")
    except Exception as e:
        logger.exception("Unexpected error in context_build: %s", e)
        return create_error_response(
            message=f"Failed to build context: {str(e)}",
            error_type="RuntimeError",
        )


async def context_stats(orchestrator: ContextOrchestrator) -> dict[str, Any]:
    """Get cache, scoring, and fusion diagnostics.

    Args:
        orchestrator: Orchestrator instance

    Returns:
        Structured diagnostics summary
    """
    try:
        stats = orchestrator.get_stats()
        cache = stats["cache"]
        for key in ("oldest_entry", "newest_entry"):
            cache[key] = cache[key].isoformat() if cache[key] else None
        return stats

    except Exception as e:
        logger.exception("Failed to get stats: %s", e)
        return create_error_response(
            message=f"Failed to get stats: {str(e)}",
            error_type="RuntimeError",
        )


async def cache_clear(cache: ContextCache, pattern: str | None = None) -> dict[str, Any]:
    """Clear the cache.

    Args:
        cache: Cache instance
        pattern: Optional substring of keys to clear (None = clear all)

    Returns:
        Number of cleared entries and timestamp
    """
    try:
        cleared_count = cache.invalidate(pattern)

        return {
            "cleared_count": cleared_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    except Exception as e:
        logger.exception("Failed to clear cache: %s", e)
        return create_error_response(
            message=f"Failed to clear cache: {str(e)}",
            error_type="RuntimeError",
        )


async def cache_stats(cache: ContextCache) -> dict[str, Any]:
    """Get cache statistics."""
    stats = asdict(cache.get_stats())
    for key in ("oldest_entry", "newest_entry"):
        stats[key] = stats[key].isoformat() if stats[key] else None
    return stats


async def user_profile_update(
    engine: ScoringEngine,
    user_id: str,
    topic: str | None = None,
    source: str | None = None,
    content_type: str | None = None,
    query: str | None = None,
    interaction_score: float = 1.0,
) -> dict[str, Any]:
    """Record a user interaction for personalization.

    Args:
        engine: Scoring engine owning the profiles
        user_id: User identifier
        topic: Topic (tag) engaged with
        source: Source name engaged with
        content_type: Content type engaged with
        query: Query issued
        interaction_score: Interaction strength (0.0-1.0)

    Returns:
        Updated profile
    """
    try:
        validate_unit_interval(interaction_score, "interaction_score")
        profile = await engine.update_user_profile(
            user_id,
            topic=topic,
            source=source,
            content_type=content_type,
            query=query,
            interaction_score=interaction_score,
        )
        return profile.model_dump(mode="json")

    except ValueError as e:
        return create_error_response(message=str(e), error_type="ValidationError")


async def user_profile_get(engine: ScoringEngine, user_id: str) -> dict[str, Any]:
    """Get a user's personalization profile."""
    profile = engine.get_user_profile(user_id)
    if profile is None:
        return create_error_response(
            message=f"Profile not found: {user_id}",
            error_type="NotFoundError",
        )
    return profile.model_dump(mode="json")
