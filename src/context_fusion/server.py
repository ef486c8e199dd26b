"""MCP server implementation for context-fusion."""

import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from context_fusion.config.settings import Settings
from context_fusion.services.orchestrator import ContextOrchestrator
from context_fusion.tools import context_tools

logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("context-fusion")

# Global orchestrator instance (initialized in main)
orchestrator: ContextOrchestrator | None = None


async def initialize_services(settings: Settings) -> None:
    """Initialize the orchestrator and its engines.

    Args:
        settings: Application settings
    """
    global orchestrator
    orchestrator = ContextOrchestrator.from_settings(settings)
    orchestrator.cache.start_cleanup()
    logger.info(
        "context-fusion ready (embedding_provider=%s, cache_max_entries=%d)",
        settings.embedding_provider,
        settings.cache_max_entries,
    )


async def shutdown_services() -> None:
    """Close sources and stop background tasks."""
    global orchestrator
    if orchestrator:
        await orchestrator.close()
        orchestrator = None


def _require_orchestrator() -> ContextOrchestrator:
    if not orchestrator:
        raise RuntimeError("Services not initialized")
    return orchestrator


# Source Tools
@mcp.tool()
async def source_register(
    name: str,
    chunks: list[dict[str, Any]],
    source_type: str = "document",
    authority_score: float = 0.5,
    freshness_score: float = 1.0,
    privacy_level: str = "private",
    match_all: bool = False,
) -> dict[str, Any]:
    """Register an in-memory context source.

    Args:
        name: Unique source name
        chunks: Chunks with `content` and optional `id`, `tags`, `metadata`,
            `embedding`, `token_count`, `relevance_hint`, `created_at`, `updated_at`
        source_type: Source type (document/api/database/realtime/vector/cache)
        authority_score: Source authority (0.0-1.0)
        freshness_score: Source freshness (0.0-1.0)
        privacy_level: Source privacy level (public/private/enterprise/restricted)
        match_all: Return every chunk regardless of query word overlap

    Returns:
        Registered source summary
    """
    return await context_tools.source_register(
        _require_orchestrator(),
        name,
        chunks,
        source_type,
        authority_score,
        freshness_score,
        privacy_level,
        match_all,
    )


@mcp.tool()
async def source_remove(name: str) -> dict[str, Any]:
    """Remove a registered context source.

    Args:
        name: Source name

    Returns:
        Remaining source names
    """
    return await context_tools.source_remove(_require_orchestrator(), name)


# Context Tools
@mcp.tool()
async def context_build(
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
    """Retrieve, score, deduplicate and rank context from registered sources.

    Args:
        query: Query text
        user_id: User for personalization
        session_id: Session identifier
        max_tokens: Token budget
        max_chunks: Maximum number of chunks
        min_relevance: Minimum relevance (0.0-1.0)
        privacy_level: Requested privacy level
        sources: Only use these sources
        exclude_sources: Skip these sources

    Returns:
        Fused context with chunks, metadata and timing
    """
    return await context_tools.context_build(
        _require_orchestrator(),
        query,
        user_id,
        session_id,
        max_tokens,
        max_chunks,
        min_relevance,
        privacy_level,
        sources,
        exclude_sources,
    )


@mcp.tool()
async def context_stats() -> dict[str, Any]:
    """Get cache, scoring and fusion diagnostics.

    Returns:
        Diagnostics summary
    """
    return await context_tools.context_stats(_require_orchestrator())


@mcp.tool()
async def cache_clear(pattern: str | None = None) -> dict[str, Any]:
    """Clear cached scores and embeddings.

    Args:
        pattern: Substring of cache keys to clear (None = clear all)

    Returns:
        Number of cleared entries
    """
    return await context_tools.cache_clear(_require_orchestrator().cache, pattern)


@mcp.tool()
async def cache_stats() -> dict[str, Any]:
    """Get cache statistics.

    Returns:
        Entry counts, memory usage, hit rate and evictions
    """
    return await context_tools.cache_stats(_require_orchestrator().cache)


# Profile Tools
@mcp.tool()
async def user_profile_update(
    user_id: str,
    topic: str | None = None,
    source: str | None = None,
    content_type: str | None = None,
    query: str | None = None,
    interaction_score: float = 1.0,
) -> dict[str, Any]:
    """Record a user interaction to personalize future scoring.

    Args:
        user_id: User identifier
        topic: Topic (tag) engaged with
        source: Source name engaged with
        content_type: Content type engaged with
        query: Query issued
        interaction_score: Interaction strength (0.0-1.0)

    Returns:
        Updated profile
    """
    return await context_tools.user_profile_update(
        _require_orchestrator().scoring_engine,
        user_id,
        topic,
        source,
        content_type,
        query,
        interaction_score,
    )


@mcp.tool()
async def user_profile_get(user_id: str) -> dict[str, Any]:
    """Get a user's personalization profile.

    Args:
        user_id: User identifier

    Returns:
        Profile or a NotFoundError response
    """
    return await context_tools.user_profile_get(_require_orchestrator().scoring_engine, user_id)


def create_server() -> FastMCP:
    """Create and return MCP server instance.

    Returns:
        FastMCP server instance
    """
    return mcp
