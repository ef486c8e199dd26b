"""Fusion of scored chunks: group, resolve conflicts, rank, and fit a budget."""

import asyncio
import logging
from collections.abc import Sequence
from itertools import combinations
from typing import Any

import numpy as np

from context_fusion.exceptions import StageTimeoutError
from context_fusion.models.context import ContextChunk, ContextRequest
from context_fusion.models.fusion import (
    ConflictResolutionResult,
    ConflictType,
    FusionResult,
    QualityAssessment,
    ResolutionRationale,
    SemanticGroup,
    SupersededChunk,
)
from context_fusion.services.embedding_service import EmbeddingService
from context_fusion.services.scoring_engine import ScoringEngine
from context_fusion.utils.similarity import jaccard, numeric_claims, word_set
from context_fusion.utils.token_counter import chunk_tokens

logger = logging.getLogger(__name__)

# Chunks compared between cooperative yields while grouping
_GROUPING_YIELD_EVERY = 64


def resolution_key(chunk: ContextChunk) -> tuple[float, float, float, str]:
    """Tie-break chain: authority, then freshness, then relevance (all desc), then id."""
    return (
        -chunk.source.authority_score,
        -chunk.source.freshness_score,
        -chunk.score_value,
        chunk.id,
    )


def rank_key(chunk: ContextChunk) -> tuple[float, float, float, str]:
    """Final ordering: relevance desc, then the resolution chain."""
    return (
        -chunk.score_value,
        -chunk.source.authority_score,
        -chunk.source.freshness_score,
        chunk.id,
    )


class FusionEngine:
    """Merges scored chunks from overlapping sources into one ranked set.

    Output is a pure function of the input chunks: grouping walks a
    canonical order, every tie-break ends on the chunk id, and per-group
    work that runs concurrently is merged back by group index.
    """

    def __init__(
        self,
        scoring_engine: ScoringEngine,
        embedding_service: EmbeddingService | None = None,
        similarity_threshold: float = 0.85,
        text_similarity_threshold: float = 0.6,
        score_conflict_threshold: float = 0.2,
        max_group_size: int = 10,
        max_workers: int = 8,
        token_counter_model: str = "gpt-4",
    ) -> None:
        """Initialize fusion engine.

        Args:
            scoring_engine: Engine used for group quality assessment
            embedding_service: Embeds chunks lacking embeddings before grouping
            similarity_threshold: Cosine threshold for embedding grouping
            text_similarity_threshold: Jaccard threshold for text grouping
            score_conflict_threshold: Relevance spread flagged as a conflict
            max_group_size: Maximum members per group
            max_workers: Maximum groups processed concurrently
            token_counter_model: tiktoken model for chunks without token counts
        """
        if max_group_size < 1:
            raise ValueError("max_group_size must be at least 1")
        self.scoring_engine = scoring_engine
        self.embedding_service = embedding_service
        self.similarity_threshold = similarity_threshold
        self.text_similarity_threshold = text_similarity_threshold
        self.score_conflict_threshold = score_conflict_threshold
        self.max_group_size = max_group_size
        self.max_workers = max_workers
        self.token_counter_model = token_counter_model

        # Statistics
        self.fuse_count = 0
        self.group_count = 0
        self.conflict_count = 0
        self.ambiguity_count = 0
        self.superseded_count = 0
        self.budget_skipped_count = 0

    async def fuse(
        self,
        scored_chunks: Sequence[ContextChunk],
        request: ContextRequest,
        timeout: float | None = None,
    ) -> FusionResult:
        """Fuse scored chunks into a ranked, budget-bounded result.

        Args:
            scored_chunks: Chunks carrying relevance scores
            request: Supplies max_tokens and max_chunks
            timeout: Deadline in seconds (None = no deadline)

        Returns:
            Fusion result with final chunks, conflicts, and quality assessments

        Raises:
            StageTimeoutError: If the deadline passes; no partial result is returned
        """
        try:
            async with asyncio.timeout(timeout) as deadline:
                result = await self._fuse(scored_chunks, request)
                # The budget trim is synchronous, so a deadline passed there never cancels
                when = deadline.when()
                if when is not None and asyncio.get_running_loop().time() >= when:
                    raise TimeoutError
        except TimeoutError as e:
            raise StageTimeoutError(
                "fusion.fuse",
                resource_id=f"{len(scored_chunks)} chunks",
                reason=f"deadline of {timeout}s exceeded",
            ) from e

        self.fuse_count += 1
        self.group_count += result.group_count
        self.conflict_count += sum(
            1 for c in result.conflicts if c.conflict_type is not ConflictType.NONE
        )
        self.ambiguity_count += sum(1 for c in result.conflicts if c.ambiguous)
        self.superseded_count += result.superseded_count
        self.budget_skipped_count += result.budget_skipped_count
        logger.info(
            "Fused %d chunks into %d groups, returning %d",
            result.input_count,
            result.group_count,
            len(result.final_chunks),
        )
        return result

    async def _fuse(
        self, scored_chunks: Sequence[ContextChunk], request: ContextRequest
    ) -> FusionResult:
        chunks = self._deduplicate(scored_chunks)
        if not chunks:
            return FusionResult(input_count=len(scored_chunks))

        chunks = await self._ensure_embeddings(chunks)
        ordered = sorted(chunks, key=resolution_key)
        groups = await self._group(ordered)

        by_id = {chunk.id: chunk for chunk in ordered}
        semaphore = asyncio.Semaphore(self.max_workers)

        async def process(
            group: SemanticGroup,
        ) -> tuple[ContextChunk, ConflictResolutionResult | None, QualityAssessment]:
            async with semaphore:
                members = [by_id[chunk_id] for chunk_id in group.chunk_ids]
                resolution = self._resolve(group, members) if group.size > 1 else None
                quality = self.scoring_engine.assess_group_quality(group.id, members)
                return members[0], resolution, quality

        # gather preserves group order regardless of completion order
        processed = await asyncio.gather(*(process(group) for group in groups))

        group_info: dict[str, tuple[SemanticGroup, QualityAssessment]] = {}
        winners: list[ContextChunk] = []
        conflicts: list[ConflictResolutionResult] = []
        quality: list[QualityAssessment] = []
        for group, (winner, resolution, assessment) in zip(groups, processed, strict=True):
            winners.append(winner)
            quality.append(assessment)
            group_info[winner.id] = (group, assessment)
            if resolution is not None:
                conflicts.append(resolution)

        final_chunks, skipped = self._fit_to_budget(
            sorted(winners, key=rank_key), request, group_info
        )
        return FusionResult(
            final_chunks=final_chunks,
            conflicts=conflicts,
            quality=quality,
            groups=groups,
            input_count=len(scored_chunks),
            superseded_count=sum(len(c.superseded) for c in conflicts),
            budget_skipped_count=skipped,
        )

    @staticmethod
    def _deduplicate(chunks: Sequence[ContextChunk]) -> list[ContextChunk]:
        """Keep one chunk per id: the highest scored, then the resolution chain."""
        best: dict[str, ContextChunk] = {}
        for chunk in sorted(chunks, key=lambda c: (rank_key(c), c.content)):
            best.setdefault(chunk.id, chunk)
        return list(best.values())

    async def _ensure_embeddings(self, chunks: list[ContextChunk]) -> list[ContextChunk]:
        if self.embedding_service is None:
            return chunks
        missing = [chunk for chunk in chunks if not chunk.has_embedding and chunk.content.strip()]
        if not missing:
            return chunks

        try:
            embeddings = await self.embedding_service.generate_batch(
                [chunk.content for chunk in missing]
            )
        except Exception as e:
            logger.warning("Chunk embedding failed, grouping by text: %s", e)
            return chunks

        embedded = {
            chunk.id: chunk.model_copy(update={"embedding": embedding})
            for chunk, embedding in zip(missing, embeddings, strict=True)
        }
        return [embedded.get(chunk.id, chunk) for chunk in chunks]

    async def _group(self, ordered: list[ContextChunk]) -> list[SemanticGroup]:
        """Leader clustering over chunks in canonical order.

        A chunk joins the first group whose leader is similar enough and
        which still has room; otherwise it leads a new group.
        """
        words = [word_set(chunk.content) for chunk in ordered]
        vectors: list[np.ndarray | None] = []
        for chunk in ordered:
            if chunk.has_embedding:
                vector = np.asarray(chunk.embedding, dtype=np.float64)
                norm = np.linalg.norm(vector)
                vectors.append(vector / norm if norm > 0 else None)
            else:
                vectors.append(None)

        leaders: list[int] = []
        members: list[list[int]] = []
        methods: list[set[str]] = []
        for i in range(len(ordered)):
            if i and i % _GROUPING_YIELD_EVERY == 0:
                await asyncio.sleep(0)

            placed = False
            for g, leader in enumerate(leaders):
                if len(members[g]) >= self.max_group_size:
                    continue
                similar, method = self._similar(vectors[leader], vectors[i], words[leader], words[i])
                if similar:
                    members[g].append(i)
                    methods[g].add(method)
                    placed = True
                    break
            if not placed:
                leaders.append(i)
                members.append([i])
                methods.append(set())

        groups = []
        for g, indices in enumerate(members):
            if len(indices) == 1:
                method = "singleton"
            elif "embedding" in methods[g]:
                method = "embedding"
            else:
                method = "text"
            groups.append(
                SemanticGroup(
                    id=f"group-{g}",
                    chunk_ids=[ordered[i].id for i in indices],
                    method=method,
                )
            )
        return groups

    def _similar(
        self,
        a_vector: np.ndarray | None,
        b_vector: np.ndarray | None,
        a_words: frozenset[str],
        b_words: frozenset[str],
    ) -> tuple[bool, str]:
        if a_vector is not None and b_vector is not None and a_vector.shape == b_vector.shape:
            return float(np.dot(a_vector, b_vector)) >= self.similarity_threshold, "embedding"
        return jaccard(a_words, b_words) >= self.text_similarity_threshold, "text"

    def _resolve(
        self, group: SemanticGroup, members: list[ContextChunk]
    ) -> ConflictResolutionResult:
        """Keep the first member under the resolution chain, supersede the rest."""
        winner = members[0]
        superseded: list[SupersededChunk] = []
        ambiguous = False
        for member in members[1:]:
            rationale = self._rationale(winner, member)
            if rationale is ResolutionRationale.DUPLICATE:
                ambiguous = True
            superseded.append(
                SupersededChunk(chunk_id=member.id, superseded_by=winner.id, rationale=rationale)
            )

        if ambiguous:
            logger.debug("Group %s had members tied on every criterion; kept %s", group.id, winner.id)

        return ConflictResolutionResult(
            group_id=group.id,
            winner_ids=[winner.id],
            superseded=superseded,
            conflict_type=self._detect_conflict(members),
            ambiguous=ambiguous,
        )

    @staticmethod
    def _rationale(winner: ContextChunk, loser: ContextChunk) -> ResolutionRationale:
        if winner.source.authority_score != loser.source.authority_score:
            return ResolutionRationale.SUPERSEDED_BY_AUTHORITY
        if winner.source.freshness_score != loser.source.freshness_score:
            return ResolutionRationale.SUPERSEDED_BY_FRESHNESS
        if winner.score_value != loser.score_value:
            return ResolutionRationale.SUPERSEDED_BY_RELEVANCE
        return ResolutionRationale.DUPLICATE

    def _detect_conflict(self, members: list[ContextChunk]) -> ConflictType:
        claims = [numeric_claims(member.content) for member in members]
        for a, b in combinations(claims, 2):
            if a and b and a != b:
                return ConflictType.CLAIM_DISAGREEMENT

        scores = [member.score_value for member in members]
        if max(scores) - min(scores) > self.score_conflict_threshold:
            return ConflictType.SCORE_DIVERGENCE
        return ConflictType.NONE

    def _fit_to_budget(
        self,
        ranked: list[ContextChunk],
        request: ContextRequest,
        group_info: dict[str, tuple[SemanticGroup, QualityAssessment]],
    ) -> tuple[list[ContextChunk], int]:
        """Greedy acceptance in rank order.

        Chunks that do not fit the remaining token budget are skipped and
        iteration continues, so smaller chunks further down still get in.
        """
        accepted: list[ContextChunk] = []
        used_tokens = 0
        skipped = 0
        for chunk in ranked:
            if request.max_chunks is not None and len(accepted) >= request.max_chunks:
                break
            tokens = chunk_tokens(chunk, self.token_counter_model)
            if used_tokens + tokens > request.max_tokens:
                skipped += 1
                continue

            group, assessment = group_info[chunk.id]
            accepted.append(
                chunk.model_copy(
                    update={
                        "token_count": tokens,
                        "metadata": {
                            **chunk.metadata,
                            "fusion_group_id": group.id,
                            "fusion_group_size": group.size,
                            "quality_score": assessment.overall_score,
                        },
                    }
                )
            )
            used_tokens += tokens
        return accepted, skipped

    def get_stats(self) -> dict[str, Any]:
        """Read-only fusion diagnostics."""
        return {
            "fuse_count": self.fuse_count,
            "group_count": self.group_count,
            "conflict_count": self.conflict_count,
            "ambiguity_count": self.ambiguity_count,
            "superseded_count": self.superseded_count,
            "budget_skipped_count": self.budget_skipped_count,
        }
