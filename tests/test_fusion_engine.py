"""Tests for the fusion engine."""

import asyncio
import random
import time
from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from context_fusion.embeddings.base import EmbeddingProvider
from context_fusion.exceptions import StageTimeoutError
from context_fusion.models.context import ContextChunk, ContextRequest, ContextSource
from context_fusion.models.fusion import ConflictType, ResolutionRationale
from context_fusion.services.embedding_service import EmbeddingService
from context_fusion.services.fusion_engine import FusionEngine
from context_fusion.services.scoring_engine import ScoringEngine

TOWER = "The Eiffel Tower in Paris is 330 metres tall and was completed in 1889"


@pytest.mark.asyncio
class TestConflictResolution:
    """Test grouping and the resolution chain."""

    async def test_authority_wins_over_relevance(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        make_source: Callable[..., ContextSource],
        request_factory: Callable[..., ContextRequest],
    ):
        official = make_source("official", authority_score=0.9)
        blog = make_source("blog", authority_score=0.5)
        forum = make_source("forum", authority_score=0.5)
        chunks = [
            make_chunk("a", content=TOWER, source=official, relevance=0.7),
            make_chunk("b", content=TOWER + " indeed", source=blog, relevance=0.9),
            make_chunk("c", content="Indeed " + TOWER, source=forum, relevance=0.9),
        ]

        result = await fusion_engine.fuse(chunks, request_factory())

        assert [c.id for c in result.final_chunks] == ["a"]
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.winner_ids == ["a"]
        assert {(s.chunk_id, s.rationale) for s in conflict.superseded} == {
            ("b", ResolutionRationale.SUPERSEDED_BY_AUTHORITY),
            ("c", ResolutionRationale.SUPERSEDED_BY_AUTHORITY),
        }
        assert all(s.superseded_by == "a" for s in conflict.superseded)
        assert result.superseded_count == 2

    async def test_full_tie_resolved_by_id_and_flagged(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        chunks = [
            make_chunk("y", content=TOWER, relevance=0.5),
            make_chunk("x", content=TOWER, relevance=0.5),
        ]

        result = await fusion_engine.fuse(chunks, request_factory())

        assert [c.id for c in result.final_chunks] == ["x"]
        conflict = result.conflicts[0]
        assert conflict.ambiguous is True
        assert conflict.superseded[0].rationale is ResolutionRationale.DUPLICATE
        assert fusion_engine.get_stats()["ambiguity_count"] == 1

    async def test_freshness_then_relevance_break_ties(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        make_source: Callable[..., ContextSource],
        request_factory: Callable[..., ContextRequest],
    ):
        fresh = make_source("fresh", authority_score=0.5, freshness_score=1.0)
        stale = make_source("stale", authority_score=0.5, freshness_score=0.4)
        chunks = [
            make_chunk("stale-1", content=TOWER, source=stale, relevance=0.9),
            make_chunk("fresh-1", content=TOWER, source=fresh, relevance=0.6),
            make_chunk("fresh-2", content=TOWER, source=fresh, relevance=0.4),
        ]

        result = await fusion_engine.fuse(chunks, request_factory())

        rationales = {s.chunk_id: s.rationale for s in result.conflicts[0].superseded}
        assert [c.id for c in result.final_chunks] == ["fresh-1"]
        assert rationales == {
            "stale-1": ResolutionRationale.SUPERSEDED_BY_FRESHNESS,
            "fresh-2": ResolutionRationale.SUPERSEDED_BY_RELEVANCE,
        }

    async def test_claim_disagreement_detected(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        chunks = [
            make_chunk("a", content="The bridge is 120 metres long", relevance=0.5),
            make_chunk("b", content="The bridge is 150 metres long", relevance=0.5),
        ]

        result = await fusion_engine.fuse(chunks, request_factory())

        assert result.conflicts[0].conflict_type is ConflictType.CLAIM_DISAGREEMENT

    async def test_score_divergence_detected(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        chunks = [
            make_chunk("a", content="asyncio runs coroutines on an event loop", relevance=0.9),
            make_chunk("b", content="asyncio runs coroutines on an event loop", relevance=0.3),
        ]

        result = await fusion_engine.fuse(chunks, request_factory())

        assert result.conflicts[0].conflict_type is ConflictType.SCORE_DIVERGENCE

    async def test_dissimilar_chunks_form_singletons(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        chunks = [
            make_chunk("a", content="asyncio event loops schedule coroutines", relevance=0.5),
            make_chunk("b", content="numpy arrays support vectorized math", relevance=0.6),
        ]

        result = await fusion_engine.fuse(chunks, request_factory())

        assert result.conflicts == []
        assert [g.method for g in result.groups] == ["singleton", "singleton"]
        assert [c.id for c in result.final_chunks] == ["b", "a"]

    async def test_same_id_deduplicated(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        chunks = [
            make_chunk("a", content="first version", relevance=0.3),
            make_chunk("a", content="second version", relevance=0.8),
        ]

        result = await fusion_engine.fuse(chunks, request_factory())

        assert len(result.final_chunks) == 1
        assert result.final_chunks[0].content == "second version"
        assert result.input_count == 2


@pytest.mark.asyncio
class TestDeterminism:
    """Test output is a pure function of the input."""

    async def test_repeated_and_shuffled_runs_match(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        make_source: Callable[..., ContextSource],
        request_factory: Callable[..., ContextRequest],
    ):
        sources = [make_source(f"s{i}", authority_score=0.5) for i in range(3)]
        chunks = [
            make_chunk(
                f"c{i:02d}",
                content=TOWER if i % 2 else f"distinct topic number {i} about gardening",
                source=sources[i % 3],
                relevance=0.5,
            )
            for i in range(20)
        ]
        shuffled = list(chunks)
        random.Random(7).shuffle(shuffled)
        request = request_factory()

        first = await fusion_engine.fuse(chunks, request)
        second = await fusion_engine.fuse(chunks, request)
        third = await fusion_engine.fuse(shuffled, request)

        for other in (second, third):
            assert [c.id for c in other.final_chunks] == [c.id for c in first.final_chunks]
            assert [c.model_dump() for c in other.conflicts] == [
                c.model_dump() for c in first.conflicts
            ]


@pytest.mark.asyncio
class TestBudget:
    """Test token and chunk budgets."""

    async def test_oversized_chunks_skipped_not_stopping(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        topics = ["alpha beta", "gamma delta", "epsilon zeta", "eta theta"]
        sizes = [600, 500, 300, 100]
        relevances = [0.9, 0.8, 0.7, 0.6]
        chunks = [
            make_chunk(f"c{i}", content=topics[i], relevance=relevances[i], token_count=sizes[i])
            for i in range(4)
        ]

        result = await fusion_engine.fuse(chunks, request_factory(max_tokens=1000))

        assert [c.id for c in result.final_chunks] == ["c0", "c2", "c3"]
        assert result.total_tokens == 1000
        assert result.budget_skipped_count == 1

    async def test_max_chunks_respected(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        chunks = [
            make_chunk(f"c{i}", content=f"unique{i} words{i}", relevance=i / 10)
            for i in range(5)
        ]

        result = await fusion_engine.fuse(chunks, request_factory(max_chunks=2))

        assert [c.id for c in result.final_chunks] == ["c4", "c3"]

    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    async def test_budget_never_exceeded(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
        seed: int,
    ):
        rng = random.Random(seed)
        chunks = [
            make_chunk(
                f"c{i}",
                content=f"topic{i} detail{i}",
                relevance=rng.random(),
                token_count=rng.randint(1, 400),
            )
            for i in range(30)
        ]
        max_tokens = rng.randint(50, 2000)
        max_chunks = rng.randint(1, 15)

        result = await fusion_engine.fuse(
            chunks, request_factory(max_tokens=max_tokens, max_chunks=max_chunks)
        )

        assert sum(c.token_count for c in result.final_chunks) <= max_tokens
        assert len(result.final_chunks) <= max_chunks

    async def test_output_chunks_carry_fusion_metadata(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        chunks = [
            make_chunk("a", content=TOWER, relevance=0.8, metadata={"page": 1}),
            make_chunk("b", content=TOWER, relevance=0.4),
        ]

        result = await fusion_engine.fuse(chunks, request_factory())

        metadata = result.final_chunks[0].metadata
        assert metadata["page"] == 1
        assert metadata["fusion_group_id"] == "group-0"
        assert metadata["fusion_group_size"] == 2
        assert 0.0 <= metadata["quality_score"] <= 1.0

    async def test_empty_input(
        self, fusion_engine: FusionEngine, request_factory: Callable[..., ContextRequest]
    ):
        result = await fusion_engine.fuse([], request_factory())

        assert result.final_chunks == []
        assert result.group_count == 0


@pytest.mark.asyncio
class TestEmbeddingGrouping:
    """Test cosine grouping."""

    async def test_groups_by_embedding(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        chunks = [
            make_chunk("a", content="first", embedding=[1.0, 0.0], relevance=0.5),
            make_chunk("b", content="second", embedding=[0.99, 0.1], relevance=0.5),
            make_chunk("c", content="third", embedding=[0.0, 1.0], relevance=0.5),
        ]

        result = await fusion_engine.fuse(chunks, request_factory())

        assert [g.chunk_ids for g in result.groups] == [["a", "b"], ["c"]]
        assert result.groups[0].method == "embedding"

    async def test_missing_embeddings_generated(
        self,
        scoring_engine: ScoringEngine,
        embedding_service: EmbeddingService,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        engine = FusionEngine(scoring_engine, embedding_service=embedding_service, max_group_size=2)
        chunks = [
            make_chunk(f"c{i}", content=f"unrelated text {i * 7919}", relevance=0.5)
            for i in range(3)
        ]

        result = await engine.fuse(chunks, request_factory())

        # The mock provider returns identical vectors, so only the size cap splits groups
        assert [g.size for g in result.groups] == [2, 1]

    async def test_deadline_raises_timeout(
        self,
        scoring_engine: ScoringEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
    ):
        provider = AsyncMock(spec=EmbeddingProvider)

        async def slow_batch(texts: list[str], *, is_query: bool = False) -> list[list[float]]:
            await asyncio.sleep(1)
            return [[0.1] * 8 for _ in texts]

        provider.embed_batch.side_effect = slow_batch
        engine = FusionEngine(scoring_engine, embedding_service=EmbeddingService(provider))

        with pytest.raises(StageTimeoutError):
            await engine.fuse([make_chunk("a", relevance=0.5)], request_factory(), timeout=0.05)

    async def test_deadline_passed_during_budget_trim_raises_timeout(
        self,
        fusion_engine: FusionEngine,
        make_chunk: Callable[..., ContextChunk],
        request_factory: Callable[..., ContextRequest],
        monkeypatch: pytest.MonkeyPatch,
    ):
        fit_to_budget = fusion_engine._fit_to_budget

        def slow_fit(*args, **kwargs):
            time.sleep(0.1)
            return fit_to_budget(*args, **kwargs)

        monkeypatch.setattr(fusion_engine, "_fit_to_budget", slow_fit)

        with pytest.raises(StageTimeoutError):
            await fusion_engine.fuse(
                [make_chunk("a", relevance=0.5)], request_factory(), timeout=0.05
            )
        assert fusion_engine.fuse_count == 0
