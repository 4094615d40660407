# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Relevance-ranked retrieval.

Turns a free-text query into a ranked, diversified memory list:

    relevance = similarity
              + recency_boost * recency(days since last activity)
              + importance_boost * importance
              - (1 - effective_decay)

Recency halves every ``recency_half_life_days``. Effective decay is
computed at read time and never written back. Ordering ties fall back
to similarity, then id, so identical inputs always rank identically.
Diversity sampling is a greedy pass that rejects a candidate too similar
to one already selected.
"""

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from tiered_memory.config import MemoryEngineConfig
from tiered_memory.protocols import EmbeddingProvider, MemoryStore, VectorSearchOptions
from tiered_memory.retrieval.similarity import cosine_similarity
from tiered_memory.schemas import (
    Memory,
    MemoryRetrievalOptions,
    MemoryRetrievalQuery,
    MemoryRetrievalResult,
    MemoryTier,
    MemoryType,
    RetrievedMemory,
    ScoreBreakdown,
    ensure_utc,
    utcnow,
)
from tiered_memory.scoring.decay import DecayCalculator, days_between

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankingParams:
    """Retrieval options with configured defaults filled in."""

    limit: int
    similarity_threshold: float
    tiers: tuple[MemoryTier, ...]
    types: tuple[MemoryType, ...]
    tags: tuple[str, ...]
    max_age_days: Optional[float]
    recency_boost: float
    importance_boost: float
    diversity_sampling: bool
    diversity_threshold: float
    include_decaying: bool
    exclude_superseded: bool
    exclude_ids: frozenset[str]


class RetrievalRanker:
    """Ranks memories for a query.

    Example:
        >>> ranker = RetrievalRanker(store, embeddings)
        >>> result = await ranker.retrieve(
        ...     MemoryRetrievalQuery(query="where do I work", user_id="u1", tenant_id="t1")
        ... )
        >>> for hit in result.memories:
        ...     print(f"{hit.memory.content}: {hit.relevance_score:.2f}")
    """

    def __init__(
        self,
        store: MemoryStore,
        embeddings: EmbeddingProvider,
        config: Optional[MemoryEngineConfig] = None,
        decay_calculator: Optional[DecayCalculator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.embeddings = embeddings
        self.config = config or MemoryEngineConfig()
        self.decay_calculator = decay_calculator or DecayCalculator(
            self.config.decay, self.config.thresholds
        )
        self.clock = clock

    def resolve(self, options: Optional[MemoryRetrievalOptions] = None) -> RankingParams:
        """Fill unset options from the retrieval config."""
        options = options or MemoryRetrievalOptions()
        defaults = self.config.retrieval

        def pick(value, default):
            return default if value is None else value

        return RankingParams(
            limit=pick(options.limit, defaults.limit),
            similarity_threshold=pick(options.similarity_threshold, defaults.similarity_threshold),
            tiers=tuple(pick(options.tiers, defaults.tiers)),
            types=tuple(options.types),
            tags=tuple(options.tags),
            max_age_days=pick(options.max_age_days, defaults.max_age_days),
            recency_boost=pick(options.recency_boost, defaults.recency_boost),
            importance_boost=pick(options.importance_boost, defaults.importance_boost),
            diversity_sampling=pick(options.diversity_sampling, defaults.diversity_sampling),
            diversity_threshold=pick(options.diversity_threshold, defaults.diversity_threshold),
            include_decaying=options.include_decaying,
            exclude_superseded=options.exclude_superseded,
            exclude_ids=frozenset(options.exclude_ids),
        )

    # ------------------------------------------------------------------ #
    # Scoring
    # ------------------------------------------------------------------ #

    def calculate_recency(self, memory: Memory, now: datetime) -> float:
        """Recency in (0, 1], halving every half-life since last activity."""
        age_days = days_between(memory.metadata.last_activity_at, now)
        return math.pow(0.5, age_days / self.config.retrieval.recency_half_life_days)

    def score(
        self,
        memory: Memory,
        similarity: float,
        params: RankingParams,
        now: datetime,
    ) -> RetrievedMemory:
        effective_decay = self.decay_calculator.effective_decay(memory, now)
        recency = params.recency_boost * self.calculate_recency(memory, now)
        importance = params.importance_boost * memory.importance_score
        decay_penalty = 1.0 - effective_decay
        breakdown = ScoreBreakdown(
            similarity=similarity,
            recency=recency,
            importance=importance,
            decay_penalty=decay_penalty,
            effective_decay=effective_decay,
        )
        return RetrievedMemory(
            memory=memory,
            similarity_score=similarity,
            relevance_score=similarity + recency + importance - decay_penalty,
            score_breakdown=breakdown,
        )

    def _keep(self, memory: Memory, params: RankingParams, now: datetime) -> bool:
        if memory.is_expired(now):
            return False
        if params.exclude_superseded and memory.is_superseded:
            return False
        if params.max_age_days is not None:
            oldest = ensure_utc(now) - timedelta(days=params.max_age_days)
            if ensure_utc(memory.metadata.created_at) < oldest:
                return False
        if not params.include_decaying:
            decay = self.decay_calculator.effective_decay(memory, now)
            if decay < self.config.thresholds.minimum_store:
                return False
        return True

    def rank(
        self,
        candidates: Sequence[tuple[Memory, float]],
        params: RankingParams,
        now: datetime,
    ) -> list[RetrievedMemory]:
        """Score, filter and sort candidates (before diversity and limit)."""
        scored = [
            self.score(memory, similarity, params, now)
            for memory, similarity in candidates
            if self._keep(memory, params, now)
        ]
        scored.sort(key=lambda r: (-r.relevance_score, -r.similarity_score, r.memory.id))
        return scored

    def diversify(
        self, ranked: Sequence[RetrievedMemory], threshold: float, limit: int
    ) -> list[RetrievedMemory]:
        """Greedy selection skipping near-duplicates of already selected hits."""
        selected: list[RetrievedMemory] = []
        for candidate in ranked:
            if len(selected) >= limit:
                break
            vector = candidate.memory.embedding.vector if candidate.memory.embedding else None
            too_similar = vector is not None and any(
                chosen.memory.embedding is not None
                and cosine_similarity(vector, chosen.memory.embedding.vector) > threshold
                for chosen in selected
            )
            if not too_similar:
                selected.append(candidate)
        return selected

    def select(
        self, ranked: Sequence[RetrievedMemory], params: RankingParams
    ) -> list[RetrievedMemory]:
        """Final result list: diversified or simply truncated to the limit."""
        if params.diversity_sampling:
            return self.diversify(ranked, params.diversity_threshold, params.limit)
        return list(ranked[: params.limit])

    # ------------------------------------------------------------------ #
    # Retrieval
    # ------------------------------------------------------------------ #

    async def retrieve(
        self,
        query: MemoryRetrievalQuery,
        options: Optional[MemoryRetrievalOptions] = None,
        now: Optional[datetime] = None,
    ) -> MemoryRetrievalResult:
        """Answer a query with ranked memories.

        Args:
            query: Free-text query with tenant/user/chatbot scope.
            options: Ranking options; unset fields use configured defaults.
            now: Evaluation time for recency and decay.

        Returns:
            MemoryRetrievalResult with per-hit score breakdowns.
        """
        start_time = time.perf_counter()
        now = now or self.clock()
        params = self.resolve(options)

        embedding = await self.embeddings.embed(query.query)
        created_after = None
        if params.max_age_days is not None:
            created_after = ensure_utc(now) - timedelta(days=params.max_age_days)

        # Decay and diversity filter after the search; widen the pool until
        # the limit is filled or the store runs dry
        pool_size = params.limit * self.config.retrieval.candidate_multiplier
        while True:
            candidates = await self.store.vector_search(
                embedding.vector,
                query.user_id,
                query.tenant_id,
                VectorSearchOptions(
                    chatbot_id=query.chatbot_id,
                    include_global=query.include_global,
                    limit=pool_size,
                    tiers=params.tiers,
                    types=params.types,
                    tags=params.tags,
                    min_similarity=params.similarity_threshold,
                    exclude_ids=params.exclude_ids,
                    exclude_superseded=params.exclude_superseded,
                    active_at=now,
                    created_after=created_after,
                ),
            )
            ranked = self.rank(candidates, params, now)
            memories = self.select(ranked, params)
            if len(memories) >= params.limit or len(candidates) < pool_size:
                break
            pool_size *= 2

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"Retrieved {len(memories)}/{len(ranked)} memories for user {query.user_id} "
            f"in {duration_ms:.1f}ms"
        )
        return MemoryRetrievalResult(
            memories=memories,
            total_matched=len(ranked),
            query=query.query,
            query_embedding=list(embedding.vector),
            duration_ms=duration_ms,
            tiers_searched=list(params.tiers),
        )
