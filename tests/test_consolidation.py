# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for consolidation sweeps.

Covers tier transitions, deletion of expired and unimportant memories,
merging of near-duplicates, capacity eviction, idempotence, dry runs,
partial failure and cancellation.
"""

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import BASE_TIME, build_memory
from tiered_memory.config import DEFAULT_TIER_CONFIGS, MemoryEngineConfig
from tiered_memory.deadline import Deadline
from tiered_memory.exceptions import StorageError
from tiered_memory.janitor import ConsolidationScheduler, Merger
from tiered_memory.providers import InMemoryMemoryStore
from tiered_memory.schemas import (
    ConfidenceBasis,
    ConsolidationOptions,
    MemoryTier,
    MergeRecord,
    TierChange,
)

W, S, L, E = (
    MemoryTier.WORKING,
    MemoryTier.SHORT_TERM,
    MemoryTier.LONG_TERM,
    MemoryTier.EPISODIC,
)
TWO_DAYS_AGO = BASE_TIME - timedelta(days=2)


def options(**kwargs):
    return ConsolidationOptions(tenant_id="tenant-1", **kwargs)


# ============================================================================
# Store doubles
# ============================================================================


class FailingStore(InMemoryMemoryStore):
    """Store whose tier updates fail for selected ids."""

    def __init__(self, failing_ids, **kwargs):
        super().__init__(**kwargs)
        self.failing_ids = set(failing_ids)

    async def update_tier(self, memory_id, *args, **kwargs):
        if memory_id in self.failing_ids:
            raise StorageError("database unavailable")
        return await super().update_tier(memory_id, *args, **kwargs)


class ConcurrentWriterStore(InMemoryMemoryStore):
    """Store where another writer touches every candidate after it is read."""

    async def get_for_consolidation(self, *args, **kwargs):
        candidates = await super().get_for_consolidation(*args, **kwargs)
        for memory in candidates:
            await self.update(memory.id, {"tags": ["touched"]})
        return candidates


class CancellingStore(InMemoryMemoryStore):
    """Store that sets a cancel event on the first tier change."""

    def __init__(self, cancel_event, **kwargs):
        super().__init__(**kwargs)
        self.cancel_event = cancel_event

    async def update_tier(self, *args, **kwargs):
        self.cancel_event.set()
        return await super().update_tier(*args, **kwargs)


@pytest.fixture
def scheduler(store, clock):
    return ConsolidationScheduler(store, clock=clock)


# ============================================================================
# Tier transitions
# ============================================================================


class TestTransitions:
    """Tests for tier changes made by a sweep."""

    @pytest.mark.asyncio
    async def test_working_memory_promoted(self, store, scheduler, clock):
        await store.save(build_memory("m1", tier=W, created_at=TWO_DAYS_AGO))

        result = await scheduler.consolidate(options())

        assert result.promoted == [TierChange("m1", W, S)]
        memory = await store.get("m1")
        assert memory.tier == S
        assert memory.metadata.tier_changed_at == clock.now

    @pytest.mark.asyncio
    async def test_young_memories_are_not_candidates(self, store, scheduler):
        await store.save(build_memory("m1", tier=W, created_at=BASE_TIME - timedelta(hours=1)))

        result = await scheduler.consolidate(options())

        assert result.processed == 0
        assert (await store.get("m1")).tier == W

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_promotion_never_skips_a_tier(self, store, scheduler, clock):
        await store.save(
            build_memory(
                "m1",
                tier=W,
                importance=0.95,
                access_count=10,
                reinforcements=5,
                created_at=TWO_DAYS_AGO,
            )
        )

        await scheduler.consolidate(options())
        assert (await store.get("m1")).tier == S

        # Second step only after spending min_age in short-term
        await scheduler.consolidate(options())
        assert (await store.get("m1")).tier == S

        clock.advance(hours=25)
        result = await scheduler.consolidate(options())
        assert result.promoted == [TierChange("m1", S, L)]

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_stale_short_term_memory_archived(self, store, clock):
        """A short-term memory untouched for 90 days is archived."""
        await store.save(
            build_memory(
                "m1",
                tier=S,
                importance=0.5,
                rate_per_day=0.02,
                created_at=BASE_TIME - timedelta(days=90),
            )
        )
        scheduler = ConsolidationScheduler(store, clock=clock)

        result = await scheduler.consolidate(options())

        assert result.archived == [TierChange("m1", S, E)]
        memory = await store.get("m1")
        assert memory.tier == E
        assert memory.decay.score < 0.3

    @pytest.mark.asyncio
    async def test_protected_memory_not_archived(self, store, scheduler):
        await store.save(
            build_memory(
                "m1",
                tier=S,
                importance=0.95,
                protected=True,
                decay_score=0.05,
                created_at=TWO_DAYS_AGO,
                tier_changed_at=BASE_TIME - timedelta(hours=30),
            )
        )

        result = await scheduler.consolidate(options())

        assert result.is_empty
        assert (await store.get("m1")).tier == S

    @pytest.mark.asyncio
    async def test_long_term_demotion(self, store, scheduler):
        await store.save(
            build_memory("m1", tier=L, importance=0.2, decay_score=0.25, created_at=TWO_DAYS_AGO)
        )

        result = await scheduler.consolidate(options())

        assert result.demoted == [TierChange("m1", L, S)]

    @pytest.mark.asyncio
    async def test_long_term_archive(self, store, scheduler):
        await store.save(
            build_memory("m1", tier=L, importance=0.5, decay_score=0.08, created_at=TWO_DAYS_AGO)
        )

        result = await scheduler.consolidate(options())

        assert result.archived == [TierChange("m1", L, E)]

    @pytest.mark.asyncio
    async def test_expired_and_unimportant_deleted(self, store, scheduler):
        await store.save_batch(
            [
                build_memory(
                    "expired", created_at=TWO_DAYS_AGO, expires_at=BASE_TIME - timedelta(hours=1)
                ),
                build_memory("trivial", importance=0.05, created_at=TWO_DAYS_AGO),
            ]
        )

        result = await scheduler.consolidate(options())

        assert sorted(result.deleted) == ["expired", "trivial"]
        assert (await store.get("expired")).is_deleted
        assert (await store.get("trivial")).is_deleted

    @pytest.mark.asyncio
    async def test_decay_is_materialized(self, store, scheduler, clock):
        await store.save(build_memory("m1", tier=L, importance=0.5, created_at=TWO_DAYS_AGO))

        await scheduler.consolidate(options())

        memory = await store.get("m1")
        assert memory.decay.last_calculated == clock.now
        assert memory.decay.score == pytest.approx(0.8187, abs=1e-4)

    @pytest.mark.asyncio
    async def test_scoped_to_user(self, store, scheduler):
        await store.save_batch(
            [
                build_memory("mine", created_at=TWO_DAYS_AGO),
                build_memory("theirs", user_id="user-2", created_at=TWO_DAYS_AGO),
            ]
        )

        result = await scheduler.consolidate(options(user_id="user-1"))

        assert [c.memory_id for c in result.promoted] == ["mine"]
        assert (await store.get("theirs")).tier == W


# ============================================================================
# Sweep guarantees
# ============================================================================


class TestSweepGuarantees:
    """Tests for idempotence, dry runs, failures and cancellation."""

    async def _seed(self, store):
        await store.save_batch(
            [
                build_memory("promote", tier=W, created_at=TWO_DAYS_AGO),
                build_memory(
                    "archive",
                    tier=S,
                    rate_per_day=0.02,
                    created_at=BASE_TIME - timedelta(days=90),
                ),
                build_memory("keep", tier=L, importance=0.5, created_at=TWO_DAYS_AGO),
                build_memory(
                    "expire", created_at=TWO_DAYS_AGO, expires_at=BASE_TIME - timedelta(hours=1)
                ),
            ]
        )

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_second_sweep_is_a_no_op(self, store, scheduler):
        await self._seed(store)

        first = await scheduler.consolidate(options(merge_similar=True))
        versions = {m.id: m.version for m in store._memories.values()}
        second = await scheduler.consolidate(options(merge_similar=True))

        assert not first.is_empty
        assert second.is_empty
        assert second.failures == []
        assert {m.id: m.version for m in store._memories.values()} == versions

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, store, scheduler):
        await self._seed(store)

        result = await scheduler.consolidate(options(dry_run=True))

        assert result.dry_run
        assert [c.memory_id for c in result.promoted] == ["promote"]
        assert [c.memory_id for c in result.archived] == ["archive"]
        assert result.deleted == ["expire"]
        for memory in store._memories.values():
            assert memory.version == 1
            assert not memory.is_deleted

    @pytest.mark.asyncio
    async def test_dry_run_matches_real_run(self, store, scheduler):
        await self._seed(store)

        planned = await scheduler.consolidate(options(dry_run=True))
        applied = await scheduler.consolidate(options())

        assert planned.promoted == applied.promoted
        assert planned.archived == applied.archived
        assert planned.deleted == applied.deleted

    @pytest.mark.asyncio
    async def test_item_failure_does_not_abort_sweep(self, clock):
        store = FailingStore({"bad"}, clock=clock)
        await store.save_batch(
            [
                build_memory("bad", created_at=TWO_DAYS_AGO),
                build_memory("good", created_at=TWO_DAYS_AGO),
            ]
        )
        scheduler = ConsolidationScheduler(store, clock=clock)

        result = await scheduler.consolidate(options())

        assert [c.memory_id for c in result.promoted] == ["good"]
        assert len(result.failures) == 1
        assert result.failures[0].memory_id == "bad"
        assert "database unavailable" in result.failures[0].error
        assert (await store.get("bad")).tier == W

    @pytest.mark.asyncio
    async def test_concurrent_write_is_reported_not_overwritten(self, clock):
        store = ConcurrentWriterStore(clock=clock)
        await store.save(build_memory("m1", created_at=TWO_DAYS_AGO))
        scheduler = ConsolidationScheduler(store, clock=clock)

        result = await scheduler.consolidate(options())

        assert result.promoted == []
        assert [f.memory_id for f in result.failures] == ["m1"]
        memory = await store.get("m1")
        assert memory.tier == W
        assert memory.tags == ["touched"]

    @pytest.mark.asyncio
    async def test_pre_cancelled_sweep_does_nothing(self, store, scheduler):
        await self._seed(store)
        cancel = asyncio.Event()
        cancel.set()

        result = await scheduler.consolidate(options(), deadline=Deadline(cancel_event=cancel))

        assert result.cancelled
        assert result.processed == 0
        assert result.is_empty

    @pytest.mark.asyncio
    async def test_cancellation_returns_partial_result(self, clock):
        cancel = asyncio.Event()
        store = CancellingStore(cancel, clock=clock)
        await store.save_batch(
            [
                build_memory("a", created_at=TWO_DAYS_AGO),
                build_memory("b", created_at=TWO_DAYS_AGO),
            ]
        )
        scheduler = ConsolidationScheduler(store, clock=clock)

        result = await scheduler.consolidate(options(), deadline=Deadline(cancel_event=cancel))

        assert result.cancelled
        assert result.processed == 1
        assert result.promoted == [TierChange("a", W, S)]
        assert (await store.get("b")).tier == W


# ============================================================================
# Merging
# ============================================================================


class TestMerging:
    """Tests for near-duplicate merging."""

    async def _seed(self, store):
        await store.save_batch(
            [
                build_memory(
                    "a",
                    tier=L,
                    importance=0.7,
                    confidence=0.8,
                    content="User likes hiking",
                    vector=[1.0, 0.0, 0.0, 0.0],
                    tags=["outdoors"],
                    created_at=TWO_DAYS_AGO,
                ),
                build_memory(
                    "b",
                    tier=L,
                    importance=0.5,
                    confidence=0.9,
                    reinforcements=2,
                    content="User likes hiking in the mountains on weekends",
                    vector=[0.99, 0.01, 0.0, 0.0],
                    tags=["hobby", "outdoors"],
                    created_at=TWO_DAYS_AGO,
                ),
                build_memory(
                    "c",
                    tier=L,
                    importance=0.5,
                    content="User owns a cat",
                    vector=[0.0, 1.0, 0.0, 0.0],
                    created_at=TWO_DAYS_AGO,
                ),
                build_memory(
                    "other-user",
                    user_id="user-2",
                    tier=L,
                    importance=0.5,
                    content="User likes hiking",
                    vector=[1.0, 0.0, 0.0, 0.0],
                    created_at=TWO_DAYS_AGO,
                ),
            ]
        )

    @pytest.mark.asyncio
    async def test_merge_folds_duplicates_into_survivor(self, store, scheduler):
        await self._seed(store)

        result = await scheduler.consolidate(options(merge_similar=True))

        assert result.merged == [MergeRecord(source_ids=("b",), target_id="a")]

        survivor = await store.get("a")
        assert survivor.tags == ["outdoors", "hobby"]
        assert survivor.content == "User likes hiking in the mountains on weekends"
        assert survivor.embedding.vector == [0.99, 0.01, 0.0, 0.0]
        assert survivor.importance_score == 0.7
        assert survivor.confidence.score == 0.9
        assert survivor.confidence.reinforcements == 3
        assert survivor.confidence.basis == ConfidenceBasis.REPEATED

        source = await store.get("b")
        assert source.is_deleted
        assert source.superseded_by == ["a"]

        assert not (await store.get("c")).is_deleted
        assert not (await store.get("other-user")).is_deleted

    @pytest.mark.asyncio
    async def test_merge_disabled_by_default(self, store, scheduler):
        await self._seed(store)
        result = await scheduler.consolidate(options())
        assert result.merged == []

    @pytest.mark.asyncio
    async def test_merge_threshold_override(self, store, scheduler):
        await self._seed(store)
        result = await scheduler.consolidate(options(merge_similar=True, merge_threshold=1.0))
        assert result.merged == []

    def test_merge_plan_is_deterministic(self):
        memories = [
            build_memory(i, importance=0.5, vector=[1.0, 0.0, 0.0, 0.0]) for i in ("c", "a", "b")
        ]
        plans = Merger(0.95).plan(memories)
        assert len(plans) == 1
        assert plans[0].survivor.id == "a"
        assert [m.id for m in plans[0].sources] == ["b", "c"]


# ============================================================================
# Capacity
# ============================================================================


class TestCapacity:
    """Tests for per-user tier capacity enforcement."""

    def _config(self, tier, max_memories):
        tiers = dict(DEFAULT_TIER_CONFIGS)
        tiers[tier] = replace(tiers[tier], max_memories=max_memories)
        return MemoryEngineConfig(tiers=tiers)

    @pytest.mark.asyncio
    async def test_overflow_evicted_one_step(self, store, clock):
        recent = BASE_TIME - timedelta(hours=1)
        await store.save_batch(
            [
                build_memory("a", tier=W, decay_score=0.9, created_at=recent),
                build_memory("b", tier=W, decay_score=0.2, created_at=recent),
                build_memory("c", tier=W, decay_score=0.5, created_at=recent),
                build_memory("d", tier=W, decay_score=0.4, created_at=recent),
            ]
        )
        scheduler = ConsolidationScheduler(store, config=self._config(W, 2), clock=clock)

        result = await scheduler.consolidate(options())

        assert result.promoted == [TierChange("b", W, S), TierChange("d", W, S)]
        assert await store.count_by_user("user-1", "tenant-1", W) == 2

        second = await scheduler.consolidate(options())
        assert second.is_empty

    @pytest.mark.asyncio
    async def test_promotions_into_full_tier_settle_before_eviction(self, store, clock):
        await store.save_batch(
            [
                build_memory("a", tier=W, created_at=TWO_DAYS_AGO),
                build_memory("b", tier=W, created_at=TWO_DAYS_AGO),
            ]
        )
        scheduler = ConsolidationScheduler(store, config=self._config(S, 1), clock=clock)

        first = await scheduler.consolidate(options())
        assert first.promoted == [TierChange("a", W, S), TierChange("b", W, S)]
        assert first.archived == []

        second = await scheduler.consolidate(options())
        assert second.is_empty

        clock.advance(hours=25)
        third = await scheduler.consolidate(options())
        assert third.archived == [TierChange("a", S, E)]
        assert await store.count_by_user("user-1", "tenant-1", S) == 1

    @pytest.mark.asyncio
    async def test_protected_memories_never_evicted_to_archive(self, store, clock):
        recent = BASE_TIME - timedelta(hours=1)
        await store.save_batch(
            [
                build_memory("p1", tier=S, importance=0.95, protected=True, created_at=recent),
                build_memory("p2", tier=S, importance=0.95, protected=True, created_at=recent),
            ]
        )
        scheduler = ConsolidationScheduler(store, config=self._config(S, 1), clock=clock)

        result = await scheduler.consolidate(options())

        assert result.archived == []
        assert await store.count_by_user("user-1", "tenant-1", S) == 2

    @pytest.mark.asyncio
    async def test_capacity_can_be_skipped(self, store, clock):
        recent = BASE_TIME - timedelta(hours=1)
        await store.save_batch([build_memory(f"m{i}", tier=W, created_at=recent) for i in range(3)])
        scheduler = ConsolidationScheduler(store, config=self._config(W, 1), clock=clock)

        result = await scheduler.consolidate(options(enforce_capacity=False))

        assert result.is_empty
