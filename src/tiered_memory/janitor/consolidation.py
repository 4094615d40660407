# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Consolidation sweeps.

A sweep fetches eligible memories (live, not episodic, in their tier for
at least ``min_age_hours``), most at-risk first, and for each one:

1. Recomputes effective decay.
2. Soft-deletes it when expired or below the minimum-store importance.
3. Applies at most one single-step tier transition recommended by the
   TierManager (promotion, demotion or archive).
4. Otherwise persists the refreshed decay score.

Then, optionally, near-duplicates among the surviving candidates are
merged and per-user tier capacity is enforced.

Every write is fenced on the version read at the start of the sweep, so
two overlapping sweeps cannot double-apply a transition; the loser sees
ConcurrencyConflict and records it as an item failure. Because
eligibility age is measured from the tier entry time, an immediate
second sweep finds nothing further to do.
"""

import logging
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Optional

from tiered_memory.config import MemoryEngineConfig
from tiered_memory.deadline import Deadline
from tiered_memory.exceptions import ConcurrencyConflict, NotFoundError, StorageError
from tiered_memory.janitor.merge import Merger
from tiered_memory.lifecycle.tiers import TierDecision, TierManager, TransitionKind
from tiered_memory.protocols import MemoryCriteria, MemoryStore
from tiered_memory.schemas import (
    ConsolidationOptions,
    ConsolidationResult,
    ItemFailure,
    Memory,
    MemoryTier,
    MergeRecord,
    TierChange,
    ensure_utc,
    utcnow,
)
from tiered_memory.scoring.decay import DecayCalculator

logger = logging.getLogger(__name__)

# Errors a sweep records per item instead of aborting
ITEM_ERRORS = (StorageError, ConcurrencyConflict, NotFoundError)

# Order in which bounded tiers are checked for overflow
CAPACITY_ORDER = (MemoryTier.WORKING, MemoryTier.SHORT_TERM, MemoryTier.LONG_TERM)


class ConsolidationScheduler:
    """Runs consolidation sweeps against a MemoryStore.

    Example:
        >>> scheduler = ConsolidationScheduler(store)
        >>> result = await scheduler.consolidate(ConsolidationOptions(tenant_id="t1"))
        >>> print(f"Promoted {len(result.promoted)} memories")
    """

    def __init__(
        self,
        store: MemoryStore,
        config: Optional[MemoryEngineConfig] = None,
        tier_manager: Optional[TierManager] = None,
        decay_calculator: Optional[DecayCalculator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or MemoryEngineConfig()
        self.tier_manager = tier_manager or TierManager(self.config)
        self.decay_calculator = decay_calculator or DecayCalculator(
            self.config.decay, self.config.thresholds
        )
        self.clock = clock

    async def consolidate(
        self,
        options: ConsolidationOptions,
        deadline: Optional[Deadline] = None,
        now: Optional[datetime] = None,
    ) -> ConsolidationResult:
        """Run one sweep.

        Args:
            options: Scope and behavior of the sweep.
            deadline: Cancellation signal; defaults to ``options.timeout_seconds``.
            now: Evaluation time (defaults to the clock).

        Returns:
            ConsolidationResult describing what was done (or, for a dry
            run, what would be done). On cancellation the result covers
            the work completed so far and has ``cancelled=True``.
        """
        start_time = time.perf_counter()
        now = now or self.clock()
        deadline = deadline or Deadline(options.timeout_seconds)
        defaults = self.config.consolidation
        result = ConsolidationResult(dry_run=options.dry_run)

        min_age_hours = (
            options.min_age_hours if options.min_age_hours is not None else defaults.min_age_hours
        )
        candidates = await self.store.get_for_consolidation(
            options.tenant_id,
            user_id=options.user_id,
            min_age_hours=min_age_hours,
            limit=options.batch_size or defaults.batch_size,
            now=now,
        )

        survivors: list[Memory] = []
        moved: set[str] = set()
        for memory in candidates:
            if deadline.expired():
                result.cancelled = True
                break
            result.processed += 1
            try:
                outcome = await self._process(memory, now, options.dry_run, result)
            except ITEM_ERRORS as e:
                self._record_failure(result, memory.id, "consolidate", e)
                continue
            if outcome is None:
                continue
            if outcome.tier != memory.tier:
                moved.add(memory.id)
            survivors.append(outcome)

        if options.merge_similar and not result.cancelled:
            threshold = (
                options.merge_threshold
                if options.merge_threshold is not None
                else defaults.merge_threshold
            )
            live = [m for m in survivors if m.tier != MemoryTier.EPISODIC]
            await self._merge(live, threshold, options.dry_run, deadline, result)

        if options.enforce_capacity and not result.cancelled:
            settled_before = ensure_utc(now) - timedelta(hours=min_age_hours)
            await self._enforce_capacity(options, now, settled_before, moved, deadline, result)

        result.duration_ms = (time.perf_counter() - start_time) * 1000
        summary = (
            f"Consolidation for tenant {options.tenant_id}"
            f"{f' user {options.user_id}' if options.user_id else ''}: "
            f"processed={result.processed} promoted={len(result.promoted)} "
            f"demoted={len(result.demoted)} archived={len(result.archived)} "
            f"merged={len(result.merged)} deleted={len(result.deleted)} "
            f"failures={len(result.failures)}"
            f"{' (dry run)' if options.dry_run else ''}"
        )
        if result.cancelled:
            logger.warning(f"{summary} - cancelled before completion")
        else:
            logger.info(summary)
        return result

    # ------------------------------------------------------------------ #
    # Per-candidate decisions
    # ------------------------------------------------------------------ #

    async def _process(
        self,
        memory: Memory,
        now: datetime,
        dry_run: bool,
        result: ConsolidationResult,
    ) -> Optional[Memory]:
        """Decide and apply the action for one candidate.

        Returns the memory as it stands afterwards, or None if deleted.
        """
        decay = self.decay_calculator.effective_decay(memory, now)

        if memory.is_expired(now) or (
            memory.importance_score < self.config.thresholds.minimum_store
        ):
            logger.debug(f"Deleting memory {memory.id}: expired or below minimum importance")
            if not dry_run:
                await self.store.soft_delete(memory.id, expected_version=memory.version)
            result.deleted.append(memory.id)
            return None

        decision = self.tier_manager.evaluate(memory, decay, now)

        current = memory
        if not dry_run and self._decay_changed(memory, decay, now):
            current = await self.store.update_decay(
                memory.id, decay, calculated_at=now, expected_version=memory.version
            )

        if decision is None:
            return current

        logger.debug(
            f"Memory {memory.id}: {decision.from_tier} -> {decision.to_tier} ({decision.reason})"
        )
        if dry_run:
            current = memory.model_copy(update={"tier": decision.to_tier})
        else:
            current = await self.store.update_tier(
                memory.id,
                decision.to_tier,
                changed_at=now,
                expected_version=current.version,
            )
        self._record_change(result, decision)
        return current

    @staticmethod
    def _decay_changed(memory: Memory, decay: float, now: datetime) -> bool:
        return decay != memory.decay.score or memory.decay.last_calculated != now

    @staticmethod
    def _record_change(result: ConsolidationResult, decision: TierDecision) -> None:
        change = TierChange(
            memory_id=decision.memory_id,
            from_tier=decision.from_tier,
            to_tier=decision.to_tier,
        )
        if decision.kind == TransitionKind.PROMOTION:
            result.promoted.append(change)
        elif decision.kind == TransitionKind.DEMOTION:
            result.demoted.append(change)
        else:
            result.archived.append(change)

    @staticmethod
    def _record_failure(
        result: ConsolidationResult, memory_id: str, operation: str, error: Exception
    ) -> None:
        logger.warning(f"Skipping memory {memory_id} during {operation}: {error}")
        result.failures.append(
            ItemFailure(memory_id=memory_id, operation=operation, error=str(error))
        )

    @staticmethod
    def _recently_moved(memory: Memory, settled_before: datetime) -> bool:
        """True when a tier transition, not creation, put the memory in its tier
        after ``settled_before``."""
        changed_at = memory.metadata.tier_changed_at
        if changed_at is None:
            return False
        changed_at = ensure_utc(changed_at)
        return changed_at > ensure_utc(memory.metadata.created_at) and changed_at > settled_before

    # ------------------------------------------------------------------ #
    # Merging
    # ------------------------------------------------------------------ #

    async def _merge(
        self,
        memories: list[Memory],
        threshold: float,
        dry_run: bool,
        deadline: Deadline,
        result: ConsolidationResult,
    ) -> None:
        for plan in Merger(threshold).plan(memories):
            if deadline.expired():
                result.cancelled = True
                return
            survivor = plan.survivor
            if dry_run:
                result.merged.append(
                    MergeRecord(
                        source_ids=tuple(m.id for m in plan.sources), target_id=survivor.id
                    )
                )
                continue

            try:
                await self.store.update(
                    survivor.id, plan.survivor_updates(), expected_version=survivor.version
                )
            except ITEM_ERRORS as e:
                self._record_failure(result, survivor.id, "merge", e)
                continue

            merged_ids = []
            for source in plan.sources:
                try:
                    await self.store.update(
                        source.id,
                        {
                            "superseded_by": [*source.superseded_by, survivor.id],
                            "is_deleted": True,
                        },
                        expected_version=source.version,
                    )
                except ITEM_ERRORS as e:
                    self._record_failure(result, source.id, "merge", e)
                    continue
                merged_ids.append(source.id)

            if merged_ids:
                logger.debug(f"Merged {merged_ids} into {survivor.id}")
                result.merged.append(
                    MergeRecord(source_ids=tuple(merged_ids), target_id=survivor.id)
                )

    # ------------------------------------------------------------------ #
    # Capacity
    # ------------------------------------------------------------------ #

    async def _enforce_capacity(
        self,
        options: ConsolidationOptions,
        now: datetime,
        settled_before: datetime,
        moved: set[str],
        deadline: Deadline,
        result: ConsolidationResult,
    ) -> None:
        """Evict overflow from bounded tiers, one tier step per memory.

        Tiers are checked in forward order so working overflow landing in
        short-term is counted against short-term's bound. Memories moved by
        this sweep, or moved into their tier by a transition after
        ``settled_before``, stay put until they have been in the tier for
        ``min_age_hours``; the overflow is taken from the others.
        """
        for tier in CAPACITY_ORDER:
            if self.config.tier(tier).max_memories is None:
                continue
            target = self.tier_manager.eviction_target(tier)
            population = await self.store.find_by_criteria(
                MemoryCriteria(
                    tenant_id=options.tenant_id, user_id=options.user_id, tiers=(tier,)
                ),
                now=now,
            )
            by_user: dict[str, list[Memory]] = defaultdict(list)
            for memory in population:
                by_user[memory.user_id].append(memory)
            pinned = moved | {
                m.id for m in population if self._recently_moved(m, settled_before)
            }

            for user_id in sorted(by_user):
                evictions = self.tier_manager.select_evictions(
                    tier,
                    by_user[user_id],
                    lambda m: self.decay_calculator.effective_decay(m, now),
                    exclude=pinned,
                )
                for memory in evictions:
                    if deadline.expired():
                        result.cancelled = True
                        return
                    decision = TierDecision(
                        memory_id=memory.id,
                        from_tier=tier,
                        to_tier=target,
                        kind=self.tier_manager.transition_kind(tier, target),
                        reason="over capacity",
                    )
                    if not options.dry_run:
                        try:
                            await self.store.update_tier(
                                memory.id,
                                target,
                                changed_at=now,
                                expected_version=memory.version,
                            )
                        except ITEM_ERRORS as e:
                            self._record_failure(result, memory.id, "evict", e)
                            continue
                    moved.add(memory.id)
                    self._record_change(result, decision)
