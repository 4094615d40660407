# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Criteria-driven forgetting.

Selects live memories matching every supplied filter and soft- or
hard-deletes them. High-importance memories can be shielded with
``skip_high_importance``; decay-protected memories are never forgotten
on decay grounds. Soft-deleted memories no longer match, so repeating a
run forgets nothing new.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from tiered_memory.deadline import Deadline
from tiered_memory.exceptions import ConcurrencyConflict, NotFoundError, StorageError
from tiered_memory.protocols import MemoryCriteria, MemoryStore
from tiered_memory.schemas import ForgetCriteria, ForgetResult, ItemFailure, Memory, utcnow
from tiered_memory.scoring.decay import DecayCalculator

logger = logging.getLogger(__name__)


class ForgettingEngine:
    """Bulk removal of memories by criteria.

    Example:
        >>> engine = ForgettingEngine(store)
        >>> result = await engine.forget(ForgetCriteria(tenant_id="t1", tags=["temp"]))
        >>> print(f"Forgot {len(result.forgotten)} memories")
    """

    def __init__(
        self,
        store: MemoryStore,
        decay_calculator: Optional[DecayCalculator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.decay_calculator = decay_calculator or DecayCalculator()
        self.clock = clock

    def _store_criteria(self, criteria: ForgetCriteria) -> MemoryCriteria:
        return MemoryCriteria(
            tenant_id=criteria.tenant_id,
            user_id=criteria.user_id,
            chatbot_id=criteria.chatbot_id,
            types=tuple(criteria.types),
            tags=tuple(criteria.tags),
            contains_keywords=tuple(criteria.contains_keywords),
            memory_ids=tuple(criteria.memory_ids),
            older_than_days=criteria.older_than_days,
        )

    def _skip_reason(self, memory: Memory, criteria: ForgetCriteria) -> Optional[str]:
        """Why a matched memory must be kept, or None to forget it."""
        if criteria.decay_threshold is not None and memory.decay.protected:
            return "decay protected"
        if criteria.skip_high_importance and (
            memory.importance_score >= criteria.importance_threshold
        ):
            return "high importance"
        return None

    def _matches_decay(self, memory: Memory, criteria: ForgetCriteria, now: datetime) -> bool:
        if criteria.decay_threshold is None or memory.decay.protected:
            return True
        return self.decay_calculator.effective_decay(memory, now) <= criteria.decay_threshold

    async def forget(
        self,
        criteria: ForgetCriteria,
        deadline: Optional[Deadline] = None,
        now: Optional[datetime] = None,
    ) -> ForgetResult:
        """Forget memories matching ``criteria``.

        Every evaluated memory ends up in exactly one of ``forgotten`` or
        ``skipped``. A per-item storage failure is recorded in
        ``failures`` and the memory is counted as skipped.

        Args:
            criteria: Scope and filters (ANDed).
            deadline: Cancellation signal; defaults to ``criteria.timeout_seconds``.
            now: Evaluation time for decay and age filters.

        Returns:
            ForgetResult; partial with ``cancelled=True`` on deadline expiry.
        """
        start_time = time.perf_counter()
        now = now or self.clock()
        deadline = deadline or Deadline(criteria.timeout_seconds)
        result = ForgetResult(hard_delete=criteria.hard_delete)

        matched = await self.store.find_by_criteria(self._store_criteria(criteria), now=now)
        for memory in matched:
            if not self._matches_decay(memory, criteria, now):
                continue
            if deadline.expired():
                result.cancelled = True
                break
            result.evaluated += 1

            reason = self._skip_reason(memory, criteria)
            if reason is not None:
                logger.debug(f"Keeping memory {memory.id}: {reason}")
                result.skipped.append(memory.id)
                continue

            try:
                if criteria.hard_delete:
                    await self.store.hard_delete(memory.id)
                else:
                    await self.store.soft_delete(memory.id, expected_version=memory.version)
            except (StorageError, ConcurrencyConflict, NotFoundError) as e:
                logger.warning(f"Failed to forget memory {memory.id}: {e}")
                result.failures.append(
                    ItemFailure(memory_id=memory.id, operation="forget", error=str(e))
                )
                result.skipped.append(memory.id)
                continue
            result.forgotten.append(memory.id)

        result.duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Forget for tenant {criteria.tenant_id}: evaluated={result.evaluated} "
            f"forgotten={len(result.forgotten)} skipped={len(result.skipped)} "
            f"hard_delete={criteria.hard_delete}"
            f"{' (cancelled)' if result.cancelled else ''}"
        )
        return result
