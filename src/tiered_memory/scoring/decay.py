# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Decay scoring.

Models forgetting with exponential decay:

    score = clamp(score_prev * exp(-rate_eff * days_elapsed))

Decay is lazy. A memory stores ``decay.score`` as of
``decay.last_calculated``; the effective score at any later instant is
derived on demand. An access after the last calculation refreshes the
baseline to 1.0 at the access time. Memories whose importance is below
the accelerated-decay threshold decay ``accelerated_multiplier`` times
faster. Protected memories never decay.
"""

import math
from datetime import datetime
from typing import Optional

from tiered_memory.config import DecayConfig, ImportanceThresholds
from tiered_memory.schemas import DecayState, Memory, clamp_score, ensure_utc, utcnow

SECONDS_PER_DAY: float = 24 * 60 * 60


def days_between(start: datetime, end: datetime) -> float:
    """Elapsed days from start to end, never negative."""
    delta = ensure_utc(end) - ensure_utc(start)
    return max(0.0, delta.total_seconds() / SECONDS_PER_DAY)


class DecayCalculator:
    """Computes effective decay for memories.

    Example:
        >>> calc = DecayCalculator()
        >>> state = calc.initial_state(importance=0.5)
        >>> state.score
        1.0
    """

    def __init__(
        self,
        config: Optional[DecayConfig] = None,
        thresholds: Optional[ImportanceThresholds] = None,
    ):
        self.config = config or DecayConfig()
        self.thresholds = thresholds or ImportanceThresholds()

    def is_protected(self, memory: Memory) -> bool:
        return memory.decay.protected

    def effective_rate(self, memory: Memory) -> float:
        """Per-day rate actually applied to a memory."""
        rate = memory.decay.rate_per_day
        if memory.importance_score < self.thresholds.accelerated_decay:
            rate *= self.config.accelerated_multiplier
        return rate

    def _baseline(self, memory: Memory) -> tuple[float, datetime]:
        """Score and timestamp decay is measured from."""
        last_calculated = ensure_utc(memory.decay.last_calculated)
        last_accessed = memory.metadata.last_accessed_at
        if last_accessed is not None and ensure_utc(last_accessed) > last_calculated:
            return 1.0, ensure_utc(last_accessed)
        return memory.decay.score, last_calculated

    def effective_decay(self, memory: Memory, now: Optional[datetime] = None) -> float:
        """Decay score of a memory at ``now``.

        Args:
            memory: Memory to evaluate.
            now: Evaluation time (defaults to the current time).

        Returns:
            Effective decay score in [0, 1].
        """
        now = now or utcnow()
        prev, since = self._baseline(memory)
        if self.is_protected(memory):
            return clamp_score(prev)
        elapsed = days_between(since, now)
        return clamp_score(prev * math.exp(-self.effective_rate(memory) * elapsed))

    def refreshed_state(self, memory: Memory, now: Optional[datetime] = None) -> DecayState:
        """DecayState with the effective score materialized at ``now``."""
        now = now or utcnow()
        return memory.decay.model_copy(
            update={"score": self.effective_decay(memory, now), "last_calculated": now}
        )

    def initial_state(self, importance: float, now: Optional[datetime] = None) -> DecayState:
        """Decay state for a freshly created memory."""
        return DecayState(
            score=1.0,
            rate_per_day=self.config.default_rate_per_day,
            last_calculated=now or utcnow(),
            protected=importance >= self.thresholds.decay_protection,
        )

    def days_until(
        self, memory: Memory, floor: float, now: Optional[datetime] = None
    ) -> Optional[float]:
        """Days from ``now`` until effective decay reaches ``floor``.

        Returns None for protected memories (they never get there) and
        0.0 when the memory is already at or below the floor.
        """
        if self.is_protected(memory):
            return None
        current = self.effective_decay(memory, now)
        if current <= floor:
            return 0.0
        if floor <= 0.0:
            return None
        return math.log(current / floor) / self.effective_rate(memory)
