# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tier state machine.

The hierarchy is working -> short-term -> long-term, with episodic as a
terminal archive. Every transition moves exactly one step along this
table; nothing skips a tier:

    working    -> short-term  promotion (survived the working tier)
    short-term -> long-term   promotion (important and reinforced/accessed)
    short-term -> episodic    archive   (decayed or timed out unqualified)
    long-term  -> episodic    archive   (decayed below the archive floor)
    long-term  -> short-term  demotion  (decayed and unimportant)

Capacity eviction uses the same table: working overflows into
short-term, short-term and long-term overflow into episodic.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Callable, Collection, Mapping, Optional, Sequence

from tiered_memory.config import MemoryEngineConfig
from tiered_memory.exceptions import ValidationError
from tiered_memory.schemas import Memory, MemoryTier, ensure_utc, utcnow

logger = logging.getLogger(__name__)


class TransitionKind(str, Enum):
    """Category a tier transition is reported under."""

    PROMOTION = "promotion"
    DEMOTION = "demotion"
    ARCHIVE = "archive"

    def __str__(self) -> str:
        return self.value


TIER_TRANSITIONS: Mapping[tuple[MemoryTier, MemoryTier], TransitionKind] = MappingProxyType(
    {
        (MemoryTier.WORKING, MemoryTier.SHORT_TERM): TransitionKind.PROMOTION,
        (MemoryTier.SHORT_TERM, MemoryTier.LONG_TERM): TransitionKind.PROMOTION,
        (MemoryTier.SHORT_TERM, MemoryTier.EPISODIC): TransitionKind.ARCHIVE,
        (MemoryTier.LONG_TERM, MemoryTier.EPISODIC): TransitionKind.ARCHIVE,
        (MemoryTier.LONG_TERM, MemoryTier.SHORT_TERM): TransitionKind.DEMOTION,
    }
)

EVICTION_TARGETS: Mapping[MemoryTier, MemoryTier] = MappingProxyType(
    {
        MemoryTier.WORKING: MemoryTier.SHORT_TERM,
        MemoryTier.SHORT_TERM: MemoryTier.EPISODIC,
        MemoryTier.LONG_TERM: MemoryTier.EPISODIC,
    }
)


@dataclass(frozen=True)
class TierDecision:
    """A transition the tier manager recommends for one memory."""

    memory_id: str
    from_tier: MemoryTier
    to_tier: MemoryTier
    kind: TransitionKind
    reason: str


class TierManager:
    """Governs tier membership and transition eligibility.

    Example:
        >>> manager = TierManager()
        >>> manager.can_transition(MemoryTier.WORKING, MemoryTier.LONG_TERM)
        False
    """

    def __init__(self, config: Optional[MemoryEngineConfig] = None):
        self.config = config or MemoryEngineConfig()

    # ------------------------------------------------------------------ #
    # Transition table
    # ------------------------------------------------------------------ #

    def can_transition(self, from_tier: MemoryTier, to_tier: MemoryTier) -> bool:
        return (MemoryTier(from_tier), MemoryTier(to_tier)) in TIER_TRANSITIONS

    def transition_kind(self, from_tier: MemoryTier, to_tier: MemoryTier) -> TransitionKind:
        """Kind of a legal transition.

        Raises:
            ValidationError: If the transition is not in the table.
        """
        try:
            return TIER_TRANSITIONS[(MemoryTier(from_tier), MemoryTier(to_tier))]
        except KeyError:
            raise ValidationError(
                f"illegal tier transition {from_tier} -> {to_tier}"
            ) from None

    def promotion_target(self, tier: MemoryTier) -> Optional[MemoryTier]:
        return self._target(tier, TransitionKind.PROMOTION)

    def demotion_target(self, tier: MemoryTier) -> Optional[MemoryTier]:
        return self._target(tier, TransitionKind.DEMOTION)

    def archive_target(self, tier: MemoryTier) -> Optional[MemoryTier]:
        return self._target(tier, TransitionKind.ARCHIVE)

    def eviction_target(self, tier: MemoryTier) -> Optional[MemoryTier]:
        return EVICTION_TARGETS.get(MemoryTier(tier))

    def _target(self, tier: MemoryTier, kind: TransitionKind) -> Optional[MemoryTier]:
        for (src, dst), k in TIER_TRANSITIONS.items():
            if src == tier and k == kind:
                return dst
        return None

    # ------------------------------------------------------------------ #
    # Eligibility
    # ------------------------------------------------------------------ #

    def ttl_exceeded(self, memory: Memory, now: Optional[datetime] = None) -> bool:
        """True when the memory sat idle in a TTL-bound tier past its TTL."""
        ttl = self.config.tier(memory.tier).ttl_seconds
        if ttl is None:
            return False
        now = now or utcnow()
        idle_since = max(memory.metadata.last_activity_at, memory.metadata.tier_entered_at)
        return ensure_utc(now) - idle_since >= timedelta(seconds=ttl)

    def qualifies_for_promotion(self, memory: Memory) -> bool:
        thresholds = self.config.thresholds
        if memory.tier == MemoryTier.WORKING:
            return memory.importance_score >= thresholds.minimum_store
        if memory.tier == MemoryTier.SHORT_TERM:
            consolidation = self.config.consolidation
            sustained = (
                memory.metadata.access_count >= consolidation.min_access_for_promotion
                or memory.confidence.reinforcements
                >= consolidation.min_reinforcements_for_promotion
            )
            return memory.importance_score >= thresholds.long_term_promotion and sustained
        return False

    def evaluate(
        self, memory: Memory, effective_decay: float, now: Optional[datetime] = None
    ) -> Optional[TierDecision]:
        """Recommend at most one single-step transition for a memory.

        Promotion is checked first and applies to protected memories too.
        Decay-driven archive and demotion never apply to protected memories.

        Args:
            memory: Live memory under evaluation.
            effective_decay: Decay score recomputed for ``now``.
            now: Evaluation time.

        Returns:
            TierDecision, or None to keep the memory where it is.
        """
        tier = memory.tier
        if tier == MemoryTier.EPISODIC:
            return None

        if self.qualifies_for_promotion(memory):
            target = self.promotion_target(tier)
            if target is not None:
                return self._decision(memory, target, "qualified for promotion")

        if memory.decay.protected:
            return None

        decay_config = self.config.decay
        if tier == MemoryTier.SHORT_TERM:
            if effective_decay < decay_config.short_term_floor:
                return self._decision(memory, MemoryTier.EPISODIC, "decayed below floor")
            if self.ttl_exceeded(memory, now):
                return self._decision(memory, MemoryTier.EPISODIC, "ttl exceeded")
        elif tier == MemoryTier.LONG_TERM:
            if effective_decay < decay_config.archive_floor:
                return self._decision(memory, MemoryTier.EPISODIC, "decayed below archive floor")
            if (
                effective_decay < decay_config.long_term_demotion_floor
                and memory.importance_score < self.config.thresholds.accelerated_decay
            ):
                return self._decision(memory, MemoryTier.SHORT_TERM, "decayed and unimportant")
        return None

    def _decision(self, memory: Memory, target: MemoryTier, reason: str) -> TierDecision:
        return TierDecision(
            memory_id=memory.id,
            from_tier=memory.tier,
            to_tier=target,
            kind=self.transition_kind(memory.tier, target),
            reason=reason,
        )

    # ------------------------------------------------------------------ #
    # Capacity
    # ------------------------------------------------------------------ #

    def select_evictions(
        self,
        tier: MemoryTier,
        memories: Sequence[Memory],
        decay_of: Callable[[Memory], float],
        exclude: Collection[str] = (),
    ) -> list[Memory]:
        """Memories to evict from an over-capacity tier.

        Ranked lowest first by (decay, importance, id). Protected memories
        are never archived by eviction, so when the overflow target is the
        episodic tier they are passed over. Excluded ids still count
        towards the population but are never chosen; the overflow is
        filled from the remaining memories.

        Args:
            tier: Tier whose population is given.
            memories: Live memories of one user in ``tier``.
            decay_of: Effective decay lookup.
            exclude: Ids that must stay in ``tier`` this time.

        Returns:
            Memories to move to ``eviction_target(tier)``, lowest ranked first.
        """
        capacity = self.config.tier(tier).max_memories
        target = self.eviction_target(tier)
        if capacity is None or target is None or len(memories) <= capacity:
            return []

        overflow = len(memories) - capacity
        excluded = set(exclude)
        ranked = sorted(
            (m for m in memories if m.id not in excluded),
            key=lambda m: (decay_of(m), m.importance_score, m.id),
        )
        if target == MemoryTier.EPISODIC:
            ranked = [m for m in ranked if not m.decay.protected]
        evicted = ranked[:overflow]
        if len(evicted) < overflow:
            logger.warning(
                f"Tier {tier} stays over capacity by {overflow - len(evicted)}: "
                "remaining memories are protected or were just moved"
            )
        return evicted
