# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Memory lifecycle: the tier state machine and its transition rules."""

from tiered_memory.lifecycle.tiers import (
    EVICTION_TARGETS,
    TIER_TRANSITIONS,
    TierDecision,
    TierManager,
    TransitionKind,
)

__all__ = [
    "TIER_TRANSITIONS",
    "EVICTION_TARGETS",
    "TierDecision",
    "TierManager",
    "TransitionKind",
]
