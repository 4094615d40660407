# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Importance, confidence and decay scoring."""

from tiered_memory.scoring.confidence import (
    REINFORCEMENT_STEP,
    SOURCE_CONFIDENCE,
    basis_for_source,
    initial_confidence,
    reinforced_confidence,
)
from tiered_memory.scoring.decay import DecayCalculator, days_between
from tiered_memory.scoring.importance import (
    ContentSignals,
    ImportanceResult,
    ImportanceScorer,
)

__all__ = [
    # Importance
    "ImportanceScorer",
    "ImportanceResult",
    "ContentSignals",
    # Confidence
    "SOURCE_CONFIDENCE",
    "REINFORCEMENT_STEP",
    "basis_for_source",
    "initial_confidence",
    "reinforced_confidence",
    # Decay
    "DecayCalculator",
    "days_between",
]
