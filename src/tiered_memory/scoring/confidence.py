# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Confidence scoring for new and reinforced memories.

Initial confidence depends only on how a memory was acquired; every
later observation of the same fact nudges it upward.
"""

from datetime import datetime
from typing import Optional

from tiered_memory.schemas import (
    Confidence,
    ConfidenceBasis,
    MemorySource,
    clamp_score,
    utcnow,
)

# Starting confidence by acquisition method
SOURCE_CONFIDENCE: dict[MemorySource, float] = {
    MemorySource.EXPLICIT_STATEMENT: 0.95,
    MemorySource.CORRECTION: 0.9,
    MemorySource.EXTERNAL_IMPORT: 0.85,
    MemorySource.OBSERVATION: 0.7,
    MemorySource.INFERENCE: 0.6,
}

# Confidence gained per reinforcement
REINFORCEMENT_STEP: float = 0.05


def basis_for_source(source: MemorySource) -> ConfidenceBasis:
    """Map an acquisition method to the basis it establishes."""
    if source == MemorySource.EXPLICIT_STATEMENT:
        return ConfidenceBasis.EXPLICIT
    if source == MemorySource.CORRECTION:
        return ConfidenceBasis.CORRECTED
    return ConfidenceBasis.INFERRED


def initial_confidence(source: MemorySource, now: Optional[datetime] = None) -> Confidence:
    """Confidence for a freshly created memory.

    Args:
        source: How the memory was acquired.
        now: Timestamp to record (defaults to the current time).

    Returns:
        Confidence with one reinforcement (the first observation).
    """
    source = MemorySource(source)
    return Confidence(
        score=SOURCE_CONFIDENCE[source],
        basis=basis_for_source(source),
        reinforcements=1,
        last_updated=now or utcnow(),
    )


def reinforced_confidence(current: Confidence, now: Optional[datetime] = None) -> Confidence:
    """Confidence after the same fact was observed again.

    Corrected memories keep their basis; anything else becomes ``repeated``.
    """
    basis = current.basis
    if basis != ConfidenceBasis.CORRECTED:
        basis = ConfidenceBasis.REPEATED
    return Confidence(
        score=clamp_score(current.score + REINFORCEMENT_STEP),
        basis=basis,
        reinforcements=current.reinforcements + 1,
        last_updated=now or utcnow(),
    )
