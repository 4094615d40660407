# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Memory data model and operation request/result types."""

from tiered_memory.schemas.memory_types import (
    Confidence,
    ConfidenceBasis,
    CreateMemoryInput,
    DecayState,
    Embedding,
    Memory,
    MemoryMetadata,
    MemorySource,
    MemoryTier,
    MemoryType,
    StructuredData,
    TemporalInfo,
    UpdateMemoryInput,
    clamp_score,
    ensure_utc,
    utcnow,
)
from tiered_memory.schemas.operations import (
    ConsolidationOptions,
    ConsolidationResult,
    ForgetCriteria,
    ForgetResult,
    HealthStatus,
    ItemFailure,
    MemoryRetrievalOptions,
    MemoryRetrievalQuery,
    MemoryRetrievalResult,
    MergeRecord,
    RetrievedMemory,
    ScoreBreakdown,
    TierChange,
)

__all__ = [
    # Memory model
    "Confidence",
    "ConfidenceBasis",
    "CreateMemoryInput",
    "DecayState",
    "Embedding",
    "Memory",
    "MemoryMetadata",
    "MemorySource",
    "MemoryTier",
    "MemoryType",
    "StructuredData",
    "TemporalInfo",
    "UpdateMemoryInput",
    "clamp_score",
    "ensure_utc",
    "utcnow",
    # Operations
    "ConsolidationOptions",
    "ConsolidationResult",
    "ForgetCriteria",
    "ForgetResult",
    "HealthStatus",
    "ItemFailure",
    "MemoryRetrievalOptions",
    "MemoryRetrievalQuery",
    "MemoryRetrievalResult",
    "MergeRecord",
    "RetrievedMemory",
    "ScoreBreakdown",
    "TierChange",
]
