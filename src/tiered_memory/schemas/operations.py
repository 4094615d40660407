# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Request and result types for retrieval, consolidation and forgetting.

Requests are Pydantic models so caller input is validated at the edge.
Results are plain dataclasses built up incrementally by the engines; a
result is valid at every step, which is what lets a cancelled sweep
return what it actually did.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from tiered_memory.schemas.memory_types import Memory, MemoryTier, MemoryType


# ============================================================================
# Retrieval
# ============================================================================


class MemoryRetrievalQuery(BaseModel):
    """Free-text query with tenant/user scope."""

    query: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    chatbot_id: Optional[str] = None
    include_global: bool = True


class MemoryRetrievalOptions(BaseModel):
    """Ranking options. Fields left as None take the engine's configured default."""

    limit: Optional[int] = Field(default=None, gt=0)
    similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    types: list[MemoryType] = Field(default_factory=list)
    tiers: Optional[list[MemoryTier]] = None
    tags: list[str] = Field(default_factory=list)
    max_age_days: Optional[float] = Field(default=None, gt=0)
    recency_boost: Optional[float] = Field(default=None, ge=0.0)
    importance_boost: Optional[float] = Field(default=None, ge=0.0)
    diversity_sampling: Optional[bool] = None
    diversity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    include_decaying: bool = False
    exclude_superseded: bool = True
    exclude_ids: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-term contributions to a relevance score."""

    similarity: float
    recency: float
    importance: float
    decay_penalty: float
    effective_decay: float


@dataclass
class RetrievedMemory:
    """A ranked retrieval hit."""

    memory: Memory
    similarity_score: float
    relevance_score: float
    score_breakdown: ScoreBreakdown


@dataclass
class MemoryRetrievalResult:
    """Ranked memories plus the data needed to explain the ranking."""

    memories: list[RetrievedMemory]
    total_matched: int
    query: str
    query_embedding: list[float]
    duration_ms: float
    tiers_searched: list[MemoryTier]


# ============================================================================
# Failures and cancellation (shared by batch operations)
# ============================================================================


@dataclass(frozen=True)
class ItemFailure:
    """A per-item failure recorded by a batch operation."""

    memory_id: str
    operation: str
    error: str


# ============================================================================
# Consolidation
# ============================================================================


class ConsolidationOptions(BaseModel):
    """Options for a consolidation sweep.

    ``timeout_seconds`` bounds the sweep; on expiry a partial result is
    returned with ``cancelled=True``.
    """

    tenant_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    min_age_hours: Optional[float] = Field(default=None, ge=0.0)
    batch_size: Optional[int] = Field(default=None, gt=0)
    merge_similar: bool = False
    merge_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    enforce_capacity: bool = True
    dry_run: bool = False
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


@dataclass(frozen=True)
class TierChange:
    """A single-step tier transition."""

    memory_id: str
    from_tier: MemoryTier
    to_tier: MemoryTier


@dataclass(frozen=True)
class MergeRecord:
    """Sources folded into a surviving target memory."""

    source_ids: tuple[str, ...]
    target_id: str


@dataclass
class ConsolidationResult:
    """What a sweep did (or, for dry runs, would do)."""

    promoted: list[TierChange] = field(default_factory=list)
    demoted: list[TierChange] = field(default_factory=list)
    merged: list[MergeRecord] = field(default_factory=list)
    archived: list[TierChange] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    processed: int = 0
    duration_ms: float = 0.0
    dry_run: bool = False
    cancelled: bool = False

    @property
    def is_empty(self) -> bool:
        """True when no memory changed."""
        return not (
            self.promoted or self.demoted or self.merged or self.archived or self.deleted
        )

    def to_dict(self) -> dict:
        return {
            "promoted": [vars(c) for c in self.promoted],
            "demoted": [vars(c) for c in self.demoted],
            "merged": [
                {"source_ids": list(m.source_ids), "target_id": m.target_id}
                for m in self.merged
            ],
            "archived": [vars(c) for c in self.archived],
            "deleted": list(self.deleted),
            "failures": [vars(f) for f in self.failures],
            "processed": self.processed,
            "duration_ms": self.duration_ms,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
        }


# ============================================================================
# Forgetting
# ============================================================================


class ForgetCriteria(BaseModel):
    """Filters selecting memories to forget. All supplied filters are ANDed."""

    tenant_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    chatbot_id: Optional[str] = None
    types: list[MemoryType] = Field(default_factory=list)
    decay_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    older_than_days: Optional[float] = Field(default=None, ge=0.0)
    tags: list[str] = Field(default_factory=list)
    contains_keywords: list[str] = Field(default_factory=list)
    memory_ids: list[str] = Field(default_factory=list)
    hard_delete: bool = False
    skip_high_importance: bool = False
    importance_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_keywords(self) -> "ForgetCriteria":
        if any(not kw.strip() for kw in self.contains_keywords):
            raise ValueError("contains_keywords must not contain blank entries")
        return self


@dataclass
class ForgetResult:
    """Outcome of a forget run.

    ``forgotten`` and ``skipped`` partition the evaluated memories; items
    that failed in storage are reported in ``failures`` and counted as
    skipped.
    """

    forgotten: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    evaluated: int = 0
    hard_delete: bool = False
    duration_ms: float = 0.0
    cancelled: bool = False


@dataclass(frozen=True)
class HealthStatus:
    """Readiness of the engine's collaborators."""

    storage: bool
    embeddings: bool
    checked_at: datetime

    @property
    def healthy(self) -> bool:
        return self.storage and self.embeddings
