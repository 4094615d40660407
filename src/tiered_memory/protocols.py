# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Collaborator protocols for the memory engine.

Defines the storage contract (MemoryStore), the embedding provider
(EmbeddingProvider) and the extraction capability (Extractor). The core
depends only on these; any backend satisfying them is interchangeable.

The engine assumes nothing beyond "a single-record update is atomic".
Mutating store methods accept ``expected_version`` for optimistic fencing
and raise ConcurrencyConflict when the stored version differs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from tiered_memory.schemas import CreateMemoryInput, Memory, MemoryTier, MemoryType

# Protocol version for compatibility tracking
MEMORY_STORE_VERSION = "1.0.0"


@dataclass(frozen=True)
class VectorSearchOptions:
    """Filters for a vector similarity search.

    Attributes:
        chatbot_id: Restrict to memories scoped to this bot.
        include_global: With chatbot_id, also match memories with no bot scope.
        limit: Maximum hits, None for all.
        tiers: Restrict to these tiers (empty = all).
        types: Restrict to these memory types (empty = all).
        tags: Match memories carrying any of these tags (empty = all).
        min_similarity: Drop hits below this cosine similarity.
        exclude_ids: Never return these ids.
        include_deleted: Return soft-deleted memories too.
        exclude_superseded: Drop memories replaced by a correction or merge.
        active_at: Drop memories already expired at this time.
        created_after: Drop memories created before this time.
    """

    chatbot_id: Optional[str] = None
    include_global: bool = True
    limit: Optional[int] = None
    tiers: tuple[MemoryTier, ...] = ()
    types: tuple[MemoryType, ...] = ()
    tags: tuple[str, ...] = ()
    min_similarity: Optional[float] = None
    exclude_ids: frozenset[str] = field(default_factory=frozenset)
    include_deleted: bool = False
    exclude_superseded: bool = False
    active_at: Optional[datetime] = None
    created_after: Optional[datetime] = None


@dataclass(frozen=True)
class MemoryCriteria:
    """Filters for ``find_by_criteria``. Supplied filters are ANDed."""

    tenant_id: str
    user_id: Optional[str] = None
    chatbot_id: Optional[str] = None
    types: tuple[MemoryType, ...] = ()
    tiers: tuple[MemoryTier, ...] = ()
    tags: tuple[str, ...] = ()
    contains_keywords: tuple[str, ...] = ()
    memory_ids: tuple[str, ...] = ()
    max_decay_score: Optional[float] = None
    older_than_days: Optional[float] = None
    include_deleted: bool = False


@dataclass(frozen=True)
class EmbeddingResult:
    """Output of an embedding call."""

    vector: list[float]
    model: str
    dimension: int


@runtime_checkable
class MemoryStore(Protocol):
    """Storage contract for memory backends.

    Implementations must isolate tenants and users, return copies (callers
    may mutate what they get back), and bump ``Memory.version`` on every
    mutating write except ``update_access``.
    """

    async def save(self, memory: Memory) -> None:
        """Insert or replace a memory."""
        ...

    async def get(self, memory_id: str) -> Optional[Memory]:
        """Get a memory by id, or None."""
        ...

    async def update(
        self,
        memory_id: str,
        updates: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Memory:
        """Apply top-level field updates and return the stored result."""
        ...

    async def soft_delete(self, memory_id: str, expected_version: Optional[int] = None) -> None:
        ...

    async def hard_delete(self, memory_id: str) -> None:
        ...

    async def vector_search(
        self,
        query_vector: Sequence[float],
        user_id: str,
        tenant_id: str,
        options: Optional[VectorSearchOptions] = None,
    ) -> list[tuple[Memory, float]]:
        """Return (memory, similarity) pairs sorted by similarity descending."""
        ...

    async def find_by_criteria(
        self, criteria: MemoryCriteria, now: Optional[datetime] = None
    ) -> list[Memory]:
        """Memories matching every supplied filter; ``now`` anchors ``older_than_days``."""
        ...

    async def get_for_consolidation(
        self,
        tenant_id: str,
        user_id: Optional[str] = None,
        min_age_hours: float = 24.0,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[Memory]:
        """Live, non-episodic memories that have sat in their tier for at least
        ``min_age_hours``, most at-risk (lowest decay score) first."""
        ...

    async def count_by_user(
        self, user_id: str, tenant_id: str, tier: Optional[MemoryTier] = None
    ) -> int:
        ...

    async def update_tier(
        self,
        memory_id: str,
        tier: MemoryTier,
        changed_at: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Memory:
        """Move a memory to ``tier`` and stamp ``metadata.tier_changed_at``."""
        ...

    async def update_decay(
        self,
        memory_id: str,
        score: float,
        calculated_at: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Memory:
        ...

    async def update_access(self, memory_id: str, accessed_at: datetime) -> None:
        """Best-effort access tracking; does not bump the version."""
        ...

    async def save_batch(self, memories: Sequence[Memory]) -> None:
        ...

    async def delete_batch(self, memory_ids: Sequence[str], hard: bool = False) -> int:
        ...

    async def cleanup_expired(
        self,
        tenant_id: str,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Hard-delete the scope's memories whose ``expires_at`` has passed."""
        ...

    async def health_check(self) -> bool:
        ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns text into vectors."""

    @property
    def model_name(self) -> str:
        ...

    @property
    def dimension(self) -> int:
        ...

    async def embed(self, text: str) -> EmbeddingResult:
        ...

    async def embed_batch(self, texts: Sequence[str]) -> list[EmbeddingResult]:
        ...

    def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        ...

    async def health_check(self) -> bool:
        ...


@runtime_checkable
class Extractor(Protocol):
    """Pulls memory candidates out of free text.

    Pattern-based and LLM-based extractors are interchangeable behind this
    capability; the engine never looks inside.
    """

    async def extract(
        self,
        text: str,
        user_id: str,
        tenant_id: str,
        chatbot_id: Optional[str] = None,
    ) -> list[CreateMemoryInput]:
        ...
