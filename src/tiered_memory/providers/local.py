# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Local in-memory implementation of the MemoryStore protocol.

Keeps records in a dict keyed by id with secondary indices by
(tenant, user), by tenant and by tier, so scoped queries never scan the
whole collection. Records are deep-copied on the way in and out so
callers can never mutate stored state.

Suitable for development, tests and single-process deployments; data
is lost on restart.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Sequence

from pydantic import BaseModel

from tiered_memory.exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from tiered_memory.protocols import MemoryCriteria, VectorSearchOptions
from tiered_memory.retrieval.similarity import cosine_similarity
from tiered_memory.schemas import Memory, MemoryTier, clamp_score, ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Fields that identify a record or are owned by dedicated operations
_IMMUTABLE_FIELDS = frozenset({"id", "tenant_id", "user_id", "version", "tier"})


def matches_chatbot(memory: Memory, chatbot_id: Optional[str], include_global: bool) -> bool:
    """Chatbot scoping: with a bot id, keep that bot's memories plus
    global ones when ``include_global``; without one, keep everything."""
    if chatbot_id is None:
        return True
    if memory.chatbot_id is None:
        return include_global
    return memory.chatbot_id == chatbot_id


class InMemoryMemoryStore:
    """In-memory MemoryStore with secondary indices.

    Example:
        >>> store = InMemoryMemoryStore()
        >>> await store.save(memory)
        >>> hits = await store.vector_search(vector, "user-1", "tenant-1")

    Attributes:
        clock: Source of "now" for bookkeeping timestamps.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._memories: dict[str, Memory] = {}
        self._ids_by_scope: dict[tuple[str, str], set[str]] = defaultdict(set)
        self._ids_by_tenant: dict[str, set[str]] = defaultdict(set)
        self._ids_by_tier: dict[MemoryTier, set[str]] = defaultdict(set)

    def __len__(self) -> int:
        return len(self._memories)

    # ------------------------------------------------------------------ #
    # Index maintenance
    # ------------------------------------------------------------------ #

    def _index(self, memory: Memory) -> None:
        self._ids_by_scope[(memory.tenant_id, memory.user_id)].add(memory.id)
        self._ids_by_tenant[memory.tenant_id].add(memory.id)
        self._ids_by_tier[memory.tier].add(memory.id)

    def _unindex(self, memory: Memory) -> None:
        self._ids_by_scope[(memory.tenant_id, memory.user_id)].discard(memory.id)
        self._ids_by_tenant[memory.tenant_id].discard(memory.id)
        self._ids_by_tier[memory.tier].discard(memory.id)

    def _put(self, memory: Memory) -> None:
        previous = self._memories.get(memory.id)
        if previous is not None:
            self._unindex(previous)
        self._memories[memory.id] = memory
        self._index(memory)

    def _scoped(self, tenant_id: str, user_id: Optional[str]) -> Iterable[Memory]:
        if user_id is not None:
            ids = self._ids_by_scope.get((tenant_id, user_id), set())
        else:
            ids = self._ids_by_tenant.get(tenant_id, set())
        return (self._memories[i] for i in ids)

    def _require(self, memory_id: str, expected_version: Optional[int] = None) -> Memory:
        memory = self._memories.get(memory_id)
        if memory is None:
            raise NotFoundError(memory_id)
        if expected_version is not None and memory.version != expected_version:
            raise ConcurrencyConflict(memory_id, expected_version, memory.version)
        return memory

    def _write(self, memory: Memory, updates: dict[str, Any]) -> Memory:
        """Validate and store an updated copy, bumping the version."""
        updates = {
            k: v.model_dump() if isinstance(v, BaseModel) else v for k, v in updates.items()
        }
        data = memory.model_dump()
        # Metadata updates merge into the existing metadata
        metadata = {**data["metadata"], **(updates.pop("metadata", None) or {})}
        metadata["updated_at"] = self.clock()
        data.update(updates)
        data["metadata"] = metadata
        data["version"] = memory.version + 1
        try:
            updated = Memory.model_validate(data)
        except ValueError as e:
            raise ValidationError(f"invalid update for memory {memory.id}: {e}") from e
        self._put(updated)
        return updated.model_copy(deep=True)

    # ------------------------------------------------------------------ #
    # CRUD
    # ------------------------------------------------------------------ #

    async def save(self, memory: Memory) -> None:
        self._put(memory.model_copy(deep=True))

    async def get(self, memory_id: str) -> Optional[Memory]:
        memory = self._memories.get(memory_id)
        if memory is None:
            return None
        return memory.model_copy(deep=True)

    async def update(
        self,
        memory_id: str,
        updates: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Memory:
        """Apply top-level field updates.

        Raises:
            NotFoundError: If the memory does not exist.
            ConcurrencyConflict: If ``expected_version`` is stale.
            ValidationError: If an update targets an immutable field or
                produces an invalid record.
        """
        forbidden = _IMMUTABLE_FIELDS.intersection(updates)
        if forbidden:
            raise ValidationError(f"cannot update fields: {', '.join(sorted(forbidden))}")
        memory = self._require(memory_id, expected_version)
        return self._write(memory, dict(updates))

    async def soft_delete(self, memory_id: str, expected_version: Optional[int] = None) -> None:
        memory = self._require(memory_id, expected_version)
        self._write(memory, {"is_deleted": True})

    async def hard_delete(self, memory_id: str) -> None:
        memory = self._require(memory_id)
        self._unindex(memory)
        del self._memories[memory_id]

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    async def vector_search(
        self,
        query_vector: Sequence[float],
        user_id: str,
        tenant_id: str,
        options: Optional[VectorSearchOptions] = None,
    ) -> list[tuple[Memory, float]]:
        options = options or VectorSearchOptions()
        if options.tiers:
            tier_ids: Optional[set[str]] = set().union(
                *(self._ids_by_tier.get(t, set()) for t in options.tiers)
            )
        else:
            tier_ids = None
        tags = set(options.tags)
        created_after = ensure_utc(options.created_after) if options.created_after else None

        hits: list[tuple[Memory, float]] = []
        for memory in self._scoped(tenant_id, user_id):
            if memory.embedding is None:
                continue
            if memory.is_deleted and not options.include_deleted:
                continue
            if tier_ids is not None and memory.id not in tier_ids:
                continue
            if options.types and memory.memory_type not in options.types:
                continue
            if tags and not tags.intersection(memory.tags):
                continue
            if memory.id in options.exclude_ids:
                continue
            if options.exclude_superseded and memory.is_superseded:
                continue
            if options.active_at is not None and memory.is_expired(options.active_at):
                continue
            if created_after and ensure_utc(memory.metadata.created_at) < created_after:
                continue
            if not matches_chatbot(memory, options.chatbot_id, options.include_global):
                continue
            similarity = cosine_similarity(query_vector, memory.embedding.vector)
            if options.min_similarity is not None and similarity < options.min_similarity:
                continue
            hits.append((memory, similarity))

        hits.sort(key=lambda h: (-h[1], h[0].id))
        if options.limit is not None:
            hits = hits[: options.limit]
        return [(m.model_copy(deep=True), s) for m, s in hits]

    async def find_by_criteria(
        self, criteria: MemoryCriteria, now: Optional[datetime] = None
    ) -> list[Memory]:
        now = now or self.clock()
        tags = set(criteria.tags)
        keywords = [k.lower() for k in criteria.contains_keywords]
        ids = set(criteria.memory_ids)
        cutoff = None
        if criteria.older_than_days is not None:
            cutoff = ensure_utc(now) - timedelta(days=criteria.older_than_days)

        results = []
        for memory in self._scoped(criteria.tenant_id, criteria.user_id):
            if memory.is_deleted and not criteria.include_deleted:
                continue
            if criteria.chatbot_id is not None and memory.chatbot_id != criteria.chatbot_id:
                continue
            if criteria.types and memory.memory_type not in criteria.types:
                continue
            if criteria.tiers and memory.tier not in criteria.tiers:
                continue
            if tags and not tags.intersection(memory.tags):
                continue
            if keywords and not any(k in memory.content.lower() for k in keywords):
                continue
            if ids and memory.id not in ids:
                continue
            if criteria.max_decay_score is not None and memory.decay.score > criteria.max_decay_score:
                continue
            if cutoff is not None and ensure_utc(memory.metadata.created_at) > cutoff:
                continue
            results.append(memory)

        results.sort(key=lambda m: m.id)
        return [m.model_copy(deep=True) for m in results]

    async def get_for_consolidation(
        self,
        tenant_id: str,
        user_id: Optional[str] = None,
        min_age_hours: float = 24.0,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[Memory]:
        now = ensure_utc(now or self.clock())
        cutoff = now - timedelta(hours=min_age_hours)
        candidates = [
            m
            for m in self._scoped(tenant_id, user_id)
            if not m.is_deleted
            and m.tier != MemoryTier.EPISODIC
            and m.metadata.tier_entered_at <= cutoff
        ]
        candidates.sort(key=lambda m: (m.decay.score, m.id))
        if limit is not None:
            candidates = candidates[:limit]
        return [m.model_copy(deep=True) for m in candidates]

    async def count_by_user(
        self, user_id: str, tenant_id: str, tier: Optional[MemoryTier] = None
    ) -> int:
        return sum(
            1
            for m in self._scoped(tenant_id, user_id)
            if not m.is_deleted and (tier is None or m.tier == tier)
        )

    # ------------------------------------------------------------------ #
    # Targeted updates
    # ------------------------------------------------------------------ #

    async def update_tier(
        self,
        memory_id: str,
        tier: MemoryTier,
        changed_at: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Memory:
        memory = self._require(memory_id, expected_version)
        changed_at = changed_at or self.clock()
        return self._write(
            memory,
            {"tier": MemoryTier(tier), "metadata": {"tier_changed_at": changed_at}},
        )

    async def update_decay(
        self,
        memory_id: str,
        score: float,
        calculated_at: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Memory:
        memory = self._require(memory_id, expected_version)
        decay = memory.decay.model_copy(
            update={
                "score": clamp_score(score),
                "last_calculated": calculated_at or self.clock(),
            }
        )
        return self._write(memory, {"decay": decay.model_dump()})

    async def update_access(self, memory_id: str, accessed_at: datetime) -> None:
        memory = self._require(memory_id)
        metadata = memory.metadata.model_copy(
            update={
                "access_count": memory.metadata.access_count + 1,
                "last_accessed_at": accessed_at,
            }
        )
        self._put(memory.model_copy(update={"metadata": metadata}))

    # ------------------------------------------------------------------ #
    # Batch and maintenance
    # ------------------------------------------------------------------ #

    async def save_batch(self, memories: Sequence[Memory]) -> None:
        for memory in memories:
            await self.save(memory)

    async def delete_batch(self, memory_ids: Sequence[str], hard: bool = False) -> int:
        deleted = 0
        for memory_id in memory_ids:
            memory = self._memories.get(memory_id)
            if memory is None:
                continue
            if hard:
                await self.hard_delete(memory_id)
            elif memory.is_deleted:
                continue
            else:
                await self.soft_delete(memory_id)
            deleted += 1
        return deleted

    async def cleanup_expired(
        self,
        tenant_id: str,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        now = now or self.clock()
        expired = [m.id for m in self._scoped(tenant_id, user_id) if m.is_expired(now)]
        for memory_id in expired:
            await self.hard_delete(memory_id)
        if expired:
            logger.info(f"Removed {len(expired)} expired memories for tenant {tenant_id}")
        return len(expired)

    async def health_check(self) -> bool:
        return True
