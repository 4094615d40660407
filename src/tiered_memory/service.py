# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Memory service facade.

Wires the store, embedding provider and engines into the operations a
conversational product calls:

- store / ingest: score, deduplicate or reinforce, and persist at ``working``
- get / update / correct / flag_contradiction / record_access
- retrieve: ranked, diversified memories for a query
- consolidate / forget / cleanup_expired: lifecycle maintenance
- health_check: readiness of storage and embeddings

Access tracking after retrieval and auto-consolidation after a store
are fire-and-forget background tasks; ``wait_for_background_tasks``
drains them.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from tiered_memory.config import MemoryEngineConfig
from tiered_memory.deadline import Deadline
from tiered_memory.exceptions import MemoryRejectedError, NotFoundError, ValidationError
from tiered_memory.forgetting import ForgettingEngine
from tiered_memory.janitor.consolidation import ConsolidationScheduler
from tiered_memory.lifecycle.tiers import TierManager
from tiered_memory.observability.metrics import MemoryMetrics
from tiered_memory.protocols import (
    EmbeddingProvider,
    EmbeddingResult,
    Extractor,
    MemoryStore,
    VectorSearchOptions,
)
from tiered_memory.retrieval.ranker import RetrievalRanker
from tiered_memory.schemas import (
    ConsolidationOptions,
    ConsolidationResult,
    CreateMemoryInput,
    Embedding,
    ForgetCriteria,
    ForgetResult,
    HealthStatus,
    Memory,
    MemoryMetadata,
    MemoryRetrievalOptions,
    MemoryRetrievalQuery,
    MemoryRetrievalResult,
    MemorySource,
    MemoryTier,
    UpdateMemoryInput,
    utcnow,
)
from tiered_memory.scoring.confidence import initial_confidence, reinforced_confidence
from tiered_memory.scoring.decay import DecayCalculator
from tiered_memory.scoring.importance import ImportanceScorer

logger = logging.getLogger(__name__)

# Tiers searched for an existing copy of a new memory
DEDUP_TIERS = (MemoryTier.WORKING, MemoryTier.SHORT_TERM, MemoryTier.LONG_TERM)


@dataclass
class IngestResult:
    """Outcome of ingesting free text through an extractor."""

    stored: list[Memory] = field(default_factory=list)
    rejected: list[tuple[CreateMemoryInput, str]] = field(default_factory=list)


class MemoryService:
    """Personalization memory service.

    Example:
        >>> service = MemoryService(InMemoryMemoryStore(), HashingEmbeddingProvider())
        >>> memory = await service.store(CreateMemoryInput(
        ...     user_id="u1", tenant_id="t1", memory_type="fact",
        ...     content="User works at DNB", source="explicit_statement",
        ... ))
        >>> memory.tier
        <MemoryTier.WORKING: 'working'>
    """

    def __init__(
        self,
        store: MemoryStore,
        embeddings: EmbeddingProvider,
        config: Optional[MemoryEngineConfig] = None,
        extractor: Optional[Extractor] = None,
        metrics: Optional[MemoryMetrics] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = store
        self.embeddings = embeddings
        self.config = config or MemoryEngineConfig()
        self.extractor = extractor
        self.metrics = metrics or MemoryMetrics()
        self.clock = clock

        self.scorer = ImportanceScorer(self.config.weights, self.config.thresholds)
        self.decay_calculator = DecayCalculator(self.config.decay, self.config.thresholds)
        self.tier_manager = TierManager(self.config)
        self.consolidator = ConsolidationScheduler(
            store,
            self.config,
            tier_manager=self.tier_manager,
            decay_calculator=self.decay_calculator,
            clock=clock,
        )
        self.forgetter = ForgettingEngine(store, self.decay_calculator, clock=clock)
        self.ranker = RetrievalRanker(
            store, embeddings, self.config, decay_calculator=self.decay_calculator, clock=clock
        )
        self._background_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Background work
    # ------------------------------------------------------------------ #

    def _spawn(self, coro: Awaitable[Any], name: str) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background_tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Background {name} failed: {t.exception()}")

        task.add_done_callback(_done)

    async def wait_for_background_tasks(self) -> None:
        """Wait until all fire-and-forget work has finished."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Creation
    # ------------------------------------------------------------------ #

    def _embedding(self, result: EmbeddingResult, now: datetime) -> Embedding:
        return Embedding(
            vector=list(result.vector),
            model=result.model,
            dimension=len(result.vector),
            generated_at=now,
        )

    async def _find_duplicate(
        self, input: CreateMemoryInput, vector: list[float]
    ) -> Optional[Memory]:
        hits = await self.storage.vector_search(
            vector,
            input.user_id,
            input.tenant_id,
            VectorSearchOptions(
                chatbot_id=input.chatbot_id,
                include_global=False,
                limit=5,
                tiers=DEDUP_TIERS,
                min_similarity=self.config.service.dedup_threshold,
            ),
        )
        for memory, _similarity in hits:
            if memory.chatbot_id == input.chatbot_id and not memory.is_superseded:
                return memory
        return None

    async def store(self, input: CreateMemoryInput) -> Memory:
        """Score and persist a candidate memory.

        A near-identical live memory of the same user is reinforced
        instead of duplicated.

        Args:
            input: Candidate from an extractor or caller.

        Returns:
            The created or reinforced memory.

        Raises:
            MemoryRejectedError: If importance is below the minimum store threshold.
        """
        start_time = time.perf_counter()
        now = self.clock()

        importance = self._score_candidate(input)
        embedding = await self.embeddings.embed(input.content)

        existing = await self._find_duplicate(input, embedding.vector)
        if existing is not None:
            memory = await self._reinforce(existing, importance, now)
            self.metrics.record_store(str(input.memory_type), outcome="reinforced")
        else:
            memory = await self._create(input, importance, embedding, now)

        self.metrics.record_latency("store", (time.perf_counter() - start_time) * 1000)
        await self._maybe_auto_consolidate(input.tenant_id, input.user_id)
        return memory

    def _score_candidate(self, input: CreateMemoryInput) -> float:
        """Importance of a candidate; raises MemoryRejectedError below the store threshold."""
        importance = self.scorer.score(
            input.content, input.memory_type, input.source, structured_data=input.structured_data
        )
        if not self.scorer.should_store(importance.score):
            self.metrics.record_store(str(input.memory_type), outcome="rejected")
            logger.info(
                f"Rejected {input.memory_type} memory for user {input.user_id}: "
                f"importance {importance.score:.3f}"
            )
            raise MemoryRejectedError(
                f"importance {importance.score:.3f} below threshold "
                f"{self.config.thresholds.minimum_store}",
                score=importance.score,
            )
        return importance.score

    async def _create(
        self,
        input: CreateMemoryInput,
        importance: float,
        embedding: EmbeddingResult,
        now: datetime,
    ) -> Memory:
        """Persist a new working-tier memory without a duplicate check."""
        memory = Memory(
            id=str(uuid.uuid4()),
            tenant_id=input.tenant_id,
            user_id=input.user_id,
            chatbot_id=input.chatbot_id,
            tier=MemoryTier.WORKING,
            memory_type=input.memory_type,
            content=input.content,
            structured_data=input.structured_data,
            importance_score=importance,
            confidence=initial_confidence(input.source, now),
            decay=self.decay_calculator.initial_state(importance, now),
            metadata=MemoryMetadata(
                created_at=now,
                updated_at=now,
                source=input.source,
                source_conversation_id=input.source_conversation_id,
                source_message_ids=list(input.source_message_ids),
                custom=dict(input.custom_metadata),
                tier_changed_at=now,
            ),
            embedding=self._embedding(embedding, now),
            tags=list(input.tags),
            expires_at=input.expires_at,
        )
        await self.storage.save(memory)
        self.metrics.record_store(str(input.memory_type), outcome="created")
        logger.debug(f"Stored memory {memory.id} ({input.memory_type}) importance={importance:.3f}")
        return memory

    async def _reinforce(self, memory: Memory, observed: float, now: datetime) -> Memory:
        importance = self.scorer.reinforce(memory.importance_score, observed)
        decay = memory.decay.model_copy(
            update={
                "score": 1.0,
                "last_calculated": now,
                "protected": memory.decay.protected
                or self.scorer.is_decay_protected(importance),
            }
        )
        logger.debug(f"Reinforcing memory {memory.id}")
        return await self.storage.update(
            memory.id,
            {
                "importance_score": importance,
                "confidence": reinforced_confidence(memory.confidence, now),
                "decay": decay,
            },
            expected_version=memory.version,
        )

    async def _maybe_auto_consolidate(self, tenant_id: str, user_id: str) -> None:
        if not self.config.service.auto_consolidate:
            return
        count = await self.storage.count_by_user(user_id, tenant_id)
        if count > self.config.service.max_memories_per_user:
            logger.info(
                f"User {user_id} holds {count} memories; scheduling consolidation"
            )
            self._spawn(
                self.consolidate(ConsolidationOptions(tenant_id=tenant_id, user_id=user_id)),
                "consolidation",
            )

    async def ingest(
        self,
        text: str,
        user_id: str,
        tenant_id: str,
        chatbot_id: Optional[str] = None,
    ) -> IngestResult:
        """Extract candidates from free text and store each one.

        Rejected candidates are reported in the result, not raised.

        Raises:
            ValidationError: If no extractor is configured.
        """
        if self.extractor is None:
            raise ValidationError("no extractor configured")
        candidates = await self.extractor.extract(text, user_id, tenant_id, chatbot_id)
        result = IngestResult()
        for candidate in candidates:
            try:
                result.stored.append(await self.store(candidate))
            except MemoryRejectedError as e:
                result.rejected.append((candidate, e.reason))
        return result

    # ------------------------------------------------------------------ #
    # Single-record operations
    # ------------------------------------------------------------------ #

    async def get(self, memory_id: str) -> Optional[Memory]:
        return await self.storage.get(memory_id)

    async def _require(self, memory_id: str) -> Memory:
        memory = await self.storage.get(memory_id)
        if memory is None:
            raise NotFoundError(memory_id)
        return memory

    async def update(self, memory_id: str, update: UpdateMemoryInput) -> Memory:
        """Apply caller edits; changed content is re-embedded and re-scored.

        Raises:
            NotFoundError: If the memory does not exist.
            ConcurrencyConflict: If the memory changed while being updated.
        """
        memory = await self._require(memory_id)
        now = self.clock()
        updates: dict[str, Any] = {}

        if update.content is not None and update.content != memory.content:
            embedding = await self.embeddings.embed(update.content)
            updates["content"] = update.content
            updates["embedding"] = self._embedding(embedding, now)
            updates["importance_score"] = self.scorer.score(
                update.content,
                memory.memory_type,
                memory.metadata.source,
                reinforcements=memory.confidence.reinforcements,
                structured_data=update.structured_data or memory.structured_data,
            ).score
        if update.importance_score is not None:
            updates["importance_score"] = update.importance_score
        if update.structured_data is not None:
            updates["structured_data"] = update.structured_data
        if update.tags is not None:
            updates["tags"] = list(update.tags)
        if update.custom_metadata is not None:
            updates["metadata"] = {"custom": dict(update.custom_metadata)}

        if "importance_score" in updates:
            updates["decay"] = memory.decay.model_copy(
                update={"protected": self.scorer.is_decay_protected(updates["importance_score"])}
            )

        if not updates:
            return memory
        return await self.storage.update(memory_id, updates, expected_version=memory.version)

    async def correct(self, memory_id: str, new_content: str) -> Memory:
        """Replace a memory's content with a correction.

        The correction is stored as a new memory (source ``correction``);
        the old record is kept and marked superseded by it.

        Returns:
            The new, corrected memory.
        """
        old = await self._require(memory_id)
        try:
            candidate = CreateMemoryInput(
                user_id=old.user_id,
                tenant_id=old.tenant_id,
                chatbot_id=old.chatbot_id,
                memory_type=old.memory_type,
                content=new_content,
                source=MemorySource.CORRECTION,
                source_conversation_id=old.metadata.source_conversation_id,
                tags=list(old.tags),
                custom_metadata={**old.metadata.custom, "corrects": old.id},
            )
        except PydanticValidationError as e:
            raise ValidationError(f"invalid correction: {e}") from e

        # No duplicate check: a correction never reinforces the record it replaces
        importance = self._score_candidate(candidate)
        embedding = await self.embeddings.embed(candidate.content)
        corrected = await self._create(candidate, importance, embedding, self.clock())
        await self.storage.update(
            old.id,
            {"superseded_by": [*old.superseded_by, corrected.id]},
            expected_version=old.version,
        )
        logger.info(f"Memory {old.id} superseded by correction {corrected.id}")
        return corrected

    async def flag_contradiction(self, memory_id: str, other_id: str) -> tuple[Memory, Memory]:
        """Record that two memories contradict each other.

        Both are retained; precedence is left to the retrieval/prompt layer.
        """
        if memory_id == other_id:
            raise ValidationError("a memory cannot contradict itself")
        first = await self._require(memory_id)
        second = await self._require(other_id)

        async def link(memory: Memory, target: str) -> Memory:
            if target in memory.contradicts:
                return memory
            return await self.storage.update(
                memory.id,
                {"contradicts": [*memory.contradicts, target]},
                expected_version=memory.version,
            )

        return await link(first, other_id), await link(second, memory_id)

    async def record_access(self, memory_id: str) -> None:
        await self._require(memory_id)
        await self.storage.update_access(memory_id, self.clock())

    # ------------------------------------------------------------------ #
    # Engines
    # ------------------------------------------------------------------ #

    async def _track_access(self, memory_ids: list[str], accessed_at: datetime) -> None:
        for memory_id in memory_ids:
            await self.storage.update_access(memory_id, accessed_at)

    async def retrieve(
        self,
        query: MemoryRetrievalQuery,
        options: Optional[MemoryRetrievalOptions] = None,
    ) -> MemoryRetrievalResult:
        """Ranked memories for a query; access is tracked in the background."""
        now = self.clock()
        result = await self.ranker.retrieve(query, options, now=now)
        self.metrics.record_retrieve(len(result.memories), result.total_matched)
        self.metrics.record_latency("retrieve", result.duration_ms)
        if result.memories:
            self._spawn(
                self._track_access([hit.memory.id for hit in result.memories], now),
                "access tracking",
            )
        return result

    async def consolidate(
        self,
        options: ConsolidationOptions,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ConsolidationResult:
        deadline = Deadline(options.timeout_seconds, cancel_event)
        result = await self.consolidator.consolidate(options, deadline=deadline)
        self.metrics.record_consolidation(
            promoted=len(result.promoted),
            demoted=len(result.demoted),
            archived=len(result.archived),
            merged=len(result.merged),
            deleted=len(result.deleted),
            failures=len(result.failures),
            cancelled=result.cancelled,
        )
        self.metrics.record_latency("consolidate", result.duration_ms)
        return result

    async def forget(
        self,
        criteria: ForgetCriteria,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ForgetResult:
        deadline = Deadline(criteria.timeout_seconds, cancel_event)
        result = await self.forgetter.forget(criteria, deadline=deadline)
        self.metrics.record_forget(
            forgotten=len(result.forgotten),
            skipped=len(result.skipped),
            failures=len(result.failures),
            cancelled=result.cancelled,
        )
        self.metrics.record_latency("forget", result.duration_ms)
        return result

    async def cleanup_expired(self, tenant_id: str, user_id: Optional[str] = None) -> int:
        """Hard-delete the tenant's (or one user's) memories whose expiry has passed."""
        return await self.storage.cleanup_expired(tenant_id, user_id, now=self.clock())

    async def health_check(self) -> HealthStatus:
        storage = await self.storage.health_check()
        embeddings = await self.embeddings.health_check()
        return HealthStatus(storage=storage, embeddings=embeddings, checked_at=self.clock())
