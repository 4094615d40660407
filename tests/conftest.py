# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Root pytest configuration with shared fixtures and markers.

This file is automatically loaded by pytest and provides:
- Custom markers for test categorization
- A controllable clock
- A deterministic embedding provider with pinned vectors
- An in-memory store and a memory factory
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import pytest

from tiered_memory.config import MemoryEngineConfig
from tiered_memory.embeddings import HashingEmbeddingProvider
from tiered_memory.protocols import EmbeddingResult
from tiered_memory.providers.local import InMemoryMemoryStore
from tiered_memory.retrieval.similarity import cosine_similarity
from tiered_memory.schemas import (
    Confidence,
    ConfidenceBasis,
    DecayState,
    Embedding,
    Memory,
    MemoryMetadata,
    MemorySource,
    MemoryTier,
    MemoryType,
)
from tiered_memory.service import MemoryService

BASE_TIME = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "critical: Mark test as covering a core lifecycle guarantee",
    )
    config.addinivalue_line(
        "markers",
        "integration: Mark test as exercising the full service stack",
    )
    config.addinivalue_line(
        "markers",
        "slow: Mark test as slow-running (may be skipped in quick runs)",
    )


# ============================================================================
# Test doubles
# ============================================================================


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StaticEmbeddingProvider:
    """Embedding provider returning pinned vectors for known texts.

    Unknown texts fall back to feature hashing so any input embeds.
    """

    def __init__(self, vectors: Optional[dict[str, list[float]]] = None, dimension: int = 4):
        self.vectors = dict(vectors or {})
        self._dimension = dimension
        self._fallback = HashingEmbeddingProvider(dimension=dimension)
        self.healthy = True
        self.calls: list[str] = []

    @property
    def model_name(self) -> str:
        return "static-test"

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        vector = self.vectors.get(text) or self._fallback.encode(text)
        return EmbeddingResult(vector=list(vector), model=self.model_name, dimension=len(vector))

    async def embed_batch(self, texts: Sequence[str]) -> list[EmbeddingResult]:
        return [await self.embed(t) for t in texts]

    def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)

    async def health_check(self) -> bool:
        return self.healthy


def build_memory(
    memory_id: Optional[str] = None,
    *,
    tenant_id: str = "tenant-1",
    user_id: str = "user-1",
    chatbot_id: Optional[str] = None,
    tier: MemoryTier = MemoryTier.WORKING,
    memory_type: MemoryType = MemoryType.FACT,
    content: str = "User likes hiking",
    importance: float = 0.5,
    confidence: float = 0.8,
    reinforcements: int = 1,
    decay_score: float = 1.0,
    rate_per_day: float = 0.1,
    protected: bool = False,
    created_at: datetime = BASE_TIME,
    last_accessed_at: Optional[datetime] = None,
    access_count: int = 0,
    tier_changed_at: Optional[datetime] = None,
    vector: Optional[list[float]] = None,
    tags: Optional[list[str]] = None,
    expires_at: Optional[datetime] = None,
    superseded_by: Optional[list[str]] = None,
) -> Memory:
    """Build a Memory with sensible defaults for tests."""
    return Memory(
        id=memory_id or f"mem-{uuid.uuid4().hex[:8]}",
        tenant_id=tenant_id,
        user_id=user_id,
        chatbot_id=chatbot_id,
        tier=tier,
        memory_type=memory_type,
        content=content,
        importance_score=importance,
        confidence=Confidence(
            score=confidence,
            basis=ConfidenceBasis.INFERRED,
            reinforcements=reinforcements,
            last_updated=created_at,
        ),
        decay=DecayState(
            score=decay_score,
            rate_per_day=rate_per_day,
            last_calculated=created_at,
            protected=protected,
        ),
        metadata=MemoryMetadata(
            created_at=created_at,
            updated_at=created_at,
            last_accessed_at=last_accessed_at,
            access_count=access_count,
            source=MemorySource.OBSERVATION,
            tier_changed_at=tier_changed_at,
        ),
        embedding=(
            Embedding(vector=vector, model="static-test", dimension=len(vector))
            if vector is not None
            else None
        ),
        tags=tags or [],
        expires_at=expires_at,
        superseded_by=superseded_by or [],
    )


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def clock():
    """Clock pinned to BASE_TIME."""
    return FixedClock()


@pytest.fixture
def store(clock):
    """Fresh in-memory store sharing the test clock."""
    return InMemoryMemoryStore(clock=clock)


@pytest.fixture
def embeddings():
    """Static embedding provider with no pinned vectors."""
    return StaticEmbeddingProvider(dimension=64)


@pytest.fixture
def config():
    """Default engine configuration."""
    return MemoryEngineConfig()


@pytest.fixture
def service(store, embeddings, config, clock):
    """MemoryService over the in-memory store."""
    return MemoryService(store, embeddings, config=config, clock=clock)


@pytest.fixture
def make_memory():
    """Factory for Memory records."""
    return build_memory
