# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tiered Memory - lifecycle and retrieval engine for personalization memory.

Scores memories extracted from conversations, ages them through the
working / short-term / long-term / episodic tiers, and serves ranked
subsets back for prompt assembly.

Usage:
    from tiered_memory import MemoryService, InMemoryMemoryStore
    from tiered_memory.embeddings import HashingEmbeddingProvider

    service = MemoryService(InMemoryMemoryStore(), HashingEmbeddingProvider())

For installation:
    pip install tiered-memory                  # Core
    pip install "tiered-memory[embeddings]"    # + sentence-transformers
"""

from tiered_memory.config import MemoryEngineConfig, load_config
from tiered_memory.exceptions import (
    ConcurrencyConflict,
    MemoryRejectedError,
    NotFoundError,
    StorageError,
    TieredMemoryError,
    ValidationError,
)
from tiered_memory.providers.local import InMemoryMemoryStore
from tiered_memory.service import IngestResult, MemoryService

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "MemoryService",
    "IngestResult",
    "InMemoryMemoryStore",
    "MemoryEngineConfig",
    "load_config",
    "TieredMemoryError",
    "NotFoundError",
    "ValidationError",
    "MemoryRejectedError",
    "StorageError",
    "ConcurrencyConflict",
]
