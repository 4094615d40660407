# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Embedding providers."""

from tiered_memory.embeddings.hashing import HashingEmbeddingProvider
from tiered_memory.embeddings.sentence_transformer import SentenceTransformerEmbeddingProvider

__all__ = [
    "HashingEmbeddingProvider",
    "SentenceTransformerEmbeddingProvider",
]
