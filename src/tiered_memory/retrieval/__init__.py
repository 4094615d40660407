# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Similarity helpers and relevance-ranked retrieval."""

from tiered_memory.retrieval.ranker import RankingParams, RetrievalRanker
from tiered_memory.retrieval.similarity import as_vector, cosine_similarity, normalize

__all__ = [
    "RetrievalRanker",
    "RankingParams",
    "as_vector",
    "cosine_similarity",
    "normalize",
]
