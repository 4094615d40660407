# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Deterministic feature-hashing embedding provider.

Maps each lowercase token (and adjacent token pair) to a signed bucket of
a fixed-size vector, then L2-normalizes. Texts sharing vocabulary land
close together, identical texts map to identical vectors, and nothing is
downloaded. Intended for development, tests and as a baseline.
"""

import hashlib
import re
from typing import Sequence

import numpy as np

from tiered_memory.protocols import EmbeddingResult
from tiered_memory.retrieval.similarity import cosine_similarity, normalize

_TOKEN_RE = re.compile(r"[\w']+", re.UNICODE)


class HashingEmbeddingProvider:
    """Feature-hashing bag-of-words embeddings.

    Example:
        >>> provider = HashingEmbeddingProvider(dimension=64)
        >>> result = await provider.embed("User works at DNB")
        >>> len(result.vector)
        64
    """

    def __init__(self, dimension: int = 256, use_bigrams: bool = True):
        if dimension <= 0:
            raise ValueError("dimension must be > 0")
        self._dimension = dimension
        self._use_bigrams = use_bigrams

    @property
    def model_name(self) -> str:
        return f"hashing-{self._dimension}"

    @property
    def dimension(self) -> int:
        return self._dimension

    def _bucket(self, feature: str) -> tuple[int, float]:
        digest = hashlib.sha256(feature.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "big") % self._dimension
        sign = 1.0 if digest[4] & 1 else -1.0
        return index, sign

    def encode(self, text: str) -> list[float]:
        tokens = _TOKEN_RE.findall(text.lower())
        features = list(tokens)
        if self._use_bigrams:
            features.extend(f"{a} {b}" for a, b in zip(tokens, tokens[1:]))

        vector = np.zeros(self._dimension, dtype=np.float64)
        for feature in features:
            index, sign = self._bucket(feature)
            vector[index] += sign
        return normalize(vector).tolist()

    async def embed(self, text: str) -> EmbeddingResult:
        return EmbeddingResult(
            vector=self.encode(text), model=self.model_name, dimension=self._dimension
        )

    async def embed_batch(self, texts: Sequence[str]) -> list[EmbeddingResult]:
        return [await self.embed(text) for text in texts]

    def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)

    async def health_check(self) -> bool:
        return True
