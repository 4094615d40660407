# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Local embedding provider backed by sentence-transformers.

Model: all-MiniLM-L6-v2 (384-dim, fast, good quality). The model is
loaded on first use; install the ``embeddings`` extra to enable it.
"""

import asyncio
import logging
from typing import Optional, Protocol, Sequence, cast

import numpy as np
from numpy.typing import NDArray

from tiered_memory.protocols import EmbeddingResult
from tiered_memory.retrieval.similarity import cosine_similarity

logger = logging.getLogger(__name__)


class EmbeddingModel(Protocol):
    """The subset of SentenceTransformer we rely on."""

    def encode(
        self,
        sentences: list[str] | str,
        batch_size: int = 32,
        show_progress_bar: bool = False,
        normalize_embeddings: bool = True,
    ) -> NDArray[np.float32]: ...


class SentenceTransformerEmbeddingProvider:
    """Embedding provider using a sentence-transformers model.

    Encoding runs in a worker thread so it does not block the event loop.

    Attributes:
        model_name: Name of the sentence-transformers model.
        dimension: Dimension of produced embeddings.
    """

    DEFAULT_MODEL = "all-MiniLM-L6-v2"
    DEFAULT_EMBEDDING_DIM = 384

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        embedding_dim: int = DEFAULT_EMBEDDING_DIM,
        batch_size: int = 32,
        lazy_load: bool = True,
    ):
        self._model_name = model_name
        self._dimension = embedding_dim
        self._batch_size = batch_size
        self._model: Optional[EmbeddingModel] = None

        if not lazy_load:
            self._load_model()

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return self._dimension

    def _load_model(self) -> EmbeddingModel:
        if self._model is not None:
            return self._model

        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ImportError(
                "sentence-transformers is required for SentenceTransformerEmbeddingProvider. "
                "Install with: pip install 'tiered-memory[embeddings]'"
            ) from e

        logger.info(f"Loading embedding model: {self._model_name}")
        self._model = cast(EmbeddingModel, SentenceTransformer(self._model_name))
        logger.info("Embedding model loaded successfully")
        return self._model

    def _encode(self, texts: list[str]) -> NDArray[np.float32]:
        model = self._load_model()
        return model.encode(
            texts,
            batch_size=self._batch_size,
            show_progress_bar=False,
            normalize_embeddings=True,
        )

    def _to_result(self, row: NDArray[np.float32]) -> EmbeddingResult:
        vector = [float(v) for v in row]
        if len(vector) != self._dimension:
            raise ValueError(
                f"model {self._model_name} produced {len(vector)} dims, expected {self._dimension}"
            )
        return EmbeddingResult(vector=vector, model=self._model_name, dimension=self._dimension)

    async def embed(self, text: str) -> EmbeddingResult:
        rows = await asyncio.to_thread(self._encode, [text])
        return self._to_result(rows[0])

    async def embed_batch(self, texts: Sequence[str]) -> list[EmbeddingResult]:
        if not texts:
            return []
        rows = await asyncio.to_thread(self._encode, list(texts))
        return [self._to_result(row) for row in rows]

    def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)

    async def health_check(self) -> bool:
        await asyncio.to_thread(self._load_model)
        return True
