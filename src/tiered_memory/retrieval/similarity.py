# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Vector similarity helpers."""

from typing import Sequence

import numpy as np
from numpy.typing import NDArray


def as_vector(values: Sequence[float]) -> NDArray[np.float64]:
    return np.asarray(values, dtype=np.float64)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 for mismatched dimensions or zero-length vectors.
    """
    va = as_vector(a)
    vb = as_vector(b)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    denominator = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denominator)


def normalize(vector: NDArray[np.float64]) -> NDArray[np.float64]:
    """Scale a vector to unit length (zero vectors are returned unchanged)."""
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm
