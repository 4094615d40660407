# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Error taxonomy for the tiered memory engine.

NotFoundError and ValidationError are caller-facing and never retried.
StorageError propagates from single-record operations; batch operations
record it per item and keep going. ConcurrencyConflict is surfaced so the
caller can re-read and retry, since a silent retry could apply a scoring
adjustment twice.
"""

from typing import Optional


class TieredMemoryError(Exception):
    """Base class for all memory engine errors."""


class NotFoundError(TieredMemoryError, KeyError):
    """Raised when operating on a memory id that does not exist."""

    def __init__(self, memory_id: str):
        self.memory_id = memory_id
        super().__init__(f"Memory not found: {memory_id}")

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return self.args[0]


class ValidationError(TieredMemoryError, ValueError):
    """Raised for out-of-range scores, unknown enum values or malformed input."""


class MemoryRejectedError(ValidationError):
    """Raised when a candidate memory scores below the minimum store threshold."""

    def __init__(self, reason: str, score: Optional[float] = None):
        self.reason = reason
        self.score = score
        super().__init__(f"Memory rejected: {reason}")


class StorageError(TieredMemoryError):
    """Raised when a storage backend call fails (network, database)."""


class ConcurrencyConflict(TieredMemoryError):
    """Raised when the store detects a stale write.

    Re-read the memory and retry the operation against the fresh version.
    """

    def __init__(
        self,
        memory_id: str,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ):
        self.memory_id = memory_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stale update for memory {memory_id}: expected version "
            f"{expected_version}, found {actual_version}. Re-read and retry."
        )
