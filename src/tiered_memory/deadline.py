# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Caller-supplied deadlines for batch operations.

Batch sweeps check ``expired()`` between items. On expiry they stop and
return a partial result flagged ``cancelled``, never raising.
"""

import asyncio
import time
from typing import Optional


class Deadline:
    """A timeout and/or cancel signal.

    Example:
        >>> deadline = Deadline(timeout_seconds=5.0)
        >>> for item in batch:
        ...     if deadline.expired():
        ...         break

    Attributes:
        timeout_seconds: Budget from construction, None for no timeout.
        cancel_event: Set by the caller to cancel early.
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.cancel_event = cancel_event
        self._expires_at = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )

    @classmethod
    def never(cls) -> "Deadline":
        return cls()

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when there is no timeout."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at
