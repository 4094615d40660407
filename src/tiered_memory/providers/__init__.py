# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""MemoryStore implementations."""

from tiered_memory.providers.local import InMemoryMemoryStore, matches_chatbot

__all__ = ["InMemoryMemoryStore", "matches_chatbot"]
