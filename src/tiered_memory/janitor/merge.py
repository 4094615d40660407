# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Merging of near-duplicate memories.

Groups memories of the same tenant/user/chatbot scope whose embeddings
are at least ``similarity_threshold`` apart by cosine similarity, then
folds each group into one survivor. The survivor is the most important
memory of the group (ties broken by id); it takes the union of tags, the
maximum importance and confidence, the summed reinforcements and the
longest content. The other members are marked superseded by it.
"""

from dataclasses import dataclass
from typing import Any, Sequence

from tiered_memory.retrieval.similarity import cosine_similarity
from tiered_memory.schemas import ConfidenceBasis, Memory


@dataclass
class MergePlan:
    """One survivor and the memories folded into it."""

    survivor: Memory
    sources: list[Memory]

    def survivor_updates(self) -> dict[str, Any]:
        """Field updates that turn the survivor into the merged record."""
        group = [self.survivor, *self.sources]

        tags = list(self.survivor.tags)
        for memory in self.sources:
            tags.extend(t for t in memory.tags if t not in tags)

        # Longest content wins; it brings its embedding along
        longest = max(group, key=lambda m: (len(m.content), m is self.survivor))

        confidence = self.survivor.confidence.model_copy(
            update={
                "score": max(m.confidence.score for m in group),
                "reinforcements": sum(m.confidence.reinforcements for m in group),
                "basis": ConfidenceBasis.REPEATED
                if self.survivor.confidence.basis != ConfidenceBasis.CORRECTED
                else ConfidenceBasis.CORRECTED,
            }
        )

        updates: dict[str, Any] = {
            "tags": tags,
            "importance_score": max(m.importance_score for m in group),
            "confidence": confidence,
        }
        if longest is not self.survivor:
            updates["content"] = longest.content
            updates["embedding"] = longest.embedding
        return updates


class Merger:
    """Finds and plans merges of near-duplicate memories.

    Example:
        >>> merger = Merger(similarity_threshold=0.95)
        >>> for plan in merger.plan(memories):
        ...     print(plan.survivor.id, [m.id for m in plan.sources])
    """

    def __init__(self, similarity_threshold: float = 0.95):
        self.similarity_threshold = similarity_threshold

    @staticmethod
    def same_scope(m1: Memory, m2: Memory) -> bool:
        return (
            m1.tenant_id == m2.tenant_id
            and m1.user_id == m2.user_id
            and m1.chatbot_id == m2.chatbot_id
        )

    def calculate_similarity(self, m1: Memory, m2: Memory) -> float:
        if m1.embedding is None or m2.embedding is None:
            return 0.0
        return cosine_similarity(m1.embedding.vector, m2.embedding.vector)

    def plan(self, memories: Sequence[Memory]) -> list[MergePlan]:
        """Group memories into merge plans.

        Memories are visited most important first; each unassigned memory
        becomes a survivor and absorbs every later unassigned memory of
        its scope above the threshold. The result is deterministic for a
        given input set.
        """
        ordered = sorted(
            (m for m in memories if m.embedding is not None and not m.is_deleted),
            key=lambda m: (-m.importance_score, m.id),
        )
        assigned: set[str] = set()
        plans = []
        for i, survivor in enumerate(ordered):
            if survivor.id in assigned:
                continue
            sources = []
            for other in ordered[i + 1 :]:
                if other.id in assigned or not self.same_scope(survivor, other):
                    continue
                if self.calculate_similarity(survivor, other) >= self.similarity_threshold:
                    sources.append(other)
                    assigned.add(other.id)
            if sources:
                assigned.add(survivor.id)
                plans.append(MergePlan(survivor=survivor, sources=sources))
        return plans
