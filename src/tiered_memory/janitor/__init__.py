# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Background maintenance: consolidation sweeps, merging and scheduling.

- ConsolidationScheduler: promotion, demotion, archive, merge, capacity
- Merger: near-duplicate grouping and survivor selection
- JanitorRunner: consolidation followed by expiry cleanup
- JanitorScheduler: interval-based run timing
"""

from tiered_memory.janitor.consolidation import ConsolidationScheduler
from tiered_memory.janitor.merge import MergePlan, Merger
from tiered_memory.janitor.runner import JanitorRunner
from tiered_memory.janitor.scheduler import JanitorScheduler

__all__ = [
    "ConsolidationScheduler",
    "JanitorRunner",
    "JanitorScheduler",
    "MergePlan",
    "Merger",
]
