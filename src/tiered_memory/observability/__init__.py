# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Observability for the memory engine."""

from tiered_memory.observability.metrics import METRIC_PREFIX, LatencyWindow, MemoryMetrics

__all__ = ["METRIC_PREFIX", "LatencyWindow", "MemoryMetrics"]
