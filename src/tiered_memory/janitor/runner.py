# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Janitor runner for periodic maintenance.

Runs a consolidation sweep and then expiry cleanup, collecting
statistics from each.
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Optional

from tiered_memory.schemas import ConsolidationOptions

if TYPE_CHECKING:
    from tiered_memory.service import MemoryService

logger = logging.getLogger(__name__)


class JanitorRunner:
    """Orchestrates maintenance tasks for a tenant.

    Example:
        >>> runner = JanitorRunner(service)
        >>> stats = await runner.run_all("tenant-1")
        >>> print(f"Archived {stats['consolidation']['archived']} memories")
    """

    def __init__(self, service: "MemoryService", merge_similar: bool = True):
        self.service = service
        self.merge_similar = merge_similar

    async def run_consolidation(
        self,
        tenant_id: str,
        user_id: Optional[str] = None,
        dry_run: bool = False,
        timeout_seconds: Optional[float] = None,
    ) -> dict[str, Any]:
        result = await self.service.consolidate(
            ConsolidationOptions(
                tenant_id=tenant_id,
                user_id=user_id,
                merge_similar=self.merge_similar,
                dry_run=dry_run,
                timeout_seconds=timeout_seconds,
            )
        )
        return {
            "processed": result.processed,
            "promoted": len(result.promoted),
            "demoted": len(result.demoted),
            "archived": len(result.archived),
            "merged": len(result.merged),
            "deleted": len(result.deleted),
            "failures": len(result.failures),
            "cancelled": result.cancelled,
        }

    async def run_expiration_cleanup(
        self, tenant_id: str, user_id: Optional[str] = None
    ) -> dict[str, Any]:
        return {"removed": await self.service.cleanup_expired(tenant_id, user_id)}

    async def run_all(
        self,
        tenant_id: str,
        user_id: Optional[str] = None,
        dry_run: bool = False,
        timeout_seconds: Optional[float] = None,
    ) -> dict[str, Any]:
        """Run consolidation, then expiry cleanup (skipped on dry runs).

        Args:
            tenant_id: Tenant to maintain.
            user_id: Restrict consolidation and cleanup to one user.
            dry_run: Report consolidation decisions without applying them.
            timeout_seconds: Deadline for the consolidation sweep.

        Returns:
            Combined statistics from all tasks.
        """
        start_time = time.perf_counter()

        consolidation = await self.run_consolidation(
            tenant_id, user_id, dry_run=dry_run, timeout_seconds=timeout_seconds
        )
        if dry_run:
            expiration = {"removed": 0}
        else:
            expiration = await self.run_expiration_cleanup(tenant_id, user_id)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Janitor run for tenant {tenant_id} finished in {duration_ms:.1f}ms: "
            f"{consolidation['processed']} processed, {expiration['removed']} expired removed"
        )
        return {
            "consolidation": consolidation,
            "expiration": expiration,
            "total_processed": consolidation["processed"],
            "total_changed": (
                consolidation["promoted"]
                + consolidation["demoted"]
                + consolidation["archived"]
                + consolidation["merged"]
                + consolidation["deleted"]
                + expiration["removed"]
            ),
            "duration_ms": duration_ms,
        }
