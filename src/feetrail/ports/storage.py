# feetrail/ports/storage.py
from __future__ import annotations

from typing import Protocol
from ..domain.models import DistributionFilters, DistributionStats, FeeDistributionRecord, ProjectRow


class DistributionStore(Protocol):
    """Port for the fee-distribution audit trail and the indexer cursor."""

    async def insert_distribution_if_absent(self, record: FeeDistributionRecord) -> bool:
        """Insert unless (tx_hash, log_index) already exists; return True if created."""

    async def get_cursor(self) -> int | None:
        """Last fully indexed block, or None if never seeded."""

    async def set_cursor(self, block_number: int) -> None:
        """Persist the cursor; never moves it backwards."""

    async def update_project_id_for_pool_id(self, pool_id: str, project_id: str) -> int:
        """Set project_id on records for pool_id whose project_id is NULL; return rows touched."""

    async def list_distributions(
        self, filters: DistributionFilters | None = None, *, limit: int = 20, offset: int = 0,
    ) -> list[FeeDistributionRecord]:
        """Records matching filters, newest block first."""

    async def aggregate_stats(self) -> DistributionStats:
        """Totals across the audit trail."""


class ProjectRegistry(Protocol):
    """Port for the narrow read side of the project registry."""

    async def list_pool_projects(self) -> list[ProjectRow]:
        """All projects that have a pool id."""

    async def list_projects_with_pool_and_owner(self) -> list[ProjectRow]:
        """Projects with both a pool id and a verified owner wallet."""
