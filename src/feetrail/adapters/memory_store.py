from __future__ import annotations
import asyncio
from dataclasses import replace

from ..domain.models import DistributionFilters, DistributionStats, FeeDistributionRecord, ProjectRow
from ..ports.storage import DistributionStore, ProjectRegistry
from .stats import matches, summarize


class MemoryStore(DistributionStore, ProjectRegistry):
    """
    In-process store used when no DATABASE_URL is configured.
    Nothing survives a restart; the cursor is re-seeded from the chain head.
    """

    def __init__(self, projects: list[ProjectRow] | None = None) -> None:
        self._records: dict[tuple[str, int], FeeDistributionRecord] = {}
        self._cursor: int | None = None
        self._projects: dict[str, ProjectRow] = {p.project_id: p for p in projects or []}
        self._lock = asyncio.Lock()

    async def insert_distribution_if_absent(self, record: FeeDistributionRecord) -> bool:
        async with self._lock:
            if record.key in self._records:
                return False
            self._records[record.key] = record
            return True

    async def get_cursor(self) -> int | None:
        return self._cursor

    async def set_cursor(self, block_number: int) -> None:
        async with self._lock:
            if self._cursor is None or block_number > self._cursor:
                self._cursor = block_number

    async def update_project_id_for_pool_id(self, pool_id: str, project_id: str) -> int:
        n = 0
        async with self._lock:
            for key, rec in self._records.items():
                if rec.pool_id == pool_id.lower() and rec.project_id is None:
                    self._records[key] = replace(rec, project_id=project_id)
                    n += 1
        return n

    async def list_distributions(self, filters: DistributionFilters | None = None, *,
                                 limit: int = 20, offset: int = 0) -> list[FeeDistributionRecord]:
        rows = [r for r in self._records.values() if matches(r, filters)]
        rows.sort(key=lambda r: (r.block_number, r.log_index), reverse=True)
        return rows[offset:offset + limit]

    async def aggregate_stats(self) -> DistributionStats:
        return summarize(list(self._records.values()), self._cursor)

    # --- project registry ---

    async def upsert_project(self, row: ProjectRow) -> None:
        self._projects[row.project_id] = row

    async def list_pool_projects(self) -> list[ProjectRow]:
        return [p for p in self._projects.values() if p.pool_id]

    async def list_projects_with_pool_and_owner(self) -> list[ProjectRow]:
        return [p for p in self._projects.values() if p.pool_id and p.owner_wallet]
