from __future__ import annotations
import logging
from types import MappingProxyType
from typing import Mapping

from ..domain.errors import StoreUnavailableError
from ..ports.storage import DistributionStore, ProjectRegistry

log = logging.getLogger(__name__)


class ProjectIdentityCache:
    """
    poolId -> projectId mapping, rebuilt wholesale every poll cycle.

    The map is swapped by a single reference assignment, so concurrent
    readers (the reconciler, status calls) always see a complete snapshot.
    """

    def __init__(self, registry: ProjectRegistry) -> None:
        self.registry = registry
        self._mapping: Mapping[str, str] = MappingProxyType({})

    @property
    def mapping(self) -> Mapping[str, str]:
        return self._mapping

    def __len__(self) -> int:
        return len(self._mapping)

    def resolve(self, pool_id: str | None) -> str | None:
        if not pool_id:
            return None
        return self._mapping.get(pool_id.lower())

    async def refresh(self) -> None:
        try:
            rows = await self.registry.list_pool_projects()
        except StoreUnavailableError:
            # keep the existing snapshot
            return
        except Exception as e:
            log.warning("Failed to refresh pool->project cache: %s", e)
            return
        self._mapping = MappingProxyType({r.pool_id.lower(): r.project_id for r in rows if r.pool_id})

    async def repair(self, store: DistributionStore) -> int:
        """Fill project_id on already-indexed records that were stored before their pool was known."""
        snapshot = self._mapping
        if not snapshot:
            return 0
        repaired = 0
        try:
            for pool_id, project_id in snapshot.items():
                repaired += await store.update_project_id_for_pool_id(pool_id, project_id)
        except StoreUnavailableError:
            return repaired
        except Exception as e:
            log.warning("Failed to backfill project ids: %s", e)
            return repaired
        if repaired:
            log.info("Backfilled projectId on %d fee distributions (%d pool mappings)", repaired, len(snapshot))
        return repaired
