from __future__ import annotations
import logging
from dataclasses import dataclass

from ..adapters.memory_store import MemoryStore
from ..adapters.rpc_httpx import HttpxRPC
from ..adapters.signer_local import LocalAccountSender
from ..adapters.sql_store import SqlStore
from ..core.config import Settings
from .capabilities import BytecodeCapabilityProbe
from .fetch import EventLogFetcher
from .identity_cache import ProjectIdentityCache
from .indexer import FeeIndexer
from .routing import RoutingReconciler
from .sweep import run_startup_sweep

log = logging.getLogger(__name__)


@dataclass
class FeeTrailService:
    """
    Explicitly constructed process services. Build one per process: the
    indexer assumes it is the only writer of its cursor.
    """
    settings: Settings
    rpc: HttpxRPC
    store: SqlStore | MemoryStore
    cache: ProjectIdentityCache
    indexer: FeeIndexer
    reconciler: RoutingReconciler

    async def run_sweep(self):
        return await run_startup_sweep(self.store, self.reconciler, delay_s=self.settings.sweep_delay_s)

    async def aclose(self) -> None:
        self.indexer.stop()
        await self.indexer.wait_idle()
        await self.rpc.aclose()
        if isinstance(self.store, SqlStore):
            await self.store.aclose()


def build_service(settings: Settings) -> FeeTrailService:
    rpc = HttpxRPC(settings.rpc_url, timeout_s=settings.rpc_timeout_s)
    if settings.database_url:
        store: SqlStore | MemoryStore = SqlStore(settings.database_url)
    else:
        log.warning("DATABASE_URL not set, using in-memory store (nothing persists across restarts)")
        store = MemoryStore()

    cache = ProjectIdentityCache(store)
    vaults = settings.vault_addresses
    if not vaults:
        log.warning("FEE_VAULT_ADDRESS not configured, indexer disabled")
    fetcher = EventLogFetcher(rpc, vaults) if vaults else None
    indexer = FeeIndexer(
        rpc=rpc, store=store, cache=cache, fetcher=fetcher,
        start_block=settings.start_block,
        poll_interval_s=settings.poll_interval_s,
        batch_size=settings.batch_size,
        initial_retry_delay_s=settings.initial_retry_delay_s,
        max_retry_delay_s=settings.max_retry_delay_s,
    )

    sender = LocalAccountSender(rpc, settings.admin_private_key) if settings.admin_private_key else None
    reconciler = RoutingReconciler(
        rpc=rpc, sender=sender, vault_addresses=vaults,
        hook_address=settings.hook_address,
        factory_address=settings.factory_address,
        locker_address=settings.locker_address,
        probe=BytecodeCapabilityProbe(rpc),
    )
    return FeeTrailService(settings=settings, rpc=rpc, store=store, cache=cache,
                           indexer=indexer, reconciler=reconciler)
