"""
Fee indexer: polls the fee vault(s) and writes the audit trail.

Lifecycle is Stopped -> Running -> Stopped. While running, one poll cycle
runs, then the next is scheduled after a fixed interval. Exactly one
instance may run against a given store: the cursor read-modify-write is not
guarded against concurrent pollers.
"""
from __future__ import annotations
import asyncio, logging
from dataclasses import replace
from datetime import datetime, timezone

from ..domain.errors import ConfigError, StoreUnavailableError
from ..domain.models import IndexerStatus
from ..ports.rpc import RPCClient
from ..ports.storage import DistributionStore
from .fetch import EventLogFetcher
from .identity_cache import ProjectIdentityCache
from .planning import plan_batches

log = logging.getLogger(__name__)

POLL_INTERVAL_S = 12.0
BACKFILL_BATCH_SIZE = 1000
INITIAL_RETRY_DELAY_S = 1.0
MAX_RETRY_DELAY_S = 60.0


class FeeIndexer:
    def __init__(
        self,
        *,
        rpc: RPCClient,
        store: DistributionStore,
        cache: ProjectIdentityCache,
        fetcher: EventLogFetcher | None,
        start_block: int = 0,
        poll_interval_s: float = POLL_INTERVAL_S,
        batch_size: int = BACKFILL_BATCH_SIZE,
        initial_retry_delay_s: float = INITIAL_RETRY_DELAY_S,
        max_retry_delay_s: float = MAX_RETRY_DELAY_S,
    ) -> None:
        self.rpc = rpc
        self.store = store
        self.cache = cache
        self.fetcher = fetcher
        self.start_block = start_block
        self.poll_interval_s = poll_interval_s
        self.batch_size = batch_size
        self.initial_retry_delay_s = initial_retry_delay_s
        self.max_retry_delay_s = max_retry_delay_s

        self._running = False
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: asyncio.Task[None] | None = None
        self._generation = 0              # bumped per start; stale timers and cycles stop rescheduling
        self._retry_delay = initial_retry_delay_s
        self.last_error: str | None = None
        self.events_indexed = 0
        self.started_at: datetime | None = None
        self._current_block: int | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def retry_delay_s(self) -> float:
        return self._retry_delay

    # ── lifecycle ──

    async def start(self) -> None:
        """Run a first cycle, then keep polling every `poll_interval_s`."""
        if self.fetcher is None:
            log.warning("Cannot start: no fee vault address configured")
            return
        if self._running:
            log.warning("Fee indexer already running")
            return

        # a cycle left over from a previous run finishes first
        await self.wait_idle()
        if self._running:
            return

        self._running = True
        self._generation += 1
        self.started_at = datetime.now(timezone.utc)
        self.last_error = None
        log.info("Starting fee indexer (vaults=%s)", ", ".join(self.fetcher.vault_addresses))

        generation = self._generation
        await self._poll()
        self._schedule(generation)
        log.info("Fee indexer running")

    def stop(self) -> None:
        """Cancel the pending timer; a cycle already in flight runs to completion."""
        if not self._running:
            return
        log.info("Stopping fee indexer...")
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        log.info("Fee indexer stopped")

    async def wait_idle(self) -> None:
        """Wait for the in-flight cycle, if any."""
        task = self._inflight
        if task is not None and not task.done():
            await task

    def _schedule(self, generation: int) -> None:
        if not self._running or generation != self._generation:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.poll_interval_s, self._on_timer, generation)

    def _on_timer(self, generation: int) -> None:
        self._timer = None
        if not self._running or generation != self._generation:
            return
        self._inflight = asyncio.create_task(self._cycle(generation))

    async def _cycle(self, generation: int) -> None:
        await self._poll()
        self._schedule(generation)

    async def _poll(self) -> None:
        try:
            await self.catch_up()
            self._retry_delay = self.initial_retry_delay_s
            self.last_error = None
        except Exception as e:
            log.error("Poll error (retry delay %.1fs): %s", self._retry_delay, e)
            self.last_error = str(e) or type(e).__name__
            # diagnostic only: the schedule stays fixed-interval
            self._retry_delay = min(self._retry_delay * 2, self.max_retry_delay_s)

    # ── indexing ──

    async def catch_up(self) -> None:
        """Index everything between the cursor and the chain head."""
        fetcher = self.fetcher
        if fetcher is None:
            raise ConfigError("no fee vault address configured")
        head = await self.rpc.latest_block()
        self._current_block = head

        await self.cache.refresh()
        await self.cache.repair(self.store)

        cursor = await self.store.get_cursor()
        if cursor is None:
            # no prior history is scanned unless a start block is configured
            seed = self.start_block - 1 if self.start_block > 0 else head - 1
            await self.store.set_cursor(seed)
            log.info("Seeded cursor at block %d (head=%d)", seed, head)
            return

        if head <= cursor:
            return
        for br in plan_batches(cursor + 1, head, self.batch_size):
            await self._process_range(fetcher, br.start, br.end)
            await self.store.set_cursor(br.end)

    async def backfill(self, from_block: int) -> int:
        """
        Re-scan [from_block, head]. Records already present are skipped by the
        store and the cursor is only ever moved forward.
        """
        fetcher = self.fetcher
        if fetcher is None:
            raise ConfigError("no fee vault address configured")
        head = await self.rpc.latest_block()
        self._current_block = head
        await self.cache.refresh()
        log.info("Backfilling from block %d to %d", from_block, head)

        created = 0
        for br in plan_batches(from_block, head, self.batch_size):
            log.debug("Backfill batch [%d, %d]", br.start, br.end)
            created += await self._process_range(fetcher, br.start, br.end)
            await self.store.set_cursor(br.end)
        log.info("Backfill complete: %d new records up to block %d", created, head)
        return created

    async def _process_range(self, fetcher: EventLogFetcher, from_block: int, to_block: int) -> int:
        records = await fetcher.fetch_range(from_block, to_block)
        created = 0
        for rec in records:  # already in (block_number, log_index) order
            if rec.project_id is None and rec.pool_id:
                project_id = self.cache.resolve(rec.pool_id)
                if project_id:
                    rec = replace(rec, project_id=project_id)
            if await self.store.insert_distribution_if_absent(rec):
                created += 1
        self.events_indexed += created
        return created

    # ── status ──

    async def status(self) -> IndexerStatus:
        try:
            last = await self.store.get_cursor()
        except StoreUnavailableError:
            last = None
        try:
            self._current_block = await self.rpc.latest_block()
        except Exception as e:
            log.debug("Keeping last known head: %s", e)

        current = self._current_block
        return IndexerStatus(
            is_running=self._running,
            last_processed_block=last,
            current_block=current,
            block_lag=current - last if last is not None and current is not None else None,
            last_error=self.last_error,
            events_indexed=self.events_indexed,
            started_at=self.started_at,
            retry_delay_s=self._retry_delay,
        )
