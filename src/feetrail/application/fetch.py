from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Sequence

from ..domain.decoding import FEE_VAULT_TOPICS, decode_fee_event
from ..domain.models import FeeDistributionRecord
from ..domain.value_types import Address
from ..ports.rpc import RPCClient

log = logging.getLogger(__name__)


class EventLogFetcher:
    """Fetch one block range of fee-vault logs and decode them into records."""

    def __init__(self, rpc: RPCClient, vault_addresses: Sequence[Address]) -> None:
        if not vault_addresses:
            raise ValueError("at least one vault address is required")
        self.rpc = rpc
        self.vault_addresses = list(vault_addresses)

    async def _timestamps(self, block_numbers: set[int]) -> dict[int, datetime]:
        # one lookup per distinct block, not per log
        out: dict[int, datetime] = {}
        for bn in sorted(block_numbers):
            ts = await self.rpc.get_block_timestamp(bn)
            if ts is not None:
                out[bn] = datetime.fromtimestamp(ts, tz=timezone.utc)
        return out

    async def fetch_range(self, from_block: int, to_block: int) -> list[FeeDistributionRecord]:
        logs = await self.rpc.get_logs(self.vault_addresses, FEE_VAULT_TOPICS, from_block, to_block)
        if not logs:
            return []
        logs.sort(key=lambda ev: (ev.block_number, ev.log_index))
        stamps = await self._timestamps({ev.block_number for ev in logs})

        out: list[FeeDistributionRecord] = []
        for ev in logs:
            ts = stamps.get(ev.block_number) or datetime.now(timezone.utc)
            try:
                rec = decode_fee_event(ev, ts)
            except Exception as e:
                log.error("Failed to decode log tx=%s logIndex=%d: %s", ev.tx_hash, ev.log_index, e)
                continue
            if rec is None:
                log.debug("Ignoring non fee-vault log tx=%s topic0=%s", ev.tx_hash, ev.topics[:1])
                continue
            out.append(rec)
        log.info("Decoded %d/%d fee vault events in [%d, %d]", len(out), len(logs), from_block, to_block)
        return out
