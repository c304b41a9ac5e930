from __future__ import annotations
from typing import Iterable

from ..domain.models import DistributionFilters, DistributionStats, FeeDistributionRecord


def matches(r: FeeDistributionRecord, f: DistributionFilters | None) -> bool:
    if f is None:
        return True
    if f.event_type and r.event_type != f.event_type:
        return False
    if f.pool_id and (r.pool_id or "") != f.pool_id.lower():
        return False
    if f.dev_address and (r.dev_address or "").lower() != f.dev_address.lower():
        return False
    if f.token_address and r.token_address.lower() != f.token_address.lower():
        return False
    return True


def summarize(records: Iterable[FeeDistributionRecord], last_block: int | None) -> DistributionStats:
    """Exact uint256 totals; amounts are summed as Python ints, never floats."""
    deposited = dev_claimed = protocol_claimed = escrowed = 0
    devs: set[str] = set()
    pools: set[str] = set()
    count = 0
    for r in records:
        count += 1
        if r.dev_address: devs.add(r.dev_address.lower())
        if r.pool_id: pools.add(r.pool_id)
        if r.event_type == "deposit":
            deposited += int(r.dev_amount or 0) + int(r.protocol_amount or 0)
        elif r.event_type == "dev_claimed":
            dev_claimed += int(r.amount or 0)
        elif r.event_type == "protocol_claimed":
            protocol_claimed += int(r.amount or 0)
        elif r.event_type == "escrow":
            escrowed += int(r.amount or 0)
    return DistributionStats(
        total_distributed=str(deposited),
        total_dev_claimed=str(dev_claimed),
        total_protocol_claimed=str(protocol_claimed),
        total_escrowed=str(escrowed),
        count=count,
        unique_devs=len(devs),
        unique_pools=len(pools),
        last_indexed_block=last_block,
    )
