from __future__ import annotations
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from .value_types import Address, EscrowAction, EventType, PoolId, Topic0


@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int
    def span(self) -> int: return self.end - self.start + 1


@dataclass(slots=True, frozen=True)
class EventLog:
    """Raw log as returned by eth_getLogs, minimally normalized."""
    address: Address                   # lowercased hex with 0x
    topics: tuple[Topic0, ...]         # lowercased hex with 0x
    data_hex: str                      # hex with 0x (or "0x")
    block_number: int
    tx_hash: str                       # lowercased hex with 0x
    log_index: int


@dataclass(slots=True, frozen=True)
class FeeDistributionRecord:
    tx_hash: str
    log_index: int
    block_number: int
    block_timestamp: datetime
    event_type: EventType
    token_address: Address
    pool_id: PoolId | None = None
    dev_address: Address | None = None
    recipient_address: Address | None = None
    amount: str | None = None          # uint256 as base-10 strings
    dev_amount: str | None = None
    protocol_amount: str | None = None
    project_id: str | None = None
    vault_address: Address | None = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.tx_hash, self.log_index)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class ProjectRow:
    project_id: str
    name: str | None = None
    pool_id: PoolId | None = None
    owner_wallet: Address | None = None
    pool_token_address: Address | None = None


@dataclass(slots=True, frozen=True)
class LaunchInfo:
    token: Address
    dev: Address
    project_id: str
    pool_id: PoolId
    pool: Address
    lp_token_ids: tuple[int, ...]
    launched_at: int
    launched_by: Address


@dataclass(slots=True, frozen=True)
class RoutingRequest:
    pool_id: str
    dev_address: str
    project_id: str
    pool_token_address: str | None = None


@dataclass(slots=True, frozen=True)
class RoutingOutcome:
    """Result of one reconciliation attempt; expected failures are data, not errors."""
    hook_routing_updated: bool = False
    hook_routing_blocked_by_pool_assigned: bool = False
    locker_routing_updated: bool = False
    escrow_action: EscrowAction = "noop"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class IndexerStatus:
    is_running: bool
    last_processed_block: int | None
    current_block: int | None
    block_lag: int | None
    last_error: str | None
    events_indexed: int
    started_at: datetime | None
    retry_delay_s: float = 0.0         # diagnostic only, does not pace polling


@dataclass(slots=True, frozen=True)
class DistributionFilters:
    event_type: EventType | None = None
    pool_id: str | None = None
    dev_address: str | None = None
    token_address: str | None = None


@dataclass(slots=True, frozen=True)
class DistributionStats:
    total_distributed: str = "0"
    total_dev_claimed: str = "0"
    total_protocol_claimed: str = "0"
    total_escrowed: str = "0"
    count: int = 0
    unique_devs: int = 0
    unique_pools: int = 0
    last_indexed_block: int | None = None


@dataclass(slots=True)
class SweepSummary:
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
