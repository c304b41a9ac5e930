# feetrail/ports/rpc.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import EventLog
from ..domain.value_types import Address, Topic0


class RPCClient(Protocol):
    """Port defining the read side of an Ethereum JSON-RPC client."""

    async def latest_block(self) -> int:
        """Return the latest block number as an integer."""

    async def get_logs(
        self,
        addresses: Sequence[Address],
        topic0s: Sequence[Topic0],
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        """Return normalized, typed logs for [from_block, to_block] inclusive."""

    async def get_block_timestamp(self, block_number: int) -> int | None:
        """Return the block's unix timestamp, or None if the node does not know the block."""

    async def call(self, to: Address, data: str) -> str:
        """eth_call against latest state; returns the 0x-prefixed return data."""

    async def get_code(self, address: Address) -> str:
        """Return the deployed runtime bytecode (0x-prefixed, "0x" when none)."""
