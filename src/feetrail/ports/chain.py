# feetrail/ports/chain.py
from __future__ import annotations

from typing import Protocol
from ..domain.value_types import Address


class TransactionSender(Protocol):
    """Port for state-changing calls signed by the administrative key."""

    @property
    def address(self) -> Address:
        """Address of the signing account."""

    async def send(self, to: Address, data: str) -> str:
        """
        Submit a call and wait for one confirmation; return the tx hash.

        Reverts (at gas estimation or in the mined receipt) raise RPCError.
        """
