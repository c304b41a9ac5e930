from __future__ import annotations
import asyncio, logging
from eth_account import Account
from eth_utils import to_checksum_address

from ..domain.errors import TransactionRevertedError
from ..domain.value_types import Address
from ..ports.chain import TransactionSender
from .rpc_httpx import HttpxRPC

log = logging.getLogger(__name__)


class LocalAccountSender(TransactionSender):
    """
    Signs legacy (gasPrice) transactions with an in-process key and waits
    for one confirmation. Sends are serialized so nonces stay ordered.
    """

    def __init__(self, rpc: HttpxRPC, private_key: str, *, gas_multiplier: float = 1.2,
                 receipt_poll_s: float = 1.0, receipt_timeout_s: float = 180.0) -> None:
        self.rpc = rpc
        self._account = Account.from_key(private_key)
        self.gas_multiplier = gas_multiplier
        self.receipt_poll_s = receipt_poll_s
        self.receipt_timeout_s = receipt_timeout_s
        self._chain_id: int | None = None
        self._lock = asyncio.Lock()

    @property
    def address(self) -> Address:
        return Address(self._account.address)

    async def send(self, to: Address, data: str) -> str:
        async with self._lock:
            if self._chain_id is None:
                self._chain_id = await self.rpc.chain_id()
            call = {"from": self.address, "to": to_checksum_address(to), "data": data}
            gas = await self.rpc.estimate_gas(call)           # reverts surface here
            tx = {
                "to": to_checksum_address(to),
                "data": data,
                "value": 0,
                "gas": int(gas * self.gas_multiplier),
                "gasPrice": await self.rpc.gas_price(),
                "nonce": await self.rpc.transaction_count(self.address),
                "chainId": self._chain_id,
            }
            signed = self._account.sign_transaction(tx)
            tx_hash = await self.rpc.send_raw_transaction("0x" + signed.raw_transaction.hex().removeprefix("0x"))
            log.debug("sent %s to %s (nonce=%d)", tx_hash, to, tx["nonce"])
        await self._wait_for_receipt(tx_hash)
        return tx_hash

    async def _wait_for_receipt(self, tx_hash: str) -> None:
        waited = 0.0
        while True:
            receipt = await self.rpc.transaction_receipt(tx_hash)
            if receipt is not None and receipt.get("blockNumber") is not None:
                if int(str(receipt.get("status", "0x1")), 16) == 0:
                    raise TransactionRevertedError(tx_hash)
                return
            if waited >= self.receipt_timeout_s:
                raise TimeoutError(f"no receipt for {tx_hash} after {waited:.0f}s")
            await asyncio.sleep(self.receipt_poll_s)
            waited += self.receipt_poll_s
