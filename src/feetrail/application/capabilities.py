from __future__ import annotations
import logging

from ..domain.abi import VAULT_REASSIGN_DEV, selector
from ..domain.value_types import Address
from ..ports.rpc import RPCClient

log = logging.getLogger(__name__)

_PUSH4 = "63"


def bytecode_has_selector(code_hex: str, fn_selector: str) -> bool:
    """Solidity dispatchers compare calldata against `PUSH4 <selector>`."""
    code = code_hex.lower().removeprefix("0x")
    return (_PUSH4 + fn_selector.lower().removeprefix("0x")) in code


class BytecodeCapabilityProbe:
    """
    Answers "does the contract at X implement function F?" from its deployed
    bytecode. Contract code is immutable, so answers are cached forever per
    (address, selector); failed lookups are not cached.
    """

    def __init__(self, rpc: RPCClient) -> None:
        self.rpc = rpc
        self._cache: dict[tuple[str, str], bool] = {}

    async def supports(self, address: Address, fn_selector: str) -> bool:
        key = (address.lower(), fn_selector.lower())
        hit = self._cache.get(key)
        if hit is not None:
            return hit
        code = await self.rpc.get_code(address)
        ok = bytecode_has_selector(code, fn_selector)
        self._cache[key] = ok
        log.debug("capability %s on %s: %s", fn_selector, address, ok)
        return ok

    async def supports_reassign(self, vault: Address) -> bool:
        return await self.supports(vault, selector(VAULT_REASSIGN_DEV))
