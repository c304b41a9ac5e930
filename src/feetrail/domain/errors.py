"""Exception hierarchy and the revert-reason classification table.

Expected on-chain business conditions ("already assigned", "no unclaimed
fees") are recognised here and nowhere else. A revert is matched either by a
reason substring in the RPC error message or by the 4-byte custom-error
selector at the start of the revert data; anything unmatched is
``RevertKind.UNEXPECTED``.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from eth_utils import function_signature_to_4byte_selector


class FeeTrailError(Exception):
    """Base class for errors raised by feetrail."""


class ConfigError(FeeTrailError):
    pass


class RPCError(FeeTrailError):
    """JSON-RPC error object returned by the node."""

    def __init__(self, method: str, code: int | None, message: str, data: Any = None) -> None:
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{method} RPC error code={code} message={message}")


class TransactionRevertedError(RPCError):
    """A transaction was mined with status 0."""

    def __init__(self, tx_hash: str) -> None:
        self.tx_hash = tx_hash
        super().__init__("eth_getTransactionReceipt", None, f"transaction {tx_hash} reverted")


class LogDecodeError(FeeTrailError):
    pass


class StoreUnavailableError(FeeTrailError):
    """The persisted store cannot be reached."""


class InvalidRoutingInputError(FeeTrailError, ValueError):
    """Malformed pool id or developer address; a caller bug, never retried."""


class EscrowReconciliationError(FeeTrailError):
    """Escrow assignment failed for a reason the classifier does not expect."""

    def __init__(self, pool_id: str, vault_address: str, cause: BaseException) -> None:
        self.pool_id = pool_id
        self.vault_address = vault_address
        self.cause = cause
        super().__init__(f"escrow reconciliation failed for pool {pool_id} on vault {vault_address}: {cause}")


class RevertKind(str, Enum):
    POOL_ALREADY_ASSIGNED = "pool_already_assigned"
    NO_UNCLAIMED_FEES = "no_unclaimed_fees"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class RevertRule:
    kind: RevertKind
    error_signature: str               # custom error, e.g. "PoolAlreadyAssigned()"
    substrings: tuple[str, ...]        # matched case-insensitively

    @property
    def selector(self) -> str:
        return "0x" + function_signature_to_4byte_selector(self.error_signature).hex()


REVERT_RULES: tuple[RevertRule, ...] = (
    RevertRule(RevertKind.POOL_ALREADY_ASSIGNED, "PoolAlreadyAssigned()",
               ("poolalreadyassigned", "already assigned")),
    RevertRule(RevertKind.NO_UNCLAIMED_FEES, "NoUnclaimedFees()",
               ("nounclaimedfees", "no unclaimed fees")),
)


def _revert_data(exc: BaseException) -> str | None:
    data = getattr(exc, "data", None)
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, (bytes, bytearray)):
        return "0x" + bytes(data).hex()
    if isinstance(data, str) and data.startswith("0x"):
        return data.lower()
    return None


def classify_failure(exc: BaseException) -> RevertKind:
    message = str(getattr(exc, "message", "") or exc).lower()
    data = _revert_data(exc)
    for rule in REVERT_RULES:
        if data is not None and data.startswith(rule.selector):
            return rule.kind
        if any(s in message for s in rule.substrings):
            return rule.kind
    return RevertKind.UNEXPECTED
