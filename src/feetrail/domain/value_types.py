from __future__ import annotations
import re
from typing import NewType, Literal

from eth_utils import is_address

Address = NewType("Address", str)   # 0x-prefixed, checksum or lowercase
PoolId  = NewType("PoolId", str)    # 0x-prefixed, lowercase, 32 bytes
Topic0  = NewType("Topic0", str)    # 66-char 0x-hash
EventType = Literal["deposit", "escrow", "dev_assigned", "expired", "dev_claimed", "protocol_claimed"]
EscrowAction = Literal["assigned", "reassigned", "noop"]

ZERO_ADDRESS = Address("0x" + "0" * 40)

_POOL_ID_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def is_pool_id(value: object) -> bool:
    return isinstance(value, str) and bool(_POOL_ID_RE.match(value))


def is_dev_address(value: object) -> bool:
    """Syntactically valid and not the zero address."""
    return isinstance(value, str) and is_address(value) and value.lower() != ZERO_ADDRESS


def short_id(value: str | None, keep: int = 18) -> str:
    if not value:
        return "-"
    return value if len(value) <= keep else value[:keep] + "..."
