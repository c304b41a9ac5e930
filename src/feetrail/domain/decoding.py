from __future__ import annotations

from datetime import datetime

from eth_utils import event_signature_to_log_topic, to_checksum_address

from .errors import LogDecodeError
from .models import EventLog, FeeDistributionRecord
from .value_types import Address, EventType, PoolId, Topic0, ZERO_ADDRESS


def _topic(signature: str) -> Topic0:
    return Topic0("0x" + event_signature_to_log_topic(signature).hex())


# Topic0 constants (lowercase, with "0x")
FEES_DEPOSITED_T0        = _topic("FeesDeposited(bytes32,address,address,uint256,uint256)")
FEES_ESCROWED_T0         = _topic("FeesEscrowed(bytes32,address,uint256)")
DEV_ASSIGNED_T0          = _topic("DevAssigned(bytes32,address,uint256)")
FEES_EXPIRED_T0          = _topic("FeesExpired(bytes32,address,uint256)")
DEV_FEES_CLAIMED_T0      = _topic("DevFeesClaimed(address,address,uint256)")
PROTOCOL_FEES_CLAIMED_T0 = _topic("ProtocolFeesClaimed(address,uint256,address)")

FEE_VAULT_TOPICS: tuple[Topic0, ...] = (
    FEES_DEPOSITED_T0, FEES_ESCROWED_T0, DEV_ASSIGNED_T0,
    FEES_EXPIRED_T0, DEV_FEES_CLAIMED_T0, PROTOCOL_FEES_CLAIMED_T0,
)

# topic0 -> (eventType, indexed topics needed, data words needed)
_LAYOUT: dict[str, tuple[EventType, int, int]] = {
    FEES_DEPOSITED_T0:        ("deposit", 3, 2),
    FEES_ESCROWED_T0:         ("escrow", 2, 1),
    DEV_ASSIGNED_T0:          ("dev_assigned", 2, 1),
    FEES_EXPIRED_T0:          ("expired", 2, 1),
    DEV_FEES_CLAIMED_T0:      ("dev_claimed", 2, 1),
    PROTOCOL_FEES_CLAIMED_T0: ("protocol_claimed", 1, 2),
}

# --------- 32B word slicing (no eth_abi needed for fixed layouts) -------------
def _word(b: bytes, i: int) -> bytes: o = i*32; return b[o:o+32]
def _u256(w: bytes) -> str: return str(int.from_bytes(w, "big"))
def _addr_from_word(w: bytes) -> Address: return Address(to_checksum_address("0x" + w[-20:].hex()))
def _addr_from_topic(t: str) -> Address: return Address(to_checksum_address("0x" + t[-40:]))
def _pool_from_topic(t: str) -> PoolId: return PoolId("0x" + t[-64:].lower())

def hex_to_bytes(data_hex: str) -> bytes:
    h = data_hex[2:] if data_hex[:2].lower() == "0x" else data_hex
    if len(h) % 2: h = "0" + h
    return bytes.fromhex(h) if h else b""


def decode_fee_event(log: EventLog, block_timestamp: datetime) -> FeeDistributionRecord | None:
    """
    Decode one fee-vault log into a record.

    Returns None when topic0 is not a fee-vault event; raises LogDecodeError
    when it is one but the topics or data are malformed.
    """
    if not log.topics:
        return None
    t0 = log.topics[0].lower()
    layout = _LAYOUT.get(t0)
    if layout is None:
        return None

    event_type, n_indexed, n_words = layout
    top = [(t[2:] if t[:2].lower() == "0x" else t).lower() for t in log.topics]
    if len(top) < n_indexed + 1:
        raise LogDecodeError(f"{event_type}: expected {n_indexed} indexed topics, got {len(top) - 1}")
    try:
        data = hex_to_bytes(log.data_hex)
    except ValueError as e:
        raise LogDecodeError(f"{event_type}: data is not hex") from e
    if len(data) < 32 * n_words:
        raise LogDecodeError(f"{event_type}: expected {32 * n_words} data bytes, got {len(data)}")

    try:
        fields: dict = {}
        if t0 == FEES_DEPOSITED_T0:
            fields = dict(pool_id=_pool_from_topic(top[1]), dev_address=_addr_from_topic(top[2]),
                          token_address=_addr_from_topic(top[3]),
                          dev_amount=_u256(_word(data, 0)), protocol_amount=_u256(_word(data, 1)))
        elif t0 in (FEES_ESCROWED_T0, FEES_EXPIRED_T0):
            fields = dict(pool_id=_pool_from_topic(top[1]), token_address=_addr_from_topic(top[2]),
                          amount=_u256(_word(data, 0)))
        elif t0 == DEV_ASSIGNED_T0:
            # token is not part of the event
            fields = dict(pool_id=_pool_from_topic(top[1]), dev_address=_addr_from_topic(top[2]),
                          token_address=ZERO_ADDRESS, amount=_u256(_word(data, 0)))
        elif t0 == DEV_FEES_CLAIMED_T0:
            fields = dict(dev_address=_addr_from_topic(top[1]), token_address=_addr_from_topic(top[2]),
                          amount=_u256(_word(data, 0)))
        elif t0 == PROTOCOL_FEES_CLAIMED_T0:
            fields = dict(token_address=_addr_from_topic(top[1]), amount=_u256(_word(data, 0)),
                          recipient_address=_addr_from_word(_word(data, 1)))
        vault = Address(to_checksum_address(log.address))
    except ValueError as e:
        raise LogDecodeError(f"{event_type}: {e}") from e

    return FeeDistributionRecord(
        tx_hash=log.tx_hash,
        log_index=log.log_index,
        block_number=log.block_number,
        block_timestamp=block_timestamp,
        event_type=event_type,
        vault_address=vault,
        **fields,
    )
