"""Calldata encoding and return decoding for the hook, factory, locker and vault."""
from __future__ import annotations

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from .decoding import hex_to_bytes
from .models import LaunchInfo
from .value_types import Address, PoolId

# hook
REGISTERED_POOLS = "registeredPools(bytes32)"
HOOK_SET_DEV = "setDevForPool(bytes32,address)"
# factory
GET_LAUNCH_INFO = "getLaunchInfo(address)"
# locker
LOCKER_UPDATE_DEV = "updateDev(uint256,address)"
# vault
VAULT_ASSIGN_DEV = "assignDev(bytes32,address)"
VAULT_REASSIGN_DEV = "reassignDev(bytes32,address)"

_LAUNCH_INFO_TYPES = "(address,address,string,bytes32,address,uint256[],uint256,address)"
_LEGACY_LAUNCH_INFO_TYPES = "(address,address,string,bytes32,address,uint256,uint256,address)"


def selector(signature: str) -> str:
    """0x-prefixed 4-byte function selector."""
    return "0x" + function_signature_to_4byte_selector(signature).hex()


def _arg_types(signature: str) -> list[str]:
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [t for t in inner.split(",") if t]


def encode_call(signature: str, *args: object) -> str:
    types = _arg_types(signature)
    if len(types) != len(args):
        raise ValueError(f"{signature} expects {len(types)} args, got {len(args)}")
    return selector(signature) + encode(types, list(args)).hex()


def pool_id_bytes(pool_id: str) -> bytes:
    return hex_to_bytes(pool_id).rjust(32, b"\0")


def decode_bool(data_hex: str) -> bool:
    (value,) = decode(["bool"], hex_to_bytes(data_hex))
    return bool(value)


def decode_launch_info(data_hex: str) -> LaunchInfo:
    """Decode getLaunchInfo output; accepts both the lpTokenIds[] and the legacy lpTokenId layout."""
    raw = hex_to_bytes(data_hex)
    try:
        (t,) = decode([_LAUNCH_INFO_TYPES], raw)
        lp_ids = tuple(int(x) for x in t[5])
    except (DecodingError, OverflowError, ValueError):
        (t,) = decode([_LEGACY_LAUNCH_INFO_TYPES], raw)
        lp_ids = (int(t[5]),)
    return LaunchInfo(
        token=Address(to_checksum_address(t[0])),
        dev=Address(to_checksum_address(t[1])),
        project_id=t[2],
        pool_id=PoolId("0x" + bytes(t[3]).hex()),
        pool=Address(to_checksum_address(t[4])),
        lp_token_ids=tuple(i for i in lp_ids if i != 0),
        launched_at=int(t[6]),
        launched_by=Address(to_checksum_address(t[7])),
    )
