from __future__ import annotations
import asyncio, itertools, logging, httpx
from typing import Any, Sequence
from ..domain.errors import RPCError
from ..domain.models import EventLog
from ..domain.value_types import Address, Topic0
from ..ports.rpc import RPCClient

log = logging.getLogger(__name__)

def _to_hex_block(n: int) -> str: return hex(int(n))
def _topic_filter(topic0s: Sequence[Topic0]) -> list[list[str]]:
    """OR-filter on topic0, other positions unconstrained."""
    t0s = [str(t).strip().lower() for t in topic0s]
    bad = [t for t in t0s if not (t.startswith("0x") and len(t) == 66)]
    if bad:
        raise ValueError(f"Invalid topic0(s): {bad}")
    return [t0s]

def _hex_int(v: Any) -> int:
    if isinstance(v, int): return v
    s = str(v).lower()
    return int(s, 16) if s.startswith("0x") else int(s)


class HttpxRPC(RPCClient):
    """JSON-RPC client over a shared httpx.AsyncClient (HTTP/2, pooled)."""

    def __init__(self, rpc_url: str, timeout_s: int = 20, max_conn: int = 64, max_attempts: int = 3,
                 client: httpx.AsyncClient | None = None) -> None:
        self.rpc_url = rpc_url
        self.max_attempts = max_attempts
        self.client = client or httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max_conn//2),
        )
        self._ids = itertools.count(1)

    async def request(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc":"2.0","id":next(self._ids),"method":method,"params":params}
        # retry on 429 with simple backoff
        for attempt in range(self.max_attempts):
            r = await self.client.post(self.rpc_url, json=payload)
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                log.debug("%s rate limited, retrying in %.1fs", method, delay)
                await asyncio.sleep(delay); continue
            r.raise_for_status()
            data = r.json()
            if "error" in data:
                err = data["error"]
                if isinstance(err, dict):
                    raise RPCError(method, err.get("code"), str(err.get("message", "")), err.get("data"))
                raise RPCError(method, None, str(err))
            return data.get("result")
        raise RPCError(method, 429, f"Retries exhausted for {method}")

    async def latest_block(self) -> int:
        return _hex_int(await self.request("eth_blockNumber", []))

    async def get_logs(self, addresses: Sequence[Address], topic0s: Sequence[Topic0], from_block: int, to_block: int) -> list[EventLog]:
        addr = [str(a).lower() for a in addresses]
        res = await self.request("eth_getLogs", [{
            "address": addr[0] if len(addr) == 1 else addr,
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
            "topics": _topic_filter(topic0s),
        }]) or []
        typed: list[EventLog] = []
        for rl in res:
            if rl.get("removed"):
                continue
            typed.append(EventLog(
                address=Address(rl["address"].lower()),
                topics=tuple(Topic0(t.lower()) for t in rl.get("topics", [])),
                data_hex=str(rl.get("data") or "0x"),
                block_number=_hex_int(rl["blockNumber"]),
                tx_hash=rl["transactionHash"].lower(),
                log_index=_hex_int(rl["logIndex"]),
            ))
        return typed

    async def get_block_timestamp(self, block_number: int) -> int | None:
        block = await self.request("eth_getBlockByNumber", [_to_hex_block(block_number), False])
        if not block:
            return None
        return _hex_int(block["timestamp"])

    async def call(self, to: Address, data: str) -> str:
        return await self.request("eth_call", [{"to": str(to), "data": data}, "latest"]) or "0x"

    async def get_code(self, address: Address) -> str:
        return await self.request("eth_getCode", [str(address), "latest"]) or "0x"

    # --- write-side helpers used by the local signer ---

    async def chain_id(self) -> int:
        return _hex_int(await self.request("eth_chainId", []))

    async def gas_price(self) -> int:
        return _hex_int(await self.request("eth_gasPrice", []))

    async def transaction_count(self, address: Address) -> int:
        return _hex_int(await self.request("eth_getTransactionCount", [str(address), "pending"]))

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return _hex_int(await self.request("eth_estimateGas", [tx]))

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return str(await self.request("eth_sendRawTransaction", [raw_tx]))

    async def transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.request("eth_getTransactionReceipt", [tx_hash])

    async def aclose(self) -> None:
        await self.client.aclose()
