from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Sequence

import pytest

from feetrail.adapters.memory_store import MemoryStore
from feetrail.domain.errors import RPCError
from feetrail.domain.models import EventLog
from feetrail.domain.value_types import Address, Topic0

VAULT = Address("0x1111111111111111111111111111111111111111")
LEGACY_VAULT = Address("0x2222222222222222222222222222222222222222")
HOOK = Address("0x3333333333333333333333333333333333333333")
FACTORY = Address("0x4444444444444444444444444444444444444444")
LOCKER = Address("0x5555555555555555555555555555555555555555")
TOKEN = Address("0x6666666666666666666666666666666666666666")
DEV = Address("0x7777777777777777777777777777777777777777")
OTHER_DEV = Address("0x8888888888888888888888888888888888888888")

POOL_A = "0x" + "aa" * 32
POOL_B = "0x" + "bb" * 32


def word(value: int | str) -> str:
    """One 32-byte ABI word (no 0x) from an int or a 0x-address."""
    if isinstance(value, str):
        return value.lower().removeprefix("0x").rjust(64, "0")
    return format(value, "064x")


def topic(value: int | str) -> Topic0:
    return Topic0("0x" + word(value))


def make_log(t0: str, indexed: Sequence[int | str] = (), data: Sequence[int | str] = (), *,
             block: int = 100, log_index: int = 0, address: str = VAULT,
             tx_hash: str | None = None) -> EventLog:
    return EventLog(
        address=Address(address.lower()),
        topics=(Topic0(t0),) + tuple(topic(v) for v in indexed),
        data_hex="0x" + "".join(word(v) for v in data),
        block_number=block,
        tx_hash=tx_hash or "0x" + format(block * 1000 + log_index, "064x"),
        log_index=log_index,
    )


def reverted(reason: str, data: Any = None) -> RPCError:
    return RPCError("eth_estimateGas", 3, f"execution reverted: {reason}", data)


class FakeRPC:
    """Scriptable read-side RPC. Calls and code are keyed by lowercased address."""

    def __init__(self, head: int = 1000) -> None:
        self.head = head
        self.logs: list[EventLog] = []
        self.head_error: Exception | None = None
        self.logs_error: Exception | None = None
        self.timestamps: dict[int, int] = {}
        self.timestamp_calls: list[int] = []
        self.log_calls: list[tuple[int, int]] = []
        self.call_results: dict[tuple[str, str], Any] = {}
        self.code: dict[str, Any] = {}
        self.code_calls = 0

    async def latest_block(self) -> int:
        if self.head_error is not None:
            raise self.head_error
        return self.head

    async def get_logs(self, addresses, topic0s, from_block, to_block):
        self.log_calls.append((from_block, to_block))
        if self.logs_error is not None:
            raise self.logs_error
        wanted = {a.lower() for a in addresses}
        return [l for l in self.logs if l.address in wanted and from_block <= l.block_number <= to_block]

    async def get_block_timestamp(self, block_number: int) -> int | None:
        self.timestamp_calls.append(block_number)
        return self.timestamps.get(block_number, 1_700_000_000 + block_number)

    async def call(self, to, data: str) -> str:
        result = self.call_results[(to.lower(), data[:10])]
        if isinstance(result, Exception):
            raise result
        return result

    async def get_code(self, address) -> str:
        self.code_calls += 1
        result = self.code.get(address.lower(), "0x")
        if isinstance(result, Exception):
            raise result
        return result


class FakeSender:
    """Records sends; failures are scripted per (to, selector) and consumed in order."""

    address = Address("0x9999999999999999999999999999999999999999")

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], list[Exception]] = defaultdict(list)

    def fail(self, to: str, fn_selector: str, *errors: Exception) -> None:
        self.failures[(to.lower(), fn_selector)].extend(errors)

    def calls_to(self, to: str, fn_selector: str | None = None) -> list[str]:
        return [d for t, d in self.sent if t == to.lower() and (fn_selector is None or d.startswith(fn_selector))]

    async def send(self, to, data: str) -> str:
        queue = self.failures.get((to.lower(), data[:10]))
        if queue:
            raise queue.pop(0)
        self.sent.append((to.lower(), data))
        return "0x" + format(len(self.sent), "064x")


@pytest.fixture
def rpc() -> FakeRPC:
    return FakeRPC()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def ts() -> datetime:
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


SETTINGS_ENV = (
    "RPC_URL", "FEE_VAULT_ADDRESS", "LEGACY_FEE_VAULT_ADDRESSES", "FACTORY_ADDRESS", "HOOK_ADDRESS",
    "LP_LOCKER_ADDRESS", "ADMIN_PRIVATE_KEY", "DATABASE_URL", "INDEXER_START_BLOCK",
    "POLL_INTERVAL_SECONDS", "BACKFILL_BATCH_SIZE", "SWEEP_DELAY_SECONDS", "RPC_TIMEOUT_SECONDS", "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Isolate from the caller's environment and any .env in the working directory."""
    for name in SETTINGS_ENV:
        # setenv first so values loaded from .env files are removed on teardown
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
