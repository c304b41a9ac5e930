from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
from eth_utils import is_address, to_checksum_address

from ..domain.errors import ConfigError
from ..domain.value_types import Address

DEFAULT_RPC_URL = "https://mainnet.base.org"


def _env(name: str) -> str | None:
    raw = os.getenv(name, "").strip()
    return raw or None


def _address(name: str, value: str | None) -> Address | None:
    if value is None:
        return None
    if not is_address(value):
        raise ConfigError(f"{name} is not a valid address: {value!r}")
    return Address(to_checksum_address(value))


def _int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    """Process configuration. Missing optional contracts degrade to no-ops."""

    rpc_url: str = DEFAULT_RPC_URL
    vault_address: Address | None = None
    legacy_vault_addresses: tuple[Address, ...] = ()
    factory_address: Address | None = None
    hook_address: Address | None = None
    locker_address: Address | None = None
    admin_private_key: str | None = field(default=None, repr=False)
    database_url: str | None = None  # None -> in-memory store
    start_block: int = 0
    poll_interval_s: float = 12.0
    batch_size: int = 1_000
    initial_retry_delay_s: float = 1.0
    max_retry_delay_s: float = 60.0
    sweep_delay_s: float = 2.0
    rpc_timeout_s: int = 20
    log_level: str = "INFO"

    @property
    def vault_addresses(self) -> tuple[Address, ...]:
        """Current vault first, then older generations still holding escrow."""
        head = (self.vault_address,) if self.vault_address else ()
        return head + tuple(a for a in self.legacy_vault_addresses if a != self.vault_address)

    @property
    def indexing_enabled(self) -> bool:
        return bool(self.vault_addresses)

    @property
    def routing_enabled(self) -> bool:
        return bool(self.admin_private_key)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> Settings:
        load_dotenv(env_file)
        legacy = tuple(
            a for a in (_address("LEGACY_FEE_VAULT_ADDRESSES", p.strip())
                        for p in (_env("LEGACY_FEE_VAULT_ADDRESSES") or "").split(",") if p.strip())
            if a is not None
        )
        return cls(
            rpc_url=_env("RPC_URL") or DEFAULT_RPC_URL,
            vault_address=_address("FEE_VAULT_ADDRESS", _env("FEE_VAULT_ADDRESS")),
            legacy_vault_addresses=legacy,
            factory_address=_address("FACTORY_ADDRESS", _env("FACTORY_ADDRESS")),
            hook_address=_address("HOOK_ADDRESS", _env("HOOK_ADDRESS")),
            locker_address=_address("LP_LOCKER_ADDRESS", _env("LP_LOCKER_ADDRESS")),
            admin_private_key=_env("ADMIN_PRIVATE_KEY"),
            database_url=_env("DATABASE_URL"),
            start_block=_int("INDEXER_START_BLOCK", 0),
            poll_interval_s=_float("POLL_INTERVAL_SECONDS", 12.0),
            batch_size=_int("BACKFILL_BATCH_SIZE", 1_000),
            sweep_delay_s=_float("SWEEP_DELAY_SECONDS", 2.0),
            rpc_timeout_s=_int("RPC_TIMEOUT_SECONDS", 20),
            log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        )
