"""SQLAlchemy Core store for the audit trail, the indexer cursor and projects.

Works against any SQLAlchemy URL (PostgreSQL in production, SQLite in tests
and local runs). Blocking calls are pushed to a worker thread so they only
suspend the calling coroutine.
"""
from __future__ import annotations
import asyncio, uuid
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from sqlalchemy import (
    BigInteger, Column, DateTime, Integer, MetaData, String, Table, Text, UniqueConstraint,
    and_, create_engine, func, insert, select, update,
)
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.exc import IntegrityError, OperationalError

from ..domain.errors import StoreUnavailableError
from ..domain.models import DistributionFilters, DistributionStats, FeeDistributionRecord, ProjectRow
from ..domain.value_types import Address, PoolId
from ..ports.storage import DistributionStore, ProjectRegistry
from .stats import summarize

T = TypeVar("T")

CURSOR_ID = "fee-indexer"

metadata = MetaData()

fee_distributions_table = Table(
    "fee_distributions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("event_type", String(32), nullable=False),
    Column("tx_hash", String(66), nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("log_index", Integer, nullable=False),
    Column("pool_id", String(66), index=True),
    Column("token_address", String(42), nullable=False),
    Column("amount", Text),               # uint256 as decimal strings
    Column("dev_amount", Text),
    Column("protocol_amount", Text),
    Column("dev_address", String(42)),
    Column("recipient_address", String(42)),
    Column("vault_address", String(42)),
    Column("block_timestamp", DateTime(timezone=True), nullable=False),
    Column("indexed_at", DateTime(timezone=True), nullable=False),
    Column("project_id", String(512)),
    UniqueConstraint("tx_hash", "log_index", name="uq_fee_distributions_tx_log"),
)

indexer_state_table = Table(
    "indexer_state",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("last_processed_block", BigInteger, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

projects_table = Table(
    "projects",
    metadata,
    Column("project_id", String(512), primary_key=True),
    Column("name", String(256)),
    Column("owner_wallet", String(42)),
    Column("pool_token_address", String(42)),
    Column("pool_id", String(66)),
)


def _utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def _row_to_record(m: RowMapping) -> FeeDistributionRecord:
    return FeeDistributionRecord(
        tx_hash=m["tx_hash"],
        log_index=m["log_index"],
        block_number=m["block_number"],
        block_timestamp=_utc(m["block_timestamp"]),
        event_type=m["event_type"],
        token_address=Address(m["token_address"]),
        pool_id=PoolId(m["pool_id"]) if m["pool_id"] else None,
        dev_address=m["dev_address"],
        recipient_address=m["recipient_address"],
        amount=m["amount"],
        dev_amount=m["dev_amount"],
        protocol_amount=m["protocol_amount"],
        project_id=m["project_id"],
        vault_address=m["vault_address"],
    )


def _row_to_project(m: RowMapping) -> ProjectRow:
    return ProjectRow(
        project_id=m["project_id"],
        name=m["name"],
        pool_id=PoolId(m["pool_id"]) if m["pool_id"] else None,
        owner_wallet=m["owner_wallet"],
        pool_token_address=m["pool_token_address"],
    )


class SqlStore(DistributionStore, ProjectRegistry):
    def __init__(self, url: str, *, engine: Engine | None = None, create_schema: bool = True) -> None:
        self.url = url
        self.engine = engine or create_engine(url, pool_pre_ping=True, future=True)
        self._schema_ready = not create_schema

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            if not self._schema_ready:
                await asyncio.to_thread(metadata.create_all, self.engine)
                self._schema_ready = True
            return await asyncio.to_thread(fn, *args)
        except OperationalError as e:
            raise StoreUnavailableError(str(e.orig or e)) from e

    # --- distributions ---

    def _insert(self, record: FeeDistributionRecord) -> bool:
        values = record.to_dict()
        values.update(id=str(uuid.uuid4()), indexed_at=datetime.now(timezone.utc))
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(fee_distributions_table), values)
        except IntegrityError:
            return False
        return True

    async def insert_distribution_if_absent(self, record: FeeDistributionRecord) -> bool:
        return await self._run(self._insert, record)

    def _update_project_id(self, pool_id: str, project_id: str) -> int:
        t = fee_distributions_table
        stmt = (update(t)
                .where(and_(t.c.pool_id == pool_id.lower(), t.c.project_id.is_(None)))
                .values(project_id=project_id))
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount or 0

    async def update_project_id_for_pool_id(self, pool_id: str, project_id: str) -> int:
        return await self._run(self._update_project_id, pool_id, project_id)

    def _select(self, filters: DistributionFilters | None, limit: int, offset: int) -> list[FeeDistributionRecord]:
        t = fee_distributions_table
        stmt = select(t)
        if filters is not None:
            if filters.event_type:
                stmt = stmt.where(t.c.event_type == filters.event_type)
            if filters.pool_id:
                stmt = stmt.where(t.c.pool_id == filters.pool_id.lower())
            if filters.dev_address:
                stmt = stmt.where(func.lower(t.c.dev_address) == filters.dev_address.lower())
            if filters.token_address:
                stmt = stmt.where(func.lower(t.c.token_address) == filters.token_address.lower())
        stmt = stmt.order_by(t.c.block_number.desc(), t.c.log_index.desc()).limit(limit).offset(offset)
        with self.engine.connect() as conn:
            return [_row_to_record(m) for m in conn.execute(stmt).mappings()]

    async def list_distributions(self, filters: DistributionFilters | None = None, *,
                                 limit: int = 20, offset: int = 0) -> list[FeeDistributionRecord]:
        return await self._run(self._select, filters, limit, offset)

    def _stats(self) -> DistributionStats:
        with self.engine.connect() as conn:
            records = [_row_to_record(m) for m in conn.execute(select(fee_distributions_table)).mappings()]
        return summarize(records, self._read_cursor())

    async def aggregate_stats(self) -> DistributionStats:
        return await self._run(self._stats)

    # --- cursor ---

    def _read_cursor(self) -> int | None:
        t = indexer_state_table
        with self.engine.connect() as conn:
            return conn.execute(select(t.c.last_processed_block).where(t.c.id == CURSOR_ID)).scalar_one_or_none()

    async def get_cursor(self) -> int | None:
        return await self._run(self._read_cursor)

    def _write_cursor(self, block_number: int) -> None:
        t = indexer_state_table
        now = datetime.now(timezone.utc)
        with self.engine.begin() as conn:
            current = conn.execute(select(t.c.last_processed_block).where(t.c.id == CURSOR_ID)).scalar_one_or_none()
            if current is None:
                conn.execute(insert(t), {"id": CURSOR_ID, "last_processed_block": block_number, "updated_at": now})
            elif block_number > current:
                conn.execute(update(t).where(t.c.id == CURSOR_ID)
                             .values(last_processed_block=block_number, updated_at=now))

    async def set_cursor(self, block_number: int) -> None:
        await self._run(self._write_cursor, block_number)

    # --- projects ---

    def _upsert_project(self, row: ProjectRow) -> None:
        t = projects_table
        values = {"project_id": row.project_id, "name": row.name, "owner_wallet": row.owner_wallet,
                  "pool_token_address": row.pool_token_address,
                  "pool_id": row.pool_id.lower() if row.pool_id else None}
        with self.engine.begin() as conn:
            done = conn.execute(update(t).where(t.c.project_id == row.project_id).values(**values)).rowcount
            if not done:
                conn.execute(insert(t), values)

    async def upsert_project(self, row: ProjectRow) -> None:
        await self._run(self._upsert_project, row)

    def _projects(self, need_owner: bool) -> list[ProjectRow]:
        t = projects_table
        stmt = select(t).where(t.c.pool_id.is_not(None))
        if need_owner:
            stmt = stmt.where(t.c.owner_wallet.is_not(None))
        with self.engine.connect() as conn:
            return [_row_to_project(m) for m in conn.execute(stmt.order_by(t.c.project_id)).mappings()]

    async def list_pool_projects(self) -> list[ProjectRow]:
        return await self._run(self._projects, False)

    async def list_projects_with_pool_and_owner(self) -> list[ProjectRow]:
        return await self._run(self._projects, True)

    async def aclose(self) -> None:
        await asyncio.to_thread(self.engine.dispose)
