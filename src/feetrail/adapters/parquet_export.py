from __future__ import annotations
import os, pyarrow as pa, pyarrow.parquet as pq
from typing import Iterable

from ..domain.models import FeeDistributionRecord

DISTRIBUTION_SCHEMA = pa.schema([
    pa.field("block_number",      pa.int64()),
    pa.field("block_timestamp",   pa.timestamp("s", tz="UTC")),
    pa.field("tx_hash",           pa.large_string()),
    pa.field("log_index",         pa.int32()),
    pa.field("event_type",        pa.large_string()),
    pa.field("vault_address",     pa.large_string()),
    pa.field("pool_id",           pa.large_string()),
    pa.field("project_id",        pa.large_string()),
    pa.field("dev_address",       pa.large_string()),
    pa.field("token_address",     pa.large_string()),
    pa.field("recipient_address", pa.large_string()),
    pa.field("amount",            pa.large_string()),     # big ints as strings
    pa.field("dev_amount",        pa.large_string()),
    pa.field("protocol_amount",   pa.large_string()),
])

COLS = [f.name for f in DISTRIBUTION_SCHEMA]


def records_to_table(records: Iterable[FeeDistributionRecord]) -> pa.Table:
    """Arrow table in feed order: (block_number, log_index) ascending."""
    buf: dict[str, list] = {name: [] for name in COLS}
    for r in records:
        d = r.to_dict()
        for k in COLS:
            buf[k].append(d[k])
    arrays = {k: pa.array(v, type=DISTRIBUTION_SCHEMA.field(k).type) for k, v in buf.items()}
    return pa.Table.from_pydict(arrays, schema=DISTRIBUTION_SCHEMA).sort_by([
        ("block_number", "ascending"),
        ("log_index", "ascending"),
    ])


class ParquetDistributionExport:
    """Writes an audit-trail snapshot atomically (tmp file + rename)."""

    def __init__(self, codec: str = "zstd") -> None:
        self.codec = codec

    def write(self, records: Iterable[FeeDistributionRecord], path: str) -> int:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        table = records_to_table(records)
        tmp = path + ".tmp"
        pq.write_table(table, tmp, compression=self.codec)
        os.replace(tmp, path)
        return len(table)
