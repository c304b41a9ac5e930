import asyncio, logging, signal
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..adapters.parquet_export import ParquetDistributionExport
from ..application.service import build_service
from ..core.config import Settings
from ..core.logging import configure_logging
from ..domain.errors import EscrowReconciliationError, FeeTrailError, InvalidRoutingInputError
from ..domain.models import DistributionFilters, IndexerStatus, RoutingRequest

app = typer.Typer(help="Fee vault audit trail and dev fee routing.")
console = Console()
log = logging.getLogger("feetrail.cli")

EnvFile = typer.Option(None, "--env-file", help="Optional .env file to load")


def _settings(env_file: Optional[str]) -> Settings:
    try:
        settings = Settings.from_env(env_file)
    except FeeTrailError as e:
        raise typer.BadParameter(str(e))
    configure_logging(settings.log_level)
    return settings


def _status_table(s: IndexerStatus) -> Table:
    t = Table(title="fee indexer", show_header=False)
    t.add_row("running", "[green]yes[/]" if s.is_running else "[red]no[/]")
    t.add_row("last processed block", f"{s.last_processed_block:,}" if s.last_processed_block is not None else "-")
    t.add_row("current block", f"{s.current_block:,}" if s.current_block is not None else "-")
    t.add_row("block lag", str(s.block_lag) if s.block_lag is not None else "-")
    t.add_row("events indexed", str(s.events_indexed))
    t.add_row("started at", s.started_at.isoformat() if s.started_at else "-")
    t.add_row("retry delay", f"{s.retry_delay_s:.1f}s")
    t.add_row("last error", f"[red]{s.last_error}[/]" if s.last_error else "-")
    return t


@app.command()
def run(env_file: Optional[str] = EnvFile):
    """Start the indexer, run the startup sweep once, and serve until interrupted."""
    settings = _settings(env_file)

    async def main():
        svc = build_service(settings)
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        sweep = None
        try:
            await svc.indexer.start()
            if settings.routing_enabled:
                sweep = asyncio.create_task(svc.run_sweep())
            await stop.wait()
        finally:
            if sweep is not None and not sweep.done():
                sweep.cancel()
            await svc.aclose()
            console.print(_status_table(await svc.indexer.status()))

    asyncio.run(main())


@app.command()
def status(env_file: Optional[str] = EnvFile):
    """Run one catch-up cycle and print the status snapshot."""
    settings = _settings(env_file)

    async def main():
        svc = build_service(settings)
        try:
            try:
                await svc.indexer.catch_up()
            except Exception as e:
                log.error("Catch-up failed: %s", e)
                svc.indexer.last_error = str(e) or type(e).__name__
            console.print(_status_table(await svc.indexer.status()))
        finally:
            await svc.aclose()

    asyncio.run(main())


@app.command()
def backfill(from_block: int = typer.Option(..., "--from-block", min=0), env_file: Optional[str] = EnvFile):
    """Re-scan history from a block; existing records are left untouched."""
    settings = _settings(env_file)

    async def main():
        svc = build_service(settings)
        try:
            created = await svc.indexer.backfill(from_block)
            console.print(f"[bold]done[/]: {created} new records")
        finally:
            await svc.aclose()

    try:
        asyncio.run(main())
    except FeeTrailError as e:
        raise typer.Exit(code=_fail(str(e)))


@app.command()
def reconcile(
    pool_id: str,
    dev_address: str,
    project_id: str,
    token: Optional[str] = typer.Option(None, "--token", help="Pool token address (enables locker sync)"),
    env_file: Optional[str] = EnvFile,
):
    """Sync dev ownership on hook/locker and release escrowed fees for one pool."""
    settings = _settings(env_file)

    async def main():
        svc = build_service(settings)
        try:
            return await svc.reconciler.reconcile(RoutingRequest(pool_id, dev_address, project_id, token))
        finally:
            await svc.aclose()

    try:
        outcome = asyncio.run(main())
    except InvalidRoutingInputError as e:
        raise typer.BadParameter(str(e))
    except EscrowReconciliationError as e:
        log.error("Escrow reconciliation failed: pool=%s vault=%s cause=%r", e.pool_id, e.vault_address, e.cause)
        raise typer.Exit(code=_fail("Fee claim failed. Please try again later."))

    t = Table(title="routing outcome", show_header=False)
    for k, v in outcome.to_dict().items():
        t.add_row(k, str(v))
    console.print(t)


@app.command()
def export(
    out_path: str,
    pool_id: Optional[str] = typer.Option(None, "--pool-id"),
    event_type: Optional[str] = typer.Option(None, "--event-type"),
    page_size: int = typer.Option(1_000, "--page-size", min=1),
    env_file: Optional[str] = EnvFile,
):
    """Write the fee distribution audit trail to a Parquet file."""
    settings = _settings(env_file)
    filters = DistributionFilters(event_type=event_type, pool_id=pool_id)  # type: ignore[arg-type]

    async def main():
        svc = build_service(settings)
        records = []
        try:
            offset = 0
            while True:
                page = await svc.store.list_distributions(filters, limit=page_size, offset=offset)
                records.extend(page)
                if len(page) < page_size:
                    break
                offset += page_size
        finally:
            await svc.aclose()
        return records

    n = ParquetDistributionExport().write(asyncio.run(main()), out_path)
    console.print(f"[bold]exported[/]: {n} records -> {out_path}")


@app.command()
def stats(env_file: Optional[str] = EnvFile):
    """Aggregate totals across the audit trail."""
    settings = _settings(env_file)

    async def main():
        svc = build_service(settings)
        try:
            return await svc.store.aggregate_stats()
        finally:
            await svc.aclose()

    s = asyncio.run(main())
    t = Table(title="fee distributions", show_header=False)
    for k, v in (("distributed (wei)", s.total_distributed), ("dev claimed (wei)", s.total_dev_claimed),
                 ("protocol claimed (wei)", s.total_protocol_claimed), ("escrowed (wei)", s.total_escrowed),
                 ("records", s.count), ("unique devs", s.unique_devs), ("unique pools", s.unique_pools),
                 ("last indexed block", s.last_indexed_block if s.last_indexed_block is not None else "-")):
        t.add_row(k, str(v))
    console.print(t)


def _fail(msg: str) -> int:
    console.print(f"[red]{msg}[/]")
    return 1


if __name__ == "__main__":
    app()
