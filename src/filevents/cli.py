import asyncio, logging
import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from .config import load_config
from .domain.value_types import EVENT_TYPES

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _panel(title: str, stats: dict) -> Panel:
    body = "\n".join(f"[bold]{k}[/]: {v}" for k, v in stats.items())
    return Panel(body, title=title, expand=False)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def cli(verbose):
    """filevents: Filecoin builtin actor event collector."""
    _setup_logging(verbose)


@cli.command("watch")
@click.option("--config", "config_path", default="config.json", show_default=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--repair/--no-repair", default=False, show_default=True,
              help="Truncate the latest partition pair and re-fetch it")
@click.option("--until", "stop_epoch", type=int, default=None, help="Stop after this epoch (default: follow the chain)")
@click.option("--filter-range", type=int, default=None, help="Epochs per GetActorEventsRaw request")
@click.option("--event-type", "event_types", multiple=True, type=click.Choice(EVENT_TYPES),
              help="Event type to collect; repeat to OR (default: all)")
def watch_cmd(config_path, repair, stop_epoch, filter_range, event_types):
    """Collect events finality-behind the chain head into the store."""
    from .adapters.jsonl_store import PartitionedStore
    from .adapters.rpc_httpx import LotusRPC
    from .application.planning import resolve_start_epoch
    from .application.use_cases import DEFAULT_FILTER_RANGE, IngestContext, watch_events
    from .domain.schemas import SchemaRegistry

    config = load_config(config_path)
    types = list(event_types) or list(EVENT_TYPES)
    frange = filter_range or config.filter_range or DEFAULT_FILTER_RANGE

    async def main():
        store, latest_epoch = PartitionedStore.open(config.store_path, repair=repair)
        rpc = LotusRPC(config.lotus_http_rpc, config.network_cache_path)
        ctx = IngestContext(rpc=rpc, store=store, registry=SchemaRegistry.build())
        try:
            start = resolve_start_epoch(latest_epoch, config.network_start_epoch())
            return await watch_events(ctx, start, types, filter_range=frange, stop_epoch=stop_epoch)
        finally:
            await store.close()
            await rpc.aclose()

    stats = asyncio.run(main())
    console.print(_panel("watch", {
        "windows": stats.windows, "events": stats.events, "enriched": stats.enriched,
        "range shrinks": stats.range_shrinks, "transient retries": stats.transient_retries, "resaved": stats.resaved,
        "last epoch": stats.last_epoch,
    }))


@cli.command("compile-ddo")
@click.option("--config", "config_path", default="config.json", show_default=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--parquet/--no-parquet", default=False, show_default=True,
              help="Also write compiled-ddo.parquet next to compiled-ddo.json")
def compile_ddo_cmd(config_path, parquet):
    """Compile DDO records from stored sector events into compiled-ddo.json."""
    from .adapters.jsonl_store import PartitionedStore
    from .application.compaction import compile_ddo

    config = load_config(config_path)
    store, _ = PartitionedStore.open(config.store_path)
    stats = compile_ddo(store, config.epoch0(), export_parquet=parquet)
    console.print(_panel("compile-ddo", {
        "event partitions": stats.event_partitions, "compiled": stats.compiled,
        "skipped": stats.skipped, "empty": stats.empty,
        "merged": stats.merged, "records": stats.records,
    }))


@cli.command("tipset-key")
@click.argument("cids", nargs=-1)
def tipset_key_cmd(cids):
    """Print the tipset key CID for an ordered list of block CIDs."""
    from .adapters.tipsetkey import tipset_key_cid
    click.echo(str(tipset_key_cid(list(cids))))


if __name__ == "__main__":
    cli()
