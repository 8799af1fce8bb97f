from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ..domain.decoding import transform
from ..domain.errors import MaxResultsLimitError, TransientNetworkError
from ..domain.models import WatchStats
from ..domain.schemas import SchemaRegistry
from ..domain.value_types import FINALITY_EPOCHS
from ..ports.rpc import ChainRPC
from ..ports.storage import EventStore
from .enrichment import collect_extra_state
from .planning import next_window, shrink_range

logger = logging.getLogger(__name__)

DEFAULT_FILTER_RANGE = 2880 // 2   # node default is 2880; larger ranges tend to fail
LOOP_PAUSE_S = 10.0


@dataclass(slots=True, frozen=True)
class IngestContext:
    """Collaborators shared by every step of the ingestion loop, built once at startup."""
    rpc: ChainRPC
    store: EventStore
    registry: SchemaRegistry


async def collect_range(
    ctx: IngestContext,
    start_epoch: int,
    end_epoch: int,
    event_types: Sequence[str],
    stats: Optional[WatchStats] = None,
) -> int:
    """Decode, enrich and persist every event in [start_epoch, end_epoch], one at a time."""
    raw_events = await ctx.rpc.get_actor_events_raw(start_epoch, end_epoch, event_types)
    saved = 0
    for raw in raw_events:
        event = transform(raw, ctx.registry)
        extra = await collect_extra_state(event, ctx.rpc, ctx.registry)
        if extra is not None:
            event.extra = extra
            if stats is not None:
                stats.enriched += 1
        await ctx.store.save(raw, event)
        saved += 1
        if stats is not None:
            stats.events += 1
        if saved % 100 == 0:
            logger.info("Saved %d events", saved)
    return saved


async def watch_events(
    ctx: IngestContext,
    start_epoch: int,
    event_types: Sequence[str],
    *,
    filter_range: int = DEFAULT_FILTER_RANGE,
    finality: int = FINALITY_EPOCHS,
    pause_s: float = LOOP_PAUSE_S,
    stop_epoch: Optional[int] = None,
) -> WatchStats:
    """
    Follow the chain `finality` epochs behind the head, from `start_epoch` onwards.
    Runs until `stop_epoch` is passed (forever when None).

    - MaxResultsLimitError: halve `filter_range` and retry the same window;
      already at 1 means the window can never fit, so it is re-raised.
    - TransientNetworkError: pause and retry the same window. Events of the
      window stored before the error are stored again (counted in `resaved`).
    - Anything else propagates: the store may hold part of the window already.
    """
    stats = WatchStats()
    logger.info("Starting at %d looking for %s", start_epoch, ", ".join(event_types))

    while stop_epoch is None or start_epoch <= stop_epoch:
        stored_before = stats.events
        try:
            head = await ctx.rpc.chain_head()
            window = next_window(start_epoch, filter_range, head, finality)
            if window is None:
                await asyncio.sleep(pause_s)
                continue
            start, end = window
            if stop_epoch is not None:
                end = min(end, stop_epoch)
            saved = await collect_range(ctx, start, end, event_types, stats)
        except MaxResultsLimitError:
            if filter_range <= 1:
                logger.error("Result cap hit with a filter range of 1 at epoch %d", start_epoch)
                raise
            filter_range = shrink_range(filter_range)
            stats.range_shrinks += 1
            logger.warning("Max results reached, reducing filter range to %d", filter_range)
            continue
        except TransientNetworkError as e:
            stats.transient_retries += 1
            partial = stats.events - stored_before
            if partial:
                stats.resaved += partial
                logger.warning("%d events from %d were stored before the error and will be stored again",
                               partial, start_epoch)
            logger.warning("Error collecting range from %d, waiting to retry: %s", start_epoch, e)
            await asyncio.sleep(pause_s)
            continue

        stats.windows += 1
        stats.last_epoch = end
        logger.debug("Collected [%d, %d]: %d events", start, end, saved)
        start_epoch = end + 1

    return stats
