from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime
from typing import Any, Iterable, Optional

from ..domain.errors import MismatchError
from ..domain.models import CompileStats, PartitionFile
from ..ports.storage import PartitionCatalog
from .utils import epoch_to_time, iso_z

logger = logging.getLogger(__name__)

# cheap pre-filter on the serialised key order: type, event, emitter, height, msgCid, reverted, tipsetKey, extra
DDO_EVENT_RE = re.compile(r'^\{"type":"sector-(activated|updated)",.+,"reverted":false,.+"extra":')


def compile_record(event: dict[str, Any], epoch0: datetime) -> dict[str, Any]:
    extra = event.get("extra") or {}
    return {
        "time": iso_z(epoch_to_time(epoch0, event["height"])),
        "epoch": event["height"],
        "msg": event.get("msgCid"),
        "provider": event.get("emitter"),
        "sector": (event.get("event") or {}).get("sector"),
        "method": extra.get("method"),
        "pieces": extra.get("pieces", []),
    }


def compile_event_file(path: str, epoch0: datetime) -> list[dict[str, Any]]:
    compiled: list[dict[str, Any]] = []
    with open(path, "r") as f:
        for line in f:
            if not DDO_EVENT_RE.match(line):
                continue
            compiled.append(compile_record(json.loads(line), epoch0))
    return compiled


def write_json_array(path: str, records: Iterable[dict[str, Any]]) -> None:
    """JSON array, one record per line."""
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        f.write("[")
        first = True
        for rec in records:
            f.write(("\n" if first else ",\n") + json.dumps(rec, separators=(",", ":")))
            first = False
        f.write("\n]\n")
    os.replace(tmp, path)


def _pair(event_files: list[PartitionFile], compiled_files: list[PartitionFile]) -> list[tuple[PartitionFile, Optional[PartitionFile]]]:
    """Walk both listings in order.

    An event partition may lack a compiled file (new, or it held no DDO
    events), but every compiled file must line up with an event partition.
    """
    pairs: list[tuple[PartitionFile, Optional[PartitionFile]]] = []
    j = 0
    for ev in event_files:
        comp = compiled_files[j] if j < len(compiled_files) else None
        if comp is not None and comp.name == ev.name:
            pairs.append((ev, comp))
            j += 1
        else:
            pairs.append((ev, None))
    if j < len(compiled_files):
        raise MismatchError(
            f"Event file and compiled DDO file mismatch: {compiled_files[j].path} has no event partition at its position"
        )
    return pairs


def compile_ddo(
    catalog: PartitionCatalog,
    epoch0: datetime,
    *,
    export_parquet: bool = False,
) -> CompileStats:
    """Incrementally compile DDO records per partition and merge them into one file."""
    event_files = catalog.list_event_partitions()
    compiled_files = catalog.list_compiled_partitions()
    logger.info("Found %d event files, %d compiled DDO files", len(event_files), len(compiled_files))

    stats = CompileStats(event_partitions=len(event_files))
    outputs: list[str] = []
    for ev, comp in _pair(event_files, compiled_files):
        if comp is not None and ev.mtime <= comp.mtime:
            logger.debug("Skipping %s, already compiled", ev.path)
            stats.skipped += 1
            outputs.append(comp.path)
            continue
        out_path = catalog.compiled_path(ev.name)
        logger.info("Compiling %s to %s", ev.path, out_path)
        records = compile_event_file(ev.path, epoch0)
        if not records:
            logger.info("No events to compile in %s, skipping ...", ev.path)
            stats.empty += 1
            if comp is not None:
                # a partition that lost its DDO events no longer contributes
                os.remove(comp.path)
                stats.merged = True
            continue
        write_json_array(out_path, records)
        stats.compiled += 1
        stats.written.append(out_path)
        outputs.append(out_path)

    if not stats.written and not stats.merged:
        logger.info("No new events to compile")
        return stats

    merged: list[dict[str, Any]] = []
    for path in outputs:
        with open(path, "r") as f:
            merged.extend(json.load(f))
    write_json_array(catalog.consolidated_path, merged)
    stats.records = len(merged)
    stats.merged = True
    logger.info("Merged %d records from %d partitions into %s", len(merged), len(outputs), catalog.consolidated_path)

    if export_parquet:
        from ..adapters.parquet_sink import write_compiled_parquet
        parquet_path = os.path.splitext(catalog.consolidated_path)[0] + ".parquet"
        write_compiled_parquet(merged, parquet_path)
    return stats
