"""Epoch-partitioned, append-only NDJSON store.

Layout under `store_path`:

    raw/<lo>-<hi>.json           raw events as returned by the node
    event/<lo>-<hi>.json         decoded (and possibly enriched) events
    compiled-ddo/<lo>-<hi>.json  per-partition compiled DDO records
    compiled-ddo.json            consolidated compiled DDO records

`lo = q * EPOCH_QUANTUM` and `hi = (q + 1) * EPOCH_QUANTUM - 1`. The raw and
event files of a partition are written as a pair, one line each per event, so
their line counts and last heights agree. There is no cross-file transaction;
`open(..., repair=True)` truncates the newest pair so the caller refetches it.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import IO, Optional

from ..domain.errors import ConsistencyError
from ..domain.models import DecodedEvent, PartitionFile, to_dag_json
from ..domain.value_types import EPOCH_QUANTUM, RawRecord
from ..ports.storage import EventStore, PartitionCatalog

logger = logging.getLogger(__name__)

RAW_DIR = "raw"
EVENT_DIR = "event"
COMPILED_DIR = "compiled-ddo"
CONSOLIDATED_FILE = "compiled-ddo.json"


def partition_name(quant: int) -> str:
    return f"{quant * EPOCH_QUANTUM}-{(quant + 1) * EPOCH_QUANTUM - 1}.json"


def partition_start(name: str) -> int:
    """Lower epoch bound encoded in a partition file name."""
    return int(name.split("-", 1)[0])


def list_partitions(dir_path: str) -> list[str]:
    """Partition file names ordered by epoch.

    Names are unpadded decimals, so a plain lexicographic sort would put
    `100800-103679.json` before `97920-100799.json`; order numerically.
    """
    if not os.path.isdir(dir_path):
        return []
    names = [n for n in os.listdir(dir_path) if n.endswith(".json") and n[:1].isdigit()]
    return sorted(names, key=partition_start)


def read_last_line(path: str, block: int = 8192) -> Optional[str]:
    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        end = f.tell()
        buf = b""
        pos = end
        while pos > 0:
            step = min(block, pos)
            pos -= step
            f.seek(pos)
            buf = f.read(step) + buf
            stripped = buf.rstrip(b"\n")
            if b"\n" in stripped:
                return stripped.rsplit(b"\n", 1)[1].decode()
        stripped = buf.rstrip(b"\n")
        return stripped.decode() if stripped else None


def last_height(path: str) -> Optional[int]:
    line = read_last_line(path)
    if line is None:
        return None
    try:
        return int(json.loads(line)["height"])
    except (ValueError, KeyError, TypeError) as e:
        # a write cut short by a crash leaves a partial last line
        raise ConsistencyError(
            f"unreadable last line in {path} ({e}); restart with --repair to re-fetch the partition"
        ) from e


def _append_line(fh: IO[str], line: str) -> None:
    fh.write(line)
    fh.flush()


class PartitionedStore(EventStore, PartitionCatalog):
    def __init__(self, store_path: str) -> None:
        self.root = store_path
        self.raw_dir = os.path.join(store_path, RAW_DIR)
        self.event_dir = os.path.join(store_path, EVENT_DIR)
        self.compiled_dir = os.path.join(store_path, COMPILED_DIR)
        self.consolidated_path = os.path.join(store_path, CONSOLIDATED_FILE)
        self._quant: Optional[int] = None
        self._raw_fh: Optional[IO[str]] = None
        self._event_fh: Optional[IO[str]] = None

    # ---------- open / resume ----------

    @classmethod
    def open(cls, store_path: str, *, repair: bool = False) -> tuple["PartitionedStore", Optional[int]]:
        """Open (creating if needed) the store and return it with its latest confirmed epoch."""
        store = cls(store_path)
        for d in (store.raw_dir, store.event_dir, store.compiled_dir):
            os.makedirs(d, exist_ok=True)

        raw_files = list_partitions(store.raw_dir)
        event_files = list_partitions(store.event_dir)
        if raw_files != event_files:
            raise ConsistencyError(
                f"raw and event partitions do not match ({len(raw_files)} raw vs {len(event_files)} event, "
                f"last {raw_files[-1:]} vs {event_files[-1:]})"
            )
        if not raw_files:
            return store, None

        if repair:
            name = raw_files[-1]
            logger.info("Truncating latest partition pair %s for re-fetch", name)
            for d in (store.raw_dir, store.event_dir):
                os.truncate(os.path.join(d, name), 0)
            return store, partition_start(name) - 1

        for name in reversed(raw_files):
            raw_h = last_height(os.path.join(store.raw_dir, name))
            event_h = last_height(os.path.join(store.event_dir, name))
            if raw_h != event_h:
                raise ConsistencyError(
                    f"last heights of raw and event partition {name} differ ({raw_h} vs {event_h}); restart with --repair to re-fetch it"
                )
            if raw_h is not None:
                return store, raw_h
        # only empty (truncated) partitions: resume at the first of them
        return store, partition_start(raw_files[0]) - 1

    # ---------- writes ----------

    async def save(self, raw: RawRecord, event: DecodedEvent) -> None:
        quant = event.height // EPOCH_QUANTUM
        if quant != self._quant:
            await self._switch_files(quant)
        raw_line = json.dumps(raw, separators=(",", ":")) + "\n"
        event_line = json.dumps(event.to_record(), separators=(",", ":"), default=to_dag_json) + "\n"
        await asyncio.gather(
            asyncio.to_thread(_append_line, self._raw_fh, raw_line),
            asyncio.to_thread(_append_line, self._event_fh, event_line),
        )

    async def _switch_files(self, quant: int) -> None:
        await self.close()
        name = partition_name(quant)
        self._raw_fh, self._event_fh = await asyncio.gather(
            asyncio.to_thread(open, os.path.join(self.raw_dir, name), "a"),
            asyncio.to_thread(open, os.path.join(self.event_dir, name), "a"),
        )
        self._quant = quant
        logger.info("Switched to partition %s", name)

    async def close(self) -> None:
        handles = [fh for fh in (self._raw_fh, self._event_fh) if fh is not None]
        self._raw_fh = self._event_fh = None
        self._quant = None
        await asyncio.gather(*(asyncio.to_thread(fh.close) for fh in handles))

    # ---------- catalog ----------

    def _listing(self, dir_path: str) -> list[PartitionFile]:
        out: list[PartitionFile] = []
        for name in list_partitions(dir_path):
            path = os.path.join(dir_path, name)
            out.append(PartitionFile(name=name, path=path, mtime=os.stat(path).st_mtime))
        return out

    def list_event_partitions(self) -> list[PartitionFile]:
        return self._listing(self.event_dir)

    def list_compiled_partitions(self) -> list[PartitionFile]:
        return self._listing(self.compiled_dir)

    def compiled_path(self, name: str) -> str:
        return os.path.join(self.compiled_dir, name)
