from __future__ import annotations
import base64
from dataclasses import dataclass, field
from typing import Any, Optional

from multiformats import CID

from .value_types import CidLink, RawRecord


@dataclass(slots=True)
class DecodedEvent:
    type: str
    event: dict[str, Any]
    emitter: str
    height: int
    msg_cid: CidLink
    reverted: bool
    tipset_key: list[CidLink]
    extra: Optional["Enrichment"] = None

    @classmethod
    def from_raw(cls, raw: RawRecord, type_: str, event: dict[str, Any]) -> "DecodedEvent":
        return cls(
            type=type_,
            event=event,
            emitter=raw.get("emitter", ""),
            height=int(raw["height"]),
            msg_cid=raw.get("msgCid"),
            reverted=bool(raw.get("reverted", False)),
            tipset_key=list(raw.get("tipsetKey") or []),
        )

    def to_record(self) -> dict[str, Any]:
        # key order is part of the on-disk format, the compactor pre-filter matches on it
        rec: dict[str, Any] = {
            "type": self.type,
            "event": self.event,
            "emitter": self.emitter,
            "height": self.height,
            "msgCid": self.msg_cid,
            "reverted": self.reverted,
            "tipsetKey": self.tipset_key,
        }
        if self.extra is not None:
            rec["extra"] = self.extra.to_record()
        return rec


@dataclass(slots=True, frozen=True)
class EnrichedPiece:
    cid: CID
    size: int
    verified: bool
    f05: bool

    def to_record(self) -> dict[str, Any]:
        return {"cid": self.cid, "size": self.size, "verified": self.verified, "f05": self.f05}


@dataclass(slots=True, frozen=True)
class Enrichment:
    method: int
    pieces: tuple[EnrichedPiece, ...] = ()

    def to_record(self) -> dict[str, Any]:
        return {"method": self.method, "pieces": [p.to_record() for p in self.pieces]}


@dataclass(slots=True, frozen=True)
class PartitionFile:
    name: str        # "<lo>-<hi>.json"
    path: str
    mtime: float


@dataclass(slots=True)
class WatchStats:
    windows: int = 0
    events: int = 0
    enriched: int = 0
    range_shrinks: int = 0
    transient_retries: int = 0
    resaved: int = 0
    last_epoch: Optional[int] = None


@dataclass(slots=True)
class CompileStats:
    event_partitions: int = 0
    compiled: int = 0
    skipped: int = 0
    empty: int = 0
    records: int = 0
    merged: bool = False
    written: list[str] = field(default_factory=list)


def to_dag_json(obj: Any) -> Any:
    """json.dumps default hook: CIDs and bytes in their DAG-JSON form."""
    if isinstance(obj, CID):
        return {"/": str(obj)}
    if isinstance(obj, (bytes, bytearray)):
        return {"/": {"bytes": base64.b64encode(bytes(obj)).decode().rstrip("=")}}
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
