from __future__ import annotations
import os, pyarrow as pa, pyarrow.parquet as pq
from datetime import datetime
from typing import Any, Iterable

_PIECE = pa.struct([
    ("cid", pa.string()),
    ("size", pa.int64()),
    ("verified", pa.bool_()),
    ("f05", pa.bool_()),
])

COMPILED_SCHEMA = pa.schema([
    pa.field("time",     pa.timestamp("ms", tz="UTC")),
    pa.field("epoch",    pa.int64()),
    pa.field("msg",      pa.string()),
    pa.field("provider", pa.string()),
    pa.field("sector",   pa.int64()),
    pa.field("method",   pa.int64()),
    pa.field("pieces",   pa.list_(_PIECE)),
])


def _link_str(v: Any) -> str | None:
    """{"/": "bafy..."} -> "bafy..." """
    if isinstance(v, dict):
        return v.get("/")
    return v


def _records_to_table(records: Iterable[dict[str, Any]]) -> pa.Table:
    recs = list(records)
    return pa.Table.from_arrays(
        arrays=[
            pa.array([datetime.fromisoformat(r["time"].replace("Z", "+00:00")) for r in recs], COMPILED_SCHEMA.field("time").type),
            pa.array([r["epoch"] for r in recs], pa.int64()),
            pa.array([_link_str(r["msg"]) for r in recs], pa.string()),
            pa.array([r["provider"] for r in recs], pa.string()),
            pa.array([r["sector"] for r in recs], pa.int64()),
            pa.array([r["method"] for r in recs], pa.int64()),
            pa.array([
                [{"cid": _link_str(p["cid"]), "size": p["size"], "verified": p["verified"], "f05": p["f05"]}
                 for p in r["pieces"]]
                for r in recs
            ], pa.list_(_PIECE)),
        ],
        schema=COMPILED_SCHEMA,
    )


def write_compiled_parquet(records: Iterable[dict[str, Any]], path: str, codec: str = "zstd") -> str:
    """Columnar copy of the consolidated DDO dataset, sorted by epoch."""
    table = _records_to_table(records).sort_by([("epoch", "ascending")])
    tmp = path + ".tmp"
    pq.write_table(table, tmp, compression=codec)
    os.replace(tmp, path)
    return path
