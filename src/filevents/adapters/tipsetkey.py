from __future__ import annotations

from typing import Any, Sequence

import dag_cbor
from multiformats import CID, multihash


def as_cid(value: Any) -> CID:
    """Accept a CID, its string form, or a DAG-JSON link `{"/": "..."}`."""
    if isinstance(value, CID):
        return value
    if isinstance(value, dict) and "/" in value:
        value = value["/"]
    if isinstance(value, str):
        return CID.decode(value)
    raise TypeError(f"cannot interpret {value!r} as a CID")


def encode_key(cids: Sequence[Any]) -> bytes:
    """Concatenation of the binary CIDs, in tipset order."""
    return b"".join(bytes(as_cid(c)) for c in cids)


def tipset_key_cid(cids: Sequence[Any]) -> CID:
    """CIDv1 (dag-cbor, blake2b-256) of the DAG-CBOR encoded tipset key bytes."""
    digest = multihash.digest(dag_cbor.encode(encode_key(cids)), "blake2b-256")
    return CID("base32", 1, "dag-cbor", digest)
