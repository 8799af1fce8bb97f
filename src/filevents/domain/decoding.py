from __future__ import annotations

import base64
import binascii
import re
from typing import Any, Callable, Sequence

import dag_cbor

from .errors import DuplicateKeyError, FormatError, NotInitializedError
from .models import DecodedEvent
from .schemas import SchemaRegistry
from .value_types import CBOR_CODEC, PIECE_EVENT_TYPES, RawRecord

_KEBAB_RE = re.compile(r"-([a-z])")


def kebab_to_camel(key: str) -> str:
    return _KEBAB_RE.sub(lambda m: m.group(1).upper(), key)


def decode_value(entry: dict[str, Any]) -> Any:
    """base64pad -> DAG-CBOR -> native value."""
    codec = entry.get("Codec", CBOR_CODEC)
    if codec != CBOR_CODEC:
        raise FormatError(f"Unsupported codec {codec} for entry {entry.get('Key')!r}")
    try:
        return dag_cbor.decode(base64.b64decode(entry["Value"], validate=True))
    except (KeyError, TypeError, binascii.Error) as e:
        raise FormatError(f"Undecodable value for entry {entry.get('Key')!r}: {e}") from e
    except Exception as e:
        # dag_cbor raises its own DAGCBORDecodingError hierarchy
        raise FormatError(f"Invalid DAG-CBOR for entry {entry.get('Key')!r}: {e}") from e


# ---------- piece-bearing events ---------------------------------------------

def _set_piece_cid(event: dict[str, Any], value: Any) -> None:
    event.setdefault("pieces", []).append({"cid": value})


def _set_piece_size(event: dict[str, Any], value: Any) -> None:
    pieces = event.get("pieces")
    if not pieces:
        raise FormatError("Expected piece-cid before piece-size")
    if "size" in pieces[-1]:
        raise FormatError("Duplicate piece-size")
    pieces[-1]["size"] = value


_PIECE_SETTERS: dict[str, Callable[[dict[str, Any], Any], None]] = {
    "piece-cid": _set_piece_cid,
    "piece-size": _set_piece_size,
}


def entries_to_event(entries: Sequence[dict[str, Any]]) -> tuple[str, dict[str, Any]]:
    """Convert raw key/value entries to `(type, event)` with camelCase keys."""
    if not isinstance(entries, (list, tuple)):
        raise FormatError("Expected entries to be a list")
    if len(entries) == 0:
        raise FormatError("Expected at least one entry")
    if entries[0].get("Key") != "$type":
        raise FormatError("Expected $type as first entry")
    event_type = decode_value(entries[0])
    if not isinstance(event_type, str):
        raise FormatError(f"Expected $type to be a string, got {type(event_type).__name__}")

    piece_bearing = event_type in PIECE_EVENT_TYPES
    event: dict[str, Any] = {}
    for entry in entries[1:]:
        raw_key = entry.get("Key")
        if not isinstance(raw_key, str):
            raise FormatError(f"Expected string key in {event_type} entry")
        value = decode_value(entry)
        if piece_bearing and raw_key in _PIECE_SETTERS:
            _PIECE_SETTERS[raw_key](event, value)
            continue
        key = kebab_to_camel(raw_key)
        if key in event:
            raise DuplicateKeyError(f"Unexpected duplicate key {key} in event")
        event[key] = value
    return event_type, event


def transform(raw: RawRecord, registry: SchemaRegistry) -> DecodedEvent:
    """Decode a RawEvent and validate it against its registered schema.

    The returned event keeps every property of the raw record except
    `entries`, which is replaced by `type` and `event`.
    """
    if registry is None or not registry.initialized:
        raise NotInitializedError("schema registry must be built before transform")
    event_type, event = entries_to_event(raw.get("entries") or [])
    registry.validate_event(event_type, event)
    return DecodedEvent.from_raw(raw, event_type, event)
