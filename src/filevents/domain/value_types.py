from __future__ import annotations
from typing import Any, Literal, NewType

CidLink = NewType("CidLink", dict)  # DAG-JSON link: {"/": "bafy..."}
RawRecord = dict[str, Any]          # RawEvent exactly as returned by GetActorEventsRaw
EventType = Literal[
    "verifier-balance", "allocation", "allocation-removed", "claim",
    "claim-updated", "claim-removed", "deal-published", "deal-activated",
    "deal-terminated", "deal-completed", "sector-precommitted", "sector-activated",
    "sector-updated", "sector-terminated",
]

EVENT_TYPES: tuple[str, ...] = (
    "verifier-balance", "allocation", "allocation-removed", "claim",
    "claim-updated", "claim-removed", "deal-published", "deal-activated",
    "deal-terminated", "deal-completed", "sector-precommitted", "sector-activated",
    "sector-updated", "sector-terminated",
)

# event kinds carrying a repeating piece-cid/piece-size structure
PIECE_EVENT_TYPES: frozenset[str] = frozenset({"sector-activated", "sector-updated"})

CBOR_CODEC = 0x51
EPOCH_QUANTUM = 2880        # one day of epochs per partition
EPOCH_DURATION_S = 30
FINALITY_EPOCHS = 900
MAX_ACTOR_EVENTS_RESULTS = 10_000
