"""Typed schemas for builtin actor events and the chain messages behind them.

Event models validate the camelCase objects produced by the decoder. Auxiliary
models validate DAG-CBOR values that are tuple-encoded on chain (a struct is a
positional list), so they accept either a list in field order or a mapping.

`SchemaRegistry.build()` collects every model once; the result is shared
read-only by the decoder and the enricher.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping, Optional

from multiformats import CID
from pydantic import BaseModel, ConfigDict, StrictBool, StrictBytes, StrictInt, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from .errors import NotInitializedError, SchemaValidationError, UnknownTypeError


# ---------- builtin actor events (FIP-0083) ---------------------------------

class ActorEvent(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        arbitrary_types_allowed=True,
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class PieceData(ActorEvent):
    cid: CID
    size: StrictInt


class VerifierBalanceEvent(ActorEvent):
    verifier: StrictInt
    balance: StrictBytes          # BigInt, big-endian with sign byte
    client: Optional[StrictInt] = None


class AllocationEvent(ActorEvent):
    client: StrictInt
    id: Optional[StrictInt] = None
    provider: Optional[StrictInt] = None
    piece_cid: Optional[CID] = None
    piece_size: Optional[StrictInt] = None
    term_min: Optional[StrictInt] = None
    term_max: Optional[StrictInt] = None
    expiration: Optional[StrictInt] = None


class AllocationRemovedEvent(AllocationEvent):
    pass


class ClaimEvent(ActorEvent):
    id: StrictInt
    client: StrictInt
    provider: StrictInt
    piece_cid: Optional[CID] = None
    piece_size: Optional[StrictInt] = None
    term_min: Optional[StrictInt] = None
    term_max: Optional[StrictInt] = None
    term_start: Optional[StrictInt] = None
    sector: Optional[StrictInt] = None


class ClaimUpdatedEvent(ClaimEvent):
    pass


class ClaimRemovedEvent(ClaimEvent):
    pass


class DealEvent(ActorEvent):
    id: StrictInt
    client: StrictInt
    provider: StrictInt


class DealPublishedEvent(DealEvent):
    pass


class DealActivatedEvent(DealEvent):
    pass


class DealTerminatedEvent(DealEvent):
    pass


class DealCompletedEvent(DealEvent):
    pass


class SectorPrecommittedEvent(ActorEvent):
    sector: StrictInt


class SectorActivatedEvent(ActorEvent):
    sector: StrictInt
    unsealed_cid: Optional[CID] = None
    pieces: list[PieceData] = []


class SectorUpdatedEvent(SectorActivatedEvent):
    pass


class SectorTerminatedEvent(ActorEvent):
    sector: StrictInt


# ---------- auxiliary chain structures (FIP-0076) ---------------------------

class TupleStruct(BaseModel):
    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _from_tuple(cls, data: Any) -> Any:
        if isinstance(data, (list, tuple)):
            names = list(cls.model_fields)
            if len(data) != len(names):
                raise ValueError(f"{cls.__name__} expects {len(names)} fields, got {len(data)}")
            return dict(zip(names, data))
        return data


class FailCode(TupleStruct):
    idx: StrictInt
    code: StrictInt


class BatchReturn(TupleStruct):
    success_count: StrictInt
    fail_codes: list[FailCode]


class AllocationKey(TupleStruct):
    client: StrictInt
    id: StrictInt


class DataActivationNotification(TupleStruct):
    address: StrictBytes
    payload: StrictBytes


class PieceActivationManifest(TupleStruct):
    cid: CID
    size: StrictInt
    verified_allocation_key: Optional[AllocationKey]
    notify: list[DataActivationNotification]


class SectorActivationManifest(TupleStruct):
    sector_number: StrictInt
    pieces: list[PieceActivationManifest]


class ProveCommitSectors3Params(TupleStruct):
    sector_activations: list[SectorActivationManifest]
    sector_proofs: list[StrictBytes]
    aggregate_proof: Optional[StrictBytes]
    aggregate_proof_type: Optional[StrictInt]
    require_activation_success: StrictBool
    require_notification_success: StrictBool


class SectorUpdateManifest(TupleStruct):
    sector: StrictInt
    deadline: StrictInt
    partition: StrictInt
    new_sealed_cid: CID
    pieces: list[PieceActivationManifest]


class ProveReplicaUpdates3Params(TupleStruct):
    sector_updates: list[SectorUpdateManifest]
    sector_proofs: list[StrictBytes]
    aggregate_proof: Optional[StrictBytes]
    update_proofs_type: StrictInt
    aggregate_proof_type: Optional[StrictInt]
    require_activation_success: StrictBool
    require_notification_success: StrictBool


_EVENT_MODELS: tuple[type[ActorEvent], ...] = (
    VerifierBalanceEvent, AllocationEvent, AllocationRemovedEvent, ClaimEvent,
    ClaimUpdatedEvent, ClaimRemovedEvent, DealPublishedEvent, DealActivatedEvent,
    DealTerminatedEvent, DealCompletedEvent, SectorPrecommittedEvent, SectorActivatedEvent,
    SectorUpdatedEvent, SectorTerminatedEvent,
)

_AUX_MODELS: tuple[type[TupleStruct], ...] = (
    BatchReturn, ProveCommitSectors3Params, ProveReplicaUpdates3Params,
)


def type_name(event_type: str) -> str:
    """`allocation-removed` -> `AllocationRemovedEvent`."""
    return "".join(part[:1].upper() + part[1:] for part in event_type.split("-")) + "Event"


class SchemaRegistry:
    """Immutable name -> model lookup. An empty registry is uninitialised."""

    def __init__(
        self,
        events: Mapping[str, type[ActorEvent]] | None = None,
        aux: Mapping[str, type[TupleStruct]] | None = None,
    ) -> None:
        self._events = MappingProxyType(dict(events or {}))
        self._aux = MappingProxyType(dict(aux or {}))

    @classmethod
    def build(cls) -> "SchemaRegistry":
        return cls(
            events={m.__name__: m for m in _EVENT_MODELS},
            aux={m.__name__: m for m in _AUX_MODELS},
        )

    @property
    def initialized(self) -> bool:
        return bool(self._events)

    def event_names(self) -> list[str]:
        return sorted(self._events)

    def validate_event(self, event_type: str, value: dict[str, Any]) -> ActorEvent:
        if not self.initialized:
            raise NotInitializedError("schema registry must be built before decoding events")
        name = type_name(event_type)
        model = self._events.get(name)
        if model is None:
            raise UnknownTypeError(f"Unknown event type {event_type}, no schema for {name}")
        try:
            return model.model_validate(value)
        except ValidationError as e:
            raise SchemaValidationError(
                f"Invalid event data format, {event_type} event doesn't conform to {name} schema: {e}"
            ) from e

    def validate_aux(self, name: str, value: Any) -> TupleStruct:
        if not self._aux:
            raise NotInitializedError("schema registry must be built before validating messages")
        model = self._aux.get(name)
        if model is None:
            raise UnknownTypeError(f"No auxiliary schema named {name}")
        try:
            return model.model_validate(value)
        except ValidationError as e:
            raise SchemaValidationError(f"value doesn't conform to {name} schema: {e}") from e
