from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Optional

import dag_cbor

from ..domain.errors import FormatError, SchemaValidationError
from ..domain.manifest import (
    EXPECTED_METHOD, PARAMS_SCHEMA, PROVE_REPLICA_UPDATES,
    drop_failed, enrich_pieces, sector_manifests, select_sector,
)
from ..domain.models import DecodedEvent, Enrichment
from ..domain.schemas import SchemaRegistry
from ..ports.rpc import ChainRPC

logger = logging.getLogger(__name__)

SEARCH_MSG_LIMIT = 10


def _decode_b64_cbor(value: Any) -> Any:
    if not isinstance(value, str):
        raise ValueError(f"expected base64 string, got {type(value).__name__}")
    return dag_cbor.decode(base64.b64decode(value))


async def collect_extra_state(
    event: DecodedEvent,
    rpc: ChainRPC,
    registry: SchemaRegistry,
) -> Optional[Enrichment]:
    """Piece-level DDO manifest for a sector-activated/updated event, or None.

    Chain queries are made at `height + 1`: Lotus loads state from the parent of
    the requested tipset, so the next epoch's tipset reflects the event's state.
    """
    expected_method = EXPECTED_METHOD.get(event.type)
    if expected_method is None or event.event.get("unsealedCid") is None:
        return None
    sector = event.event.get("sector")
    where = f"(msg {event.msg_cid}, height {event.height}, sector {sector})"

    tipset, message = await asyncio.gather(
        rpc.chain_get_tipset_by_height(event.height + 1),
        rpc.chain_get_message(event.msg_cid),
    )

    method = message.get("Method")
    if method == PROVE_REPLICA_UPDATES:
        logger.debug("legacy ProveReplicaUpdates message, nothing to enrich %s", where)
        return None
    if method != expected_method:
        raise FormatError(f"Unexpected method {method} for {event.type} event {where}")

    schema = PARAMS_SCHEMA[method]
    try:
        params = registry.validate_aux(schema, _decode_b64_cbor(message.get("Params")))
    except SchemaValidationError as e:
        logger.warning("params do not conform to %s %s: %s", schema, where, e)
        return None
    except Exception as e:
        logger.warning("undecodable params for %s %s: %s", schema, where, e)
        return None

    lookup = await rpc.state_search_msg(tipset, event.msg_cid, SEARCH_MSG_LIMIT, True)
    receipt = lookup.get("Receipt") if isinstance(lookup, dict) else None
    if not isinstance(receipt, dict) or not isinstance(receipt.get("Return"), str):
        raise FormatError(f"No receipt found for message {where}")

    try:
        batch = registry.validate_aux("BatchReturn", _decode_b64_cbor(receipt["Return"]))
    except SchemaValidationError as e:
        logger.warning("receipt return is not a BatchReturn %s: %s", where, e)
        return None
    except Exception as e:
        logger.warning("undecodable receipt return %s: %s", where, e)
        return None

    remaining = drop_failed(sector_manifests(params), batch)
    matched = select_sector(remaining, sector)
    if matched is None:
        logger.warning("could not correlate manifest %s", where)
        return None
    return Enrichment(method=method, pieces=enrich_pieces(matched, context=where))
