# filevents/ports/rpc.py
from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence
from ..domain.value_types import CidLink, RawRecord


class ChainRPC(Protocol):
    """Port defining the subset of the Lotus JSON-RPC API the pipeline consumes."""

    async def chain_head(self) -> int:
        """Return the height of the current chain head."""

    async def chain_get_tipset_by_height(self, height: int) -> list[CidLink]:
        """Return the block CIDs of the tipset at `height`."""

    async def chain_get_message(self, msg_cid: CidLink) -> dict[str, Any]:
        """Return the message identified by `msg_cid`."""

    async def state_search_msg(
        self,
        tipset: Sequence[CidLink],
        msg_cid: CidLink,
        limit: int,
        allow_replaced: bool,
    ) -> Optional[dict[str, Any]]:
        """Return the message lookup (with `Receipt`) searching back from `tipset`, or None."""

    async def get_actor_events_raw(
        self,
        from_height: int,
        to_height: int,
        event_types: Sequence[str],
    ) -> list[RawRecord]:
        """Return raw builtin actor events in [from_height, to_height] inclusive.

        Raises MaxResultsLimitError when the node's result cap was reached.
        """
