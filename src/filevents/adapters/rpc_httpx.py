from __future__ import annotations
import asyncio, base64, logging
from typing import Any, Optional, Sequence

import dag_cbor
import httpx

from ..domain.errors import MaxResultsLimitError, RPCError, TransientNetworkError
from ..domain.value_types import CBOR_CODEC, MAX_ACTOR_EVENTS_RESULTS, CidLink, RawRecord
from ..ports.rpc import ChainRPC
from .api_cache import JSONFileCache
from .tipsetkey import as_cid, tipset_key_cid

logger = logging.getLogger(__name__)

# upstream node unreachable or restarting behind a proxy
GATEWAY_ERRORS = frozenset({502, 503, 504})


def _link(cid: Any) -> CidLink:
    return CidLink({"/": str(as_cid(cid))})


def _type_filter(event_types: Sequence[str]) -> list[dict[str, Any]]:
    # Codec 81 (CBOR) restricts results to builtin actor events; FEVM events are RAW
    return [
        {"Codec": CBOR_CODEC, "Value": base64.b64encode(dag_cbor.encode(t)).decode()}
        for t in event_types
    ]


class LotusRPC(ChainRPC):
    def __init__(
        self,
        rpc_url: str,
        cache_dir: str,
        *,
        timeout_s: int = 60,
        max_conn: int = 8,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.cache = JSONFileCache(cache_dir)
        self.client = httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
            transport=transport,
        )
        self._req_id = 0
        # events of one epoch arrive together, so repeated lookups hit the same height
        self._last_tipset: Optional[tuple[int, list[CidLink]]] = None

    async def chain_head(self) -> int:
        result = await self._request("Filecoin.ChainHead", [])
        height = result.get("Height") if isinstance(result, dict) else None
        if not isinstance(height, int) or isinstance(height, bool):
            raise RPCError("Unexpected ChainHead result data")
        return height

    async def chain_get_tipset_by_height(self, height: int) -> list[CidLink]:
        if self._last_tipset is not None and self._last_tipset[0] == height:
            return self._last_tipset[1]
        result = await self._request("Filecoin.ChainGetTipSetByHeight", [height, []])
        cids = result.get("Cids") if isinstance(result, dict) else None
        if not isinstance(cids, list):
            raise RPCError("Unexpected ChainGetTipSetByHeight result data")
        self._last_tipset = (height, cids)
        return cids

    async def chain_get_message(self, msg_cid: CidLink) -> dict[str, Any]:
        link = _link(msg_cid)
        key = f"chainGetMessage-{link['/']}"
        hit, cached = self.cache.get(key)
        if hit:
            return cached
        result = await self._request("Filecoin.ChainGetMessage", [link])
        if not isinstance(result, dict):
            raise RPCError("Unexpected ChainGetMessage result data")
        self.cache.put(key, result)
        return result

    async def state_search_msg(
        self,
        tipset: Sequence[CidLink],
        msg_cid: CidLink,
        limit: int,
        allow_replaced: bool,
    ) -> Optional[dict[str, Any]]:
        link = _link(msg_cid)
        key = None
        if tipset:
            tsk = tipset_key_cid(tipset)
            key = f"stateSearchMsg-{link['/']}-{limit}-{str(allow_replaced).lower()}-{tsk}"
            hit, cached = self.cache.get(key)
            if hit:
                return cached
        params = [[_link(c) for c in tipset], link, limit, allow_replaced]
        result = await self._request("Filecoin.StateSearchMsg", params)
        if key is not None:
            self.cache.put(key, result)
        return result

    async def get_actor_events_raw(
        self,
        from_height: int,
        to_height: int,
        event_types: Sequence[str],
    ) -> list[RawRecord]:
        params = [{
            "fromHeight": from_height,
            "toHeight": to_height,
            "fields": {"$type": _type_filter(event_types)},
        }]
        result = await self._request("Filecoin.GetActorEventsRaw", params)
        events = result or []
        if len(events) == MAX_ACTOR_EVENTS_RESULTS:
            raise MaxResultsLimitError(
                f"Max results reached for GetActorEventsRaw [{from_height}, {to_height}]"
            )
        return events

    async def _request(self, method: str, params: list[Any]) -> Any:
        self._req_id += 1
        payload = {"jsonrpc": "2.0", "id": self._req_id, "method": method, "params": params}
        for attempt in range(3):
            try:
                r = await self.client.post(self.rpc_url, json=payload)
            except (httpx.TransportError, ConnectionError) as e:
                raise TransientNetworkError(f"{method}: {type(e).__name__}: {e}") from e
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                logger.debug("%s rate limited, retrying in %.1fs", method, delay)
                await asyncio.sleep(delay); continue
            if r.status_code in GATEWAY_ERRORS:
                raise TransientNetworkError(f"{method}: HTTP {r.status_code} from {self.rpc_url}")
            r.raise_for_status()
            try:
                data = r.json()
            except ValueError as e:
                logger.error("Body: [%s]", r.text[:500])
                raise RPCError(f"{method}: invalid JSON response") from e
            if data.get("jsonrpc") != "2.0":
                raise RPCError(f"{method}: invalid JSON-RPC version")
            if data.get("error"):
                err = data["error"]
                msg = err.get("message") if isinstance(err, dict) else str(err)
                raise RPCError(f"{method}: {msg}")
            if "result" not in data:
                raise RPCError(f"{method}: missing result")
            return data["result"]
        raise RPCError(f"Retries exhausted for {method}")

    async def aclose(self) -> None:
        await self.client.aclose()
