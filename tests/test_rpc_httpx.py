import asyncio
import base64
import json

import dag_cbor
import httpx
import pytest

from filevents.adapters.rpc_httpx import LotusRPC
from filevents.adapters.tipsetkey import tipset_key_cid
from filevents.domain.errors import MaxResultsLimitError, RPCError, TransientNetworkError
from tests._chain import link, make_cid


class Node:
    """Minimal Lotus JSON-RPC endpoint backed by a method -> result mapping."""

    def __init__(self, results):
        self.results = results
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append((body["method"], body["params"]))
        result = self.results[body["method"]]
        if isinstance(result, Exception):
            raise result
        if callable(result):
            result = result(body["params"])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def _rpc(node, tmp_path):
    return LotusRPC("http://lotus.test/rpc/v1", str(tmp_path / "cache"), transport=httpx.MockTransport(node))


def _run(coro_fn, node, tmp_path):
    async def go():
        rpc = _rpc(node, tmp_path)
        try:
            return await coro_fn(rpc)
        finally:
            await rpc.aclose()
    return asyncio.run(go())


def test_chain_head(tmp_path):
    node = Node({"Filecoin.ChainHead": {"Height": 4_200_000, "Cids": []}})
    assert _run(lambda rpc: rpc.chain_head(), node, tmp_path) == 4_200_000


def test_chain_head_shape_is_checked(tmp_path):
    node = Node({"Filecoin.ChainHead": {"Height": "soon"}})
    with pytest.raises(RPCError):
        _run(lambda rpc: rpc.chain_head(), node, tmp_path)


def test_tipset_by_height_keeps_last_value(tmp_path):
    cids = [link(make_cid("b1")), link(make_cid("b2"))]
    node = Node({"Filecoin.ChainGetTipSetByHeight": {"Cids": cids, "Height": 10}})

    async def calls(rpc):
        a = await rpc.chain_get_tipset_by_height(10)
        b = await rpc.chain_get_tipset_by_height(10)
        await rpc.chain_get_tipset_by_height(11)
        await rpc.chain_get_tipset_by_height(10)
        return a, b

    a, b = _run(calls, node, tmp_path)
    assert a == b == cids
    assert [p[0] for _, p in node.calls] == [10, 11, 10]


def test_chain_get_message_is_cached_on_disk(tmp_path):
    msg = {"Method": 34, "Params": "gA==", "To": "f01234"}
    node = Node({"Filecoin.ChainGetMessage": msg})
    cid = link(make_cid("m"))

    assert _run(lambda rpc: rpc.chain_get_message(cid), node, tmp_path) == msg
    assert _run(lambda rpc: rpc.chain_get_message(cid), node, tmp_path) == msg
    assert len(node.calls) == 1
    assert node.calls[0][1] == [cid]


def test_state_search_msg_cached_per_tipset_key(tmp_path):
    lookup = {"Receipt": {"ExitCode": 0, "Return": "ggGA"}, "Height": 11}
    node = Node({"Filecoin.StateSearchMsg": lookup})
    tipset = [link(make_cid("b1"))]
    cid = link(make_cid("m"))

    for _ in range(2):
        assert _run(lambda rpc: rpc.state_search_msg(tipset, cid, 10, True), node, tmp_path) == lookup
    assert len(node.calls) == 1
    assert node.calls[0][1] == [tipset, cid, 10, True]
    cached = list((tmp_path / "cache").iterdir())
    assert any(str(tipset_key_cid(tipset)) in p.name for p in cached)


def test_state_search_msg_without_tipset_is_not_cached(tmp_path):
    node = Node({"Filecoin.StateSearchMsg": None})
    cid = link(make_cid("m"))
    for _ in range(2):
        assert _run(lambda rpc: rpc.state_search_msg([], cid, 10, True), node, tmp_path) is None
    assert len(node.calls) == 2


def test_actor_events_filter_encoding(tmp_path):
    node = Node({"Filecoin.GetActorEventsRaw": [{"height": 5}]})
    events = _run(lambda rpc: rpc.get_actor_events_raw(1, 9, ["allocation", "claim"]), node, tmp_path)
    assert events == [{"height": 5}]
    (flt,) = node.calls[0][1]
    assert flt["fromHeight"] == 1 and flt["toHeight"] == 9
    decoded = [dag_cbor.decode(base64.b64decode(f["Value"])) for f in flt["fields"]["$type"]]
    assert decoded == ["allocation", "claim"]
    assert {f["Codec"] for f in flt["fields"]["$type"]} == {81}


def test_actor_events_null_result(tmp_path):
    node = Node({"Filecoin.GetActorEventsRaw": None})
    assert _run(lambda rpc: rpc.get_actor_events_raw(1, 2, ["claim"]), node, tmp_path) == []


def test_actor_events_result_cap(tmp_path):
    node = Node({"Filecoin.GetActorEventsRaw": [{"height": 1}] * 10_000})
    with pytest.raises(MaxResultsLimitError):
        _run(lambda rpc: rpc.get_actor_events_raw(1, 2, ["claim"]), node, tmp_path)


def test_transport_errors_are_transient(tmp_path):
    node = Node({"Filecoin.ChainHead": httpx.ConnectError("connection refused")})
    with pytest.raises(TransientNetworkError):
        _run(lambda rpc: rpc.chain_head(), node, tmp_path)


def test_jsonrpc_error_is_fatal(tmp_path):
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": 1, "message": "bad tipset"}})

    async def go():
        rpc = LotusRPC("http://lotus.test", str(tmp_path), transport=httpx.MockTransport(handler))
        try:
            await rpc.chain_head()
        finally:
            await rpc.aclose()

    with pytest.raises(RPCError, match="bad tipset"):
        asyncio.run(go())


@pytest.mark.parametrize("status", [502, 503, 504])
def test_gateway_errors_are_transient(tmp_path, status):
    def handler(request):
        return httpx.Response(status, text="upstream unavailable")

    async def go():
        rpc = LotusRPC("http://lotus.test", str(tmp_path), transport=httpx.MockTransport(handler))
        try:
            await rpc.chain_head()
        finally:
            await rpc.aclose()

    with pytest.raises(TransientNetworkError, match=str(status)):
        asyncio.run(go())


def test_other_http_errors_are_fatal(tmp_path):
    def handler(request):
        return httpx.Response(401, text="unauthorized")

    async def go():
        rpc = LotusRPC("http://lotus.test", str(tmp_path), transport=httpx.MockTransport(handler))
        try:
            await rpc.chain_head()
        finally:
            await rpc.aclose()

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(go())
