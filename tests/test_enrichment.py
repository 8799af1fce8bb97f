import asyncio
import logging

import pytest

from filevents.application.enrichment import collect_extra_state
from filevents.domain.decoding import transform
from filevents.domain.errors import FormatError
from filevents.domain.manifest import F05_ADDRESS
from filevents.domain.schemas import SchemaRegistry
from tests._chain import (
    b64cbor, batch_return, make_cid, piece_manifest, prove_commit3_params,
    prove_replica_updates3_params, raw_event, sector_activated,
)


class FakeChain:
    def __init__(self, *, method=34, params="", ret=None, lookup="default"):
        self.message = {"Method": method, "Params": params}
        self.lookup = {"Receipt": {"ExitCode": 0, "Return": ret, "GasUsed": 1}} if lookup == "default" else lookup
        self.calls = []

    async def chain_get_tipset_by_height(self, height):
        self.calls.append(("tipset", height))
        return [{"/": str(make_cid(f"block-{height}"))}]

    async def chain_get_message(self, msg_cid):
        self.calls.append(("message", msg_cid["/"]))
        return self.message

    async def state_search_msg(self, tipset, msg_cid, limit, allow_replaced):
        self.calls.append(("search", tipset[0]["/"], limit, allow_replaced))
        return self.lookup


@pytest.fixture(scope="module")
def registry():
    return SchemaRegistry.build()


def _run(event, rpc, registry):
    return asyncio.run(collect_extra_state(event, rpc, registry))


def test_prove_commit_sectors3_manifest(registry):
    p1, p2 = make_cid("piece-1"), make_cid("piece-2")
    params = prove_commit3_params([
        (10, [piece_manifest(make_cid("other"), 1024)]),
        (11, [piece_manifest(p1, 2048, verified=True, notify=[F05_ADDRESS]),
              piece_manifest(p2, 4096)]),
    ])
    rpc = FakeChain(method=34, params=params, ret=batch_return(2))
    event = transform(sector_activated(11, [(p1, 2048), (p2, 4096)], height=3_900_000), registry)

    extra = _run(event, rpc, registry)

    assert extra is not None
    assert extra.method == 34
    assert [(p.cid, p.size, p.verified, p.f05) for p in extra.pieces] == [
        (p1, 2048, True, True),
        (p2, 4096, False, False),
    ]
    assert ("tipset", 3_900_001) in rpc.calls
    assert ("search", str(make_cid("block-3900001")), 10, True) in rpc.calls


def test_prove_replica_updates3_manifest(registry):
    p = make_cid("piece-u")
    params = prove_replica_updates3_params([(5, [piece_manifest(p, 2048, verified=True)])])
    rpc = FakeChain(method=35, params=params, ret=batch_return(1))
    event = transform(sector_activated(5, [(p, 2048)], event_type="sector-updated"), registry)
    extra = _run(event, rpc, registry)
    assert extra.method == 35
    assert extra.pieces[0].verified and not extra.pieces[0].f05


def test_failed_entries_are_dropped_before_matching(registry):
    p_bad, p_good = make_cid("bad"), make_cid("good")
    # sector 11 appears twice; index 0 failed in the batch return
    params = prove_commit3_params([
        (11, [piece_manifest(p_bad, 1024)]),
        (11, [piece_manifest(p_good, 2048)]),
    ])
    rpc = FakeChain(params=params, ret=batch_return(1, [(0, 16)]))
    event = transform(sector_activated(11, [(p_good, 2048)]), registry)
    extra = _run(event, rpc, registry)
    assert [p.cid for p in extra.pieces] == [p_good]


def test_ambiguous_manifest_is_soft_failure(registry, caplog):
    params = prove_commit3_params([(11, []), (11, [])])
    rpc = FakeChain(params=params, ret=batch_return(2))
    event = transform(sector_activated(11, [(make_cid("x"), 2048)]), registry)
    with caplog.at_level(logging.WARNING):
        assert _run(event, rpc, registry) is None
    assert "exactly one manifest" in caplog.text


def test_missing_sector_is_soft_failure(registry):
    rpc = FakeChain(params=prove_commit3_params([(99, [])]), ret=batch_return(1))
    event = transform(sector_activated(11, [(make_cid("x"), 2048)]), registry)
    assert _run(event, rpc, registry) is None


def test_other_notify_target_is_logged_not_fatal(registry, caplog):
    p = make_cid("p")
    params = prove_commit3_params([(1, [piece_manifest(p, 2048, notify=[F05_ADDRESS, b"\x00\x99\x01"])])])
    rpc = FakeChain(params=params, ret=batch_return(1))
    event = transform(sector_activated(1, [(p, 2048)]), registry)
    with caplog.at_level(logging.WARNING):
        extra = _run(event, rpc, registry)
    assert extra.pieces[0].f05 is True
    assert "unexpected notification target" in caplog.text


def test_no_unsealed_cid_means_nothing_to_enrich(registry):
    rpc = FakeChain()
    event = transform(raw_event("sector-activated", [("sector", 1), ("unsealed-cid", None)]), registry)
    assert _run(event, rpc, registry) is None
    assert rpc.calls == []


def test_other_event_types_are_ignored(registry):
    rpc = FakeChain()
    event = transform(raw_event("allocation", [("client", 1)]), registry)
    assert _run(event, rpc, registry) is None
    assert rpc.calls == []


def test_legacy_method_is_skipped(registry):
    rpc = FakeChain(method=27)
    event = transform(sector_activated(1, [(make_cid("x"), 2048)], event_type="sector-updated"), registry)
    assert _run(event, rpc, registry) is None
    assert not any(c[0] == "search" for c in rpc.calls)


def test_unexpected_method_is_format_error(registry):
    rpc = FakeChain(method=35)
    event = transform(sector_activated(1, [(make_cid("x"), 2048)]), registry)
    with pytest.raises(FormatError):
        _run(event, rpc, registry)


def test_invalid_params_is_soft_failure(registry):
    rpc = FakeChain(params=b64cbor(["not", "params"]), ret=batch_return(1))
    event = transform(sector_activated(1, [(make_cid("x"), 2048)]), registry)
    assert _run(event, rpc, registry) is None


def test_missing_receipt_is_format_error(registry):
    rpc = FakeChain(params=prove_commit3_params([(1, [])]), lookup=None)
    event = transform(sector_activated(1, [(make_cid("x"), 2048)]), registry)
    with pytest.raises(FormatError):
        _run(event, rpc, registry)


def test_malformed_batch_return_is_soft_failure(registry):
    rpc = FakeChain(params=prove_commit3_params([(1, [])]), ret=b64cbor({"nope": 1}))
    event = transform(sector_activated(1, [(make_cid("x"), 2048)]), registry)
    assert _run(event, rpc, registry) is None
