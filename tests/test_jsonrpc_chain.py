from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from factories import CONTRACT, term, tx
from sofia_indexer.adapters.jsonrpc_chain import JsonRpcChainClient, classify_rpc_error, parse_log
from sofia_indexer.core.decoding import ATOM_CREATED_TOPIC, TRIPLE_CREATED_TOPIC
from sofia_indexer.core.errors import NetworkError, RangeTooLarge, RpcError, RpcRateLimited

RPC_URL = "https://rpc.test"


def _client(handler) -> JsonRpcChainClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JsonRpcChainClient(RPC_URL, CONTRACT.upper().replace("0X", "0x"), http)


def _result(request: httpx.Request, result) -> httpx.Response:
    payload = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})


def _raw_log(block: int, log_index: int, **extra) -> dict:
    entry = {
        "address": CONTRACT,
        "blockNumber": hex(block),
        "transactionHash": tx(block).upper().replace("0X", "0x"),
        "logIndex": hex(log_index),
        "topics": [ATOM_CREATED_TOPIC, "0x" + "00" * 32, term(1)],
        "data": "0x",
    }
    entry.update(extra)
    return entry


def test_head_block_parses_hex_quantity() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["method"] == "eth_blockNumber"
        return _result(request, "0x1f4")

    assert asyncio.run(_client(handler).head_block()) == 500


def test_logs_filters_by_contract_range_and_tracked_topics() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        seen.update(payload["params"][0])
        return _result(request, [_raw_log(101, 2), _raw_log(102, 0, removed=True)])

    logs = asyncio.run(_client(handler).logs(100, 150))

    assert seen["address"] == CONTRACT
    assert seen["fromBlock"] == "0x64"
    assert seen["toBlock"] == "0x96"
    assert seen["topics"] == [[ATOM_CREATED_TOPIC, TRIPLE_CREATED_TOPIC]]
    assert len(logs) == 1
    assert logs[0].block_number == 101
    assert logs[0].log_index == 2
    assert logs[0].transaction_hash == tx(101)


def test_logs_rejects_inverted_range() -> None:
    with pytest.raises(ValueError):
        asyncio.run(_client(lambda request: _result(request, [])).logs(10, 5))


def test_block_timestamp() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        assert payload["params"] == ["0x2a", False]
        return _result(request, {"number": "0x2a", "timestamp": "0x6553f100"})

    assert asyncio.run(_client(handler).block_timestamp(42)) == 0x6553F100


def test_missing_block_is_transient() -> None:
    with pytest.raises(NetworkError):
        asyncio.run(_client(lambda request: _result(request, None)).block_timestamp(42))


def test_transport_failure_is_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NetworkError):
        asyncio.run(_client(handler).head_block())


def test_http_429_is_rate_limited() -> None:
    with pytest.raises(RpcRateLimited):
        asyncio.run(_client(lambda request: httpx.Response(429)).head_block())


def test_http_error_with_range_body_is_range_too_large() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "block range too wide"}},
        )

    with pytest.raises(RangeTooLarge):
        asyncio.run(_client(handler).logs(1, 100000))


def test_non_json_body_is_network_error() -> None:
    with pytest.raises(NetworkError):
        asyncio.run(_client(lambda request: httpx.Response(200, text="<html>")).head_block())


def test_classify_rpc_error() -> None:
    assert isinstance(classify_rpc_error({"code": -32029, "message": "slow"}), RpcRateLimited)
    assert isinstance(
        classify_rpc_error({"code": -32005, "message": "Too many requests, please slow down"}),
        RpcRateLimited,
    )
    assert isinstance(classify_rpc_error({"code": -32000, "message": "rate limit exceeded"}), RpcRateLimited)
    assert isinstance(
        classify_rpc_error({"code": -32005, "message": "query returned more than 10000 results"}),
        RangeTooLarge,
    )
    error = classify_rpc_error({"code": -32000, "message": "header not found"})
    assert isinstance(error, RpcError)
    assert error.code == -32000


def test_parse_log_keeps_block_timestamp_when_provided() -> None:
    log = parse_log(_raw_log(7, 1, blockTimestamp="0x10"))

    assert log.block_timestamp == 16
    assert log.record_id == f"{tx(7)}:1"
