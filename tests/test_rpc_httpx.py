import json

import httpx
import pytest
import respx

from feetrail.adapters import rpc_httpx
from feetrail.adapters.rpc_httpx import HttpxRPC
from feetrail.domain.decoding import FEES_ESCROWED_T0
from feetrail.domain.errors import RPCError

from conftest import LEGACY_VAULT, VAULT

URL = "https://rpc.example.org"


def ok(result) -> httpx.Response:
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


@pytest.fixture
async def client():
    rpc = HttpxRPC(URL, client=httpx.AsyncClient())
    yield rpc
    await rpc.aclose()


@respx.mock
async def test_latest_block(client):
    route = respx.post(URL).mock(return_value=ok("0x3e8"))
    assert await client.latest_block() == 1000
    body = json.loads(route.calls.last.request.content)
    assert body["method"] == "eth_blockNumber"
    assert body["jsonrpc"] == "2.0"


@respx.mock
async def test_request_ids_increase(client):
    route = respx.post(URL).mock(return_value=ok("0x1"))
    await client.latest_block()
    await client.latest_block()
    ids = [json.loads(c.request.content)["id"] for c in route.calls]
    assert ids[1] > ids[0]


@respx.mock
async def test_get_logs_normalizes_and_drops_removed(client):
    raw = {
        "address": VAULT.upper().replace("0X", "0x"),
        "topics": [FEES_ESCROWED_T0.upper().replace("0X", "0x")],
        "data": "0x" + "00" * 31 + "05",
        "blockNumber": "0x10",
        "transactionHash": "0x" + "AB" * 32,
        "logIndex": "0x2",
    }
    route = respx.post(URL).mock(return_value=ok([raw, dict(raw, logIndex="0x3", removed=True)]))

    logs = await client.get_logs([VAULT, LEGACY_VAULT], [FEES_ESCROWED_T0], 1, 32)

    params = json.loads(route.calls.last.request.content)["params"][0]
    assert params["address"] == [VAULT.lower(), LEGACY_VAULT.lower()]
    assert (params["fromBlock"], params["toBlock"]) == ("0x1", "0x20")
    assert params["topics"] == [[FEES_ESCROWED_T0]]
    (log,) = logs
    assert log.block_number == 16 and log.log_index == 2
    assert log.tx_hash == "0x" + "ab" * 32
    assert log.topics == (FEES_ESCROWED_T0,)


@respx.mock
async def test_single_address_filter_is_a_string(client):
    route = respx.post(URL).mock(return_value=ok([]))
    assert await client.get_logs([VAULT], [FEES_ESCROWED_T0], 1, 2) == []
    assert json.loads(route.calls.last.request.content)["params"][0]["address"] == VAULT.lower()


async def test_bad_topic_is_rejected_before_sending(client):
    with pytest.raises(ValueError):
        await client.get_logs([VAULT], ["0x1234"], 1, 2)


@respx.mock
async def test_error_object_becomes_rpc_error(client):
    respx.post(URL).mock(return_value=httpx.Response(200, json={
        "jsonrpc": "2.0", "id": 1,
        "error": {"code": 3, "message": "execution reverted: NoUnclaimedFees", "data": "0xdeadbeef"},
    }))
    with pytest.raises(RPCError) as exc_info:
        await client.call(VAULT, "0x")
    err = exc_info.value
    assert (err.method, err.code, err.data) == ("eth_call", 3, "0xdeadbeef")
    assert "NoUnclaimedFees" in err.message


@respx.mock
async def test_rate_limit_is_retried(client, monkeypatch):
    delays = []

    async def no_sleep(d):
        delays.append(d)

    monkeypatch.setattr(rpc_httpx.asyncio, "sleep", no_sleep)
    respx.post(URL).mock(side_effect=[
        httpx.Response(429, headers={"Retry-After": "3"}),
        httpx.Response(429),
        ok("0x5"),
    ])
    assert await client.latest_block() == 5
    assert delays == [3.0, 2.0]


@respx.mock
async def test_rate_limit_gives_up(client, monkeypatch):
    async def no_sleep(d):
        pass

    monkeypatch.setattr(rpc_httpx.asyncio, "sleep", no_sleep)
    respx.post(URL).mock(return_value=httpx.Response(429))
    with pytest.raises(RPCError):
        await client.latest_block()


@respx.mock
async def test_unknown_block_has_no_timestamp(client):
    respx.post(URL).mock(side_effect=[ok(None), ok({"timestamp": "0x65"})])
    assert await client.get_block_timestamp(1) is None
    assert await client.get_block_timestamp(2) == 101


@respx.mock
async def test_empty_code_and_call_results(client):
    respx.post(URL).mock(return_value=ok(None))
    assert await client.get_code(VAULT) == "0x"
    assert await client.call(VAULT, "0x") == "0x"
