from __future__ import annotations

import httpx
import pytest

from rpc_parity.config import Settings
from rpc_parity.domain.models import Side
from rpc_parity.infrastructure.rpc_client import RpcClient, RpcTransportError, build_clients

BLOCK = 19_000_000
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"


def _client(transport: httpx.AsyncBaseTransport) -> RpcClient:
    return RpcClient("http://node.test", Side.PRIMARY, retry_attempts=1, transport=transport)


@pytest.mark.asyncio
async def test_call_returns_result_and_latency(node_factory):
    node = node_factory(block=BLOCK, balances={WETH: 42})
    async with _client(node.transport) as client:
        result = await client.call("eth_getBalance", [WETH, "latest"])

    assert result.ok
    assert result.value == hex(42)
    assert result.latency_ms is not None and result.latency_ms >= 0
    assert node.requests == [("eth_getBalance", [WETH, "latest"])]


@pytest.mark.asyncio
async def test_jsonrpc_error_is_returned_as_value(node_factory):
    node = node_factory()
    node.failing_methods.add("eth_call")
    async with _client(node.transport) as client:
        result = await client.call("eth_call", [{"to": WETH, "data": "0x"}, "latest"])

    assert not result.ok
    assert result.error.code == -32000
    assert "eth_call unavailable" in str(result.error)


@pytest.mark.asyncio
async def test_http_error_status_is_returned_as_value():
    transport = httpx.MockTransport(lambda request: httpx.Response(429, text="slow down"))
    async with _client(transport) as client:
        result = await client.call("eth_blockNumber", [])

    assert not result.ok
    assert result.error.code == 429


@pytest.mark.asyncio
async def test_connection_failure_raises_transport_error(node_factory):
    node = node_factory()
    node.down = True
    async with _client(node.transport) as client:
        with pytest.raises(RpcTransportError) as excinfo:
            await client.call("eth_blockNumber", [])

    assert isinstance(excinfo.value.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_connection_failures_are_retried(node_factory):
    node = node_factory(block=BLOCK)
    attempts = []

    def flaky(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("refused", request=request)
        return node.handler(request)

    client = RpcClient(
        "http://node.test", Side.REFERENCE, retry_attempts=2, transport=httpx.MockTransport(flaky)
    )
    async with client:
        result = await client.block_number()

    assert len(attempts) == 2
    assert result.value == BLOCK


@pytest.mark.asyncio
async def test_non_json_body_raises_transport_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
    async with _client(transport) as client:
        with pytest.raises(RpcTransportError):
            await client.call("eth_blockNumber", [])


@pytest.mark.asyncio
async def test_block_number_is_decoded(node_factory):
    node = node_factory(block=BLOCK)
    async with _client(node.transport) as client:
        result = await client.block_number()

    assert result.value == BLOCK


@pytest.mark.asyncio
async def test_batch_keeps_backend_order(node_factory):
    node = node_factory(balances={WETH: 7})
    node.reverse_batches = True
    requests = [("eth_getBalance", [WETH, "latest"]), ("eth_blockNumber", [])]
    async with _client(node.transport) as client:
        result = await client.batch_call(requests)

    assert result.ok
    assert [entry.id for entry in result.entries] == [2, 1]
    assert result.entries[1].value == hex(7)


@pytest.mark.asyncio
async def test_batch_entry_errors_are_per_entry(node_factory):
    node = node_factory()
    node.failing_methods.add("eth_blockNumber")
    requests = [("eth_getBalance", [WETH, "latest"]), ("eth_blockNumber", [])]
    async with _client(node.transport) as client:
        result = await client.batch_call(requests)

    assert result.ok
    assert result.entries[0].ok
    assert not result.entries[1].ok


@pytest.mark.asyncio
async def test_calls_before_connect_are_rejected():
    client = RpcClient("http://node.test", Side.PRIMARY)
    with pytest.raises(RuntimeError):
        await client.call("eth_blockNumber", [])


def test_build_clients_uses_settings():
    settings = Settings(
        primary_rpc_url="http://primary.test",
        reference_rpc_url="http://reference.test",
    )
    primary, reference = build_clients(settings)
    assert (primary.url, primary.side) == ("http://primary.test", Side.PRIMARY)
    assert (reference.url, reference.side) == ("http://reference.test", Side.REFERENCE)
