"""
Pytest configuration for the RPC parity monitor.

Provides fixtures for:
- Settings pointed at fake backends and a temporary data file
- A temporary record store
- A manual clock that drives sleeps without real waiting
- Fake JSON-RPC nodes served through `httpx.MockTransport`
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
import pytest

from rpc_parity.config import Settings
from rpc_parity.domain.models import Side
from rpc_parity.infrastructure.record_store import RecordStore
from rpc_parity.infrastructure.rpc_client import RpcClient

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
TEST_ADDRESSES = (WETH, USDC)
START_MS = 1_700_000_000_000


class ManualClock:
    """
    Clock whose time only moves when told to.

    With `auto_advance`, every sleep moves time forward by its duration and
    yields once to the event loop. Without it, sleepers wait until `advance`
    moves time past their deadline.
    """

    def __init__(self, start_ms: int = START_MS, auto_advance: bool = True) -> None:
        self._now = start_ms / 1000
        self.auto_advance = auto_advance
        self.sleeps: List[float] = []
        self._waiters: List[Tuple[float, asyncio.Future]] = []

    def now_ms(self) -> int:
        return int(round(self._now * 1000))

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.auto_advance or seconds <= 0:
            self._now += max(seconds, 0.0)
            await asyncio.sleep(0)
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append((self._now + seconds, waiter))
        await waiter

    def advance(self, seconds: float) -> None:
        self._now += seconds
        for deadline, waiter in self._waiters:
            if deadline <= self._now + 1e-9 and not waiter.done():
                waiter.set_result(None)
        self._waiters = [(d, w) for d, w in self._waiters if not w.done()]


def make_log(tx_hash: str, log_index: int) -> Dict[str, Any]:
    return {
        "address": WETH,
        "transactionHash": tx_hash,
        "logIndex": hex(log_index),
        "topics": [],
        "data": "0x",
    }


class FakeNode:
    """
    In-memory JSON-RPC node.

    Answers eth_blockNumber, eth_getBalance, eth_call and eth_getLogs from plain
    attributes, single and batch requests alike, and records every method called.
    """

    def __init__(
        self,
        block: int = 100,
        balances: Optional[Dict[str, int]] = None,
        call_results: Optional[Dict[str, str]] = None,
        logs: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> None:
        self.block = block
        self.balances = {k.lower(): v for k, v in (balances or {}).items()}
        self.call_results = {k.lower(): v for k, v in (call_results or {}).items()}
        self.logs = list(logs or [])
        self.failing_methods: set = set()
        self.down = False
        self.reverse_batches = False
        self.requests: List[Tuple[str, List[Any]]] = []
        self._stale_balances: Dict[str, List[int]] = {}

    def serve_stale_balance(self, address: str, value: int, times: int = 1) -> None:
        """Answer the next `times` balance reads of `address` with `value`."""
        self._stale_balances.setdefault(address.lower(), []).extend([value] * times)

    def methods(self) -> List[str]:
        return [method for method, _ in self.requests]

    def _answer(self, request: Dict[str, Any]) -> Dict[str, Any]:
        method, params = request["method"], request.get("params", [])
        self.requests.append((method, params))
        reply: Dict[str, Any] = {"jsonrpc": "2.0", "id": request["id"]}
        if method in self.failing_methods:
            reply["error"] = {"code": -32000, "message": f"{method} unavailable"}
        elif method == "eth_blockNumber":
            reply["result"] = hex(self.block)
        elif method == "eth_getBalance":
            address = params[0].lower()
            stale = self._stale_balances.get(address)
            value = stale.pop(0) if stale else self.balances.get(address, 0)
            reply["result"] = hex(value)
        elif method == "eth_call":
            reply["result"] = self.call_results.get(params[0]["to"].lower(), "0x" + "00" * 32)
        elif method == "eth_getLogs":
            reply["result"] = list(self.logs)
        else:
            reply["error"] = {"code": -32601, "message": "method not found"}
        return reply

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        payload = json.loads(request.content)
        if isinstance(payload, list):
            replies = [self._answer(item) for item in payload]
            if self.reverse_batches:
                replies.reverse()
            return httpx.Response(200, json=replies)
        return httpx.Response(200, json=self._answer(payload))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """
    Settings with fake endpoints, fast retries and a temporary data file.
    """
    return Settings(
        primary_rpc_url="http://primary.test",
        reference_rpc_url="http://reference.test",
        rpc_retry_attempts=1,
        rpc_timeout_seconds=2.0,
        sample_interval_seconds=0.5,
        error_backoff_seconds=5.0,
        recovery_delay_seconds=5.0,
        watch_addresses=",".join(TEST_ADDRESSES),
        batch_size=4,
        data_file=tmp_path / "parity.ndjson",
        log_level="DEBUG",
    )


@pytest.fixture
def record_store(tmp_path: Path) -> RecordStore:
    return RecordStore(tmp_path / "parity.ndjson")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def clock_factory():
    """Factory for manual clocks (pass auto_advance=False to drive time by hand)."""
    return ManualClock


@pytest.fixture
def log_entry():
    """Factory for eth_getLogs entries keyed by (transactionHash, logIndex)."""
    return make_log


@pytest.fixture
def node_factory():
    """Factory for fake JSON-RPC nodes."""
    return FakeNode


@pytest.fixture
def node_pair() -> Tuple[FakeNode, FakeNode]:
    """
    Primary and reference nodes that agree on everything at block 100.
    """
    balances = {WETH: 10**18, USDC: 5 * 10**17}
    calls = {WETH: hex(123_456), USDC: hex(789)}
    logs = [make_log("0xaa", 0), make_log("0xbb", 1)]
    return (
        FakeNode(block=100, balances=balances, call_results=calls, logs=logs),
        FakeNode(block=100, balances=balances, call_results=calls, logs=logs),
    )


@pytest.fixture
def clients(node_pair: Tuple[FakeNode, FakeNode]) -> Tuple[RpcClient, RpcClient]:
    """
    Unconnected clients for `node_pair`; use them as async context managers.
    """
    primary_node, reference_node = node_pair
    return (
        RpcClient(
            "http://primary.test",
            Side.PRIMARY,
            retry_attempts=1,
            transport=primary_node.transport,
        ),
        RpcClient(
            "http://reference.test",
            Side.REFERENCE,
            retry_attempts=1,
            transport=reference_node.transport,
        ),
    )
