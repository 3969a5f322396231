from __future__ import annotations

import pytest

from rpc_parity.checks import BalanceCheck, BatchCheck, CallCheck, LogsCheck, build_checks
from rpc_parity.checks.abstract import CheckContext
from rpc_parity.domain.models import BatchMetrics, LogMetrics, RequestKind, Side

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
ADDRESSES = [WETH, USDC]
BLOCK = 100
NOW_MS = 1_700_000_000_000


def _ctx(primary, reference, **latencies) -> CheckContext:
    return CheckContext(
        primary=primary, reference=reference, block=BLOCK, timestamp_ms=NOW_MS, **latencies
    )


class TestBalanceCheck:
    @pytest.mark.asyncio
    async def test_agreeing_backends(self, clients, node_pair):
        async with clients[0] as primary, clients[1] as reference:
            outcome = await BalanceCheck(ADDRESSES).run(_ctx(primary, reference))

        assert outcome.attempted == 2
        assert outcome.matched
        assert outcome.errors == []
        # every read targets the comparable block
        for node in node_pair:
            assert {tuple(params) for _, params in node.requests} == {
                (WETH, hex(BLOCK)),
                (USDC, hex(BLOCK)),
            }

    @pytest.mark.asyncio
    async def test_disagreement_becomes_pending_mismatch(self, clients, node_pair):
        primary_node, _ = node_pair
        primary_node.balances[USDC] = 1
        async with clients[0] as primary, clients[1] as reference:
            outcome = await BalanceCheck(ADDRESSES).run(_ctx(primary, reference))

        assert outcome.attempted == 2
        [pending] = outcome.mismatches
        assert pending.kind is RequestKind.VALUE_READ
        assert pending.context == USDC
        assert pending.params == (USDC, hex(BLOCK))
        assert pending.primary_value == "1"
        assert pending.reference_value == str(5 * 10**17)

    @pytest.mark.asyncio
    async def test_backend_error_is_not_a_mismatch(self, clients, node_pair):
        _, reference_node = node_pair
        reference_node.failing_methods.add("eth_getBalance")
        async with clients[0] as primary, clients[1] as reference:
            outcome = await BalanceCheck(ADDRESSES).run(_ctx(primary, reference))

        assert outcome.matched
        assert outcome.attempted == 0
        assert len(outcome.errors) == 2
        assert {error.side for error in outcome.errors} == {Side.REFERENCE}
        assert all(error.block == BLOCK for error in outcome.errors)

    @pytest.mark.asyncio
    async def test_unreachable_primary_is_recorded_as_error(self, clients, node_pair):
        primary_node, _ = node_pair
        primary_node.down = True
        async with clients[0] as primary, clients[1] as reference:
            outcome = await BalanceCheck([WETH]).run(_ctx(primary, reference))

        [error] = outcome.errors
        assert error.side is Side.PRIMARY
        assert "transport failure" in error.message


class TestCallCheck:
    @pytest.mark.asyncio
    async def test_return_data_compared_exactly(self, clients, node_pair):
        primary_node, _ = node_pair
        primary_node.call_results[WETH] = "0x01"
        async with clients[0] as primary, clients[1] as reference:
            outcome = await CallCheck(ADDRESSES).run(_ctx(primary, reference))

        assert outcome.attempted == 2
        [pending] = outcome.mismatches
        assert pending.kind is RequestKind.CALL
        assert pending.context == f"{WETH}:0x18160ddd"
        assert pending.params[0] == {"to": WETH, "data": "0x18160ddd"}


class TestLogsCheck:
    @pytest.mark.asyncio
    async def test_equal_sets_match(self, clients):
        async with clients[0] as primary, clients[1] as reference:
            outcome = await LogsCheck(WETH, strict=False).run(_ctx(primary, reference))

        assert outcome.attempted == 1
        assert outcome.matched
        assert isinstance(outcome.metrics, LogMetrics)
        assert outcome.metrics.matched is True
        assert outcome.metrics.primary_count == 2

    @pytest.mark.asyncio
    async def test_missing_log_in_primary(self, clients, node_pair, log_entry):
        _, reference_node = node_pair
        reference_node.logs.append(log_entry("0xcc", 2))
        async with clients[0] as primary, clients[1] as reference:
            outcome = await LogsCheck(WETH, strict=False).run(_ctx(primary, reference))

        [pending] = outcome.mismatches
        assert pending.kind is RequestKind.LOG_QUERY
        assert "count 2 != 3" in pending.context
        assert outcome.metrics.matched is False
        assert outcome.metrics.reference_count == 3

    @pytest.mark.asyncio
    async def test_non_list_result_is_an_error(self, clients, node_pair):
        primary_node, _ = node_pair
        primary_node._answer = lambda request: {"jsonrpc": "2.0", "id": request["id"], "result": {}}
        async with clients[0] as primary, clients[1] as reference:
            outcome = await LogsCheck(WETH, strict=False).run(_ctx(primary, reference))

        assert outcome.attempted == 0
        [error] = outcome.errors
        assert error.side is Side.PRIMARY
        assert "expected list" in error.message
        assert outcome.metrics.matched is None


class TestBatchCheck:
    @pytest.mark.asyncio
    async def test_agreeing_ordered_batch(self, clients):
        async with clients[0] as primary, clients[1] as reference:
            ctx = _ctx(primary, reference, primary_latency_ms=10.0, reference_latency_ms=30.0)
            outcome = await BatchCheck(ADDRESSES, size=4).run(ctx)

        metrics = outcome.metrics
        assert isinstance(metrics, BatchMetrics)
        assert metrics.size == 4
        assert metrics.compared == 4
        assert metrics.matched is True
        assert metrics.primary_ordered is True
        assert metrics.reference_ordered is True
        assert metrics.speedup is not None
        assert outcome.attempted == 1

    @pytest.mark.asyncio
    async def test_ordering_is_measured_independently_of_values(self, clients, node_pair):
        primary_node, _ = node_pair
        primary_node.reverse_batches = True
        async with clients[0] as primary, clients[1] as reference:
            outcome = await BatchCheck(ADDRESSES, size=4).run(_ctx(primary, reference))

        assert outcome.metrics.primary_ordered is False
        assert outcome.metrics.reference_ordered is True
        assert outcome.metrics.matched is True
        assert outcome.mismatches == []

    @pytest.mark.asyncio
    async def test_disagreement_beyond_tolerance_flags_each_id(self, clients, node_pair):
        primary_node, _ = node_pair
        primary_node.balances[WETH] = 1
        async with clients[0] as primary, clients[1] as reference:
            outcome = await BatchCheck(ADDRESSES, size=4).run(_ctx(primary, reference))

        # ids 1 and 3 read WETH
        assert outcome.metrics.mismatched == 2
        assert outcome.metrics.matched is False
        assert [p.context for p in outcome.mismatches] == [
            f"batch id 1: {WETH}",
            f"batch id 3: {WETH}",
        ]
        assert all(p.params == (WETH, hex(BLOCK)) for p in outcome.mismatches)

    @pytest.mark.asyncio
    async def test_whole_batch_failure_is_not_compared(self, clients, node_pair):
        _, reference_node = node_pair
        reference_node.down = True
        async with clients[0] as primary, clients[1] as reference:
            outcome = await BatchCheck(ADDRESSES, size=4).run(_ctx(primary, reference))

        assert outcome.metrics.matched is None
        assert outcome.metrics.reference_ordered is None
        assert outcome.metrics.primary_ordered is True
        assert outcome.mismatches == []
        assert outcome.attempted == 0
        assert [error.side for error in outcome.errors] == [Side.REFERENCE]


def test_registry_builds_checks_in_configured_order(test_settings):
    checks = build_checks(["batch", "balance"], test_settings)
    assert [check.name for check in checks] == ["batch", "balance"]
    assert checks[0].size == test_settings.batch_size


def test_registry_rejects_unknown_check(test_settings):
    with pytest.raises(ValueError, match="Unknown check"):
        build_checks(["balance", "nope"], test_settings)


def test_registry_configures_checks_from_given_settings(test_settings, monkeypatch):
    monkeypatch.setenv("BATCH_SIZE", "99")
    monkeypatch.setenv("LOGS_STRICT", "false")
    settings = test_settings.model_copy(update={"logs_strict": True, "watch_addresses": USDC})

    batch, logs = build_checks(["batch", "logs"], settings)

    assert batch.size == test_settings.batch_size
    assert batch.addresses == [USDC]
    assert logs.address == USDC
    assert logs.strict is True


def test_registry_rejects_empty_watch_addresses(test_settings):
    settings = test_settings.model_copy(update={"watch_addresses": " , "})
    with pytest.raises(ValueError, match="WATCH_ADDRESSES is empty"):
        build_checks(["balance", "batch"], settings)


@pytest.mark.parametrize(
    "factory",
    [lambda: BatchCheck([], size=4), lambda: BatchCheck(ADDRESSES, size=0), lambda: LogsCheck("")],
)
def test_checks_reject_unusable_configuration(factory):
    with pytest.raises(ValueError):
        factory()
