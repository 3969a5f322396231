"""
Log-query check: ERC-20 Transfer events of one contract at the comparable block.

Result sets are compared by cardinality first and then by the
(transactionHash, logIndex) keys; see `comparator.compare_logs`.
"""

from __future__ import annotations

from typing import Optional

from rpc_parity.checks.abstract import (
    AbstractComparisonCheck,
    CheckContext,
    CheckOutcome,
    PendingMismatch,
    error_record,
)
from rpc_parity.comparator import canonical_logs, compare_logs
from rpc_parity.config import get_settings
from rpc_parity.domain.models import LogMetrics, RequestKind, Side
from rpc_parity.infrastructure.rpc_client import BackendError, RpcResult

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def _as_log_list(result: RpcResult) -> RpcResult:
    if result.ok and not isinstance(result.value, list):
        return RpcResult(
            error=BackendError(
                f"eth_getLogs returned {type(result.value).__name__}, expected list"
            ),
            latency_ms=result.latency_ms,
        )
    return result


class LogsCheck(AbstractComparisonCheck):
    """
    Compare `eth_getLogs` for a single contract and topic.

    Parameters
    ----------
    address : str, optional
        Contract emitting the logs. Defaults to the first watched address.
    topic : str
        topic0 filter.
    strict : bool, optional
        Also fail on entries only the primary returned. Defaults to settings.
    """

    name: str = "logs"
    kind: RequestKind = RequestKind.LOG_QUERY
    method: str = "eth_getLogs"

    def __init__(
        self,
        address: Optional[str] = None,
        topic: str = TRANSFER_TOPIC,
        strict: Optional[bool] = None,
    ) -> None:
        if address is None or strict is None:
            settings = get_settings()
            if address is None:
                address = next(iter(settings.watch_address_list), None)
            if strict is None:
                strict = settings.logs_strict
        if not address:
            raise ValueError("logs check needs a contract address")
        self.address = address
        self.topic = topic
        self.strict = strict

    async def run(self, ctx: CheckContext) -> CheckOutcome:
        outcome = CheckOutcome()
        context = f"{self.address}:{self.topic}"
        params = [
            {
                "address": self.address,
                "topics": [self.topic],
                "fromBlock": ctx.block_tag,
                "toBlock": ctx.block_tag,
            }
        ]
        primary, reference = await self._paired_call(ctx, self.method, params)
        primary, reference = _as_log_list(primary), _as_log_list(reference)

        if not self._record_errors(ctx, outcome, self.method, context, primary, reference):
            outcome.metrics = LogMetrics(
                primary_latency_ms=primary.latency_ms,
                reference_latency_ms=reference.latency_ms,
                primary_count=len(primary.value) if primary.ok else None,
                reference_count=len(reference.value) if reference.ok else None,
            )
            return outcome

        try:
            verdict = compare_logs(primary.value, reference.value, strict=self.strict)
        except (AttributeError, ValueError) as exc:
            message = f"malformed log entry: {exc}"
            outcome.errors.append(
                error_record(ctx, Side.PRIMARY, self.kind, self.method, message, context)
            )
            return outcome
        outcome.attempted += 1
        outcome.metrics = LogMetrics(
            primary_latency_ms=primary.latency_ms,
            reference_latency_ms=reference.latency_ms,
            matched=verdict.matched,
            primary_count=verdict.primary_count,
            reference_count=verdict.reference_count,
        )
        if not verdict.matched:
            outcome.mismatches.append(
                PendingMismatch(
                    kind=self.kind,
                    method=self.method,
                    params=tuple(params),
                    context=f"{context} ({verdict.reason})",
                    primary_raw=primary.value,
                    reference_raw=reference.value,
                    primary_value=canonical_logs(primary.value),
                    reference_value=canonical_logs(reference.value),
                )
            )
        return outcome


__all__ = ["LogsCheck", "TRANSFER_TOPIC"]
