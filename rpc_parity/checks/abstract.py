"""
Abstract check interfaces and result contracts for the RPC parity monitor.

A check issues the same logical read against both backends at the comparable
block, applies the equivalence rule of its request kind, and reports a
`CheckOutcome`. Concrete checks (balance, call, logs, batch) implement the
ComparisonCheck protocol so the sampler can run them uniformly.
"""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

from rpc_parity.comparator import Canonicalizer, compare_values
from rpc_parity.domain.models import BatchMetrics, ErrorRecord, LogMetrics, RequestKind, Side
from rpc_parity.infrastructure.rpc_client import (
    BackendError,
    BatchResult,
    RpcClient,
    RpcRequest,
    RpcResult,
    RpcTransportError,
)
from rpc_parity.utils.clock import iso_from_ms


@dataclass(frozen=True)
class CheckContext:
    """Everything a check needs for one iteration."""

    primary: RpcClient
    reference: RpcClient
    block: int
    timestamp_ms: int
    primary_latency_ms: Optional[float] = None
    reference_latency_ms: Optional[float] = None

    @property
    def block_tag(self) -> str:
        return hex(self.block)


@dataclass(frozen=True)
class PendingMismatch:
    """
    A detected disagreement, before the sampler assigns it an id.

    Carries the raw answers so the recovery re-check can apply the same rule.
    """

    kind: RequestKind
    method: str
    params: Tuple[Any, ...]
    context: str
    primary_raw: Any
    reference_raw: Any
    primary_value: Optional[str]
    reference_value: Optional[str]


@dataclass
class CheckOutcome:
    """
    Result of one check for one iteration.

    `attempted` counts comparisons where both sides answered; comparisons lost
    to backend errors appear only in `errors`.
    """

    attempted: int = 0
    mismatches: List[PendingMismatch] = field(default_factory=list)
    errors: List[ErrorRecord] = field(default_factory=list)
    metrics: Union[BatchMetrics, LogMetrics, None] = None

    @property
    def matched(self) -> bool:
        return not self.mismatches


@runtime_checkable
class ComparisonCheck(Protocol):
    """
    Common interface all checks must implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    kind : RequestKind
        Request family the check compares.
    """

    name: str
    kind: RequestKind

    async def run(self, ctx: CheckContext) -> CheckOutcome:
        """
        Run the paired reads at `ctx.block` and compare them.
        """
        ...


async def guarded_call(client: RpcClient, method: str, params: Sequence[Any]) -> RpcResult:
    """`client.call` with transport failures folded into a backend error."""
    try:
        return await client.call(method, params)
    except RpcTransportError as exc:
        return RpcResult(error=BackendError(exc.message))


async def guarded_batch(client: RpcClient, requests: Sequence[RpcRequest]) -> BatchResult:
    try:
        return await client.batch_call(requests)
    except RpcTransportError as exc:
        return BatchResult(error=BackendError(exc.message))


def error_record(
    ctx: CheckContext,
    side: Side,
    kind: RequestKind,
    method: str,
    error: Union[BackendError, str],
    context: Optional[str] = None,
) -> ErrorRecord:
    return ErrorRecord(
        timestamp=ctx.timestamp_ms,
        iso_time=iso_from_ms(ctx.timestamp_ms),
        block=ctx.block,
        kind=kind,
        side=side,
        method=method,
        context=context,
        message=str(error),
    )


def _parses(canonicalize: Canonicalizer, value: Any) -> bool:
    try:
        canonicalize(value)
    except ValueError:
        return False
    return True


class AbstractComparisonCheck(abc.ABC):
    """
    ABC helper for class-based checks.

    Subclasses set `name` and `kind` and implement `run`; `_compare_pair` covers
    the common single-request value comparison.
    """

    name: str
    kind: RequestKind

    @abc.abstractmethod
    async def run(self, ctx: CheckContext) -> CheckOutcome:  # pragma: no cover - interface only
        """Run the check and return its outcome."""
        raise NotImplementedError

    async def _paired_call(
        self, ctx: CheckContext, method: str, params: Sequence[Any]
    ) -> Tuple[RpcResult, RpcResult]:
        primary, reference = await asyncio.gather(
            guarded_call(ctx.primary, method, params),
            guarded_call(ctx.reference, method, params),
        )
        return primary, reference

    def _record_errors(
        self,
        ctx: CheckContext,
        outcome: CheckOutcome,
        method: str,
        context: str,
        primary: Union[RpcResult, BatchResult],
        reference: Union[RpcResult, BatchResult],
    ) -> bool:
        """Append error records for failed sides; True when both sides answered."""
        for side, result in ((Side.PRIMARY, primary), (Side.REFERENCE, reference)):
            if result.error is not None:
                outcome.errors.append(
                    error_record(ctx, side, self.kind, method, result.error, context)
                )
        return primary.ok and reference.ok

    async def _compare_pair(
        self,
        ctx: CheckContext,
        outcome: CheckOutcome,
        method: str,
        params: Sequence[Any],
        context: str,
        canonicalize: Canonicalizer,
    ) -> None:
        primary, reference = await self._paired_call(ctx, method, params)
        if not self._record_errors(ctx, outcome, method, context, primary, reference):
            return
        try:
            verdict = compare_values(primary.value, reference.value, canonicalize)
        except ValueError as exc:
            side = Side.REFERENCE if _parses(canonicalize, primary.value) else Side.PRIMARY
            outcome.errors.append(
                error_record(ctx, side, self.kind, method, f"unparseable value: {exc}", context)
            )
            return
        outcome.attempted += 1
        if not verdict.matched:
            outcome.mismatches.append(
                PendingMismatch(
                    kind=self.kind,
                    method=method,
                    params=tuple(params),
                    context=context,
                    primary_raw=primary.value,
                    reference_raw=reference.value,
                    primary_value=verdict.primary,
                    reference_value=verdict.reference,
                )
            )


__all__ = [
    "AbstractComparisonCheck",
    "CheckContext",
    "CheckOutcome",
    "ComparisonCheck",
    "PendingMismatch",
    "error_record",
    "guarded_batch",
    "guarded_call",
]
