"""
Batch check: one JSON-RPC batch of balance reads sent to both backends.

Two independent properties are measured per side:
- ordering: response position i must carry correlation id i + 1
- values: ids answered by both sides are compared, tolerating up to 10% of
  disagreements (partial throttling of large batches is expected)

A side whose whole batch failed leaves the batch "not compared": errors are
recorded, `matched` stays None and no mismatch is raised.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from rpc_parity.checks.abstract import (
    AbstractComparisonCheck,
    CheckContext,
    CheckOutcome,
    PendingMismatch,
    error_record,
    guarded_batch,
)
from rpc_parity.comparator import (
    batch_ordered,
    canonical_quantity,
    compare_batch,
    estimate_batch_speedup,
)
from rpc_parity.config import get_settings
from rpc_parity.domain.models import BatchMetrics, RequestKind, Side
from rpc_parity.infrastructure.rpc_client import BatchResult, RpcRequest


class BatchCheck(AbstractComparisonCheck):
    """
    Compare a batch of `eth_getBalance` requests cycling over the watched addresses.

    Parameters
    ----------
    addresses : sequence of str, optional
        Addresses to read. Defaults to the watched addresses.
    size : int, optional
        Number of requests in the batch. Defaults to settings.batch_size.
    """

    name: str = "batch"
    kind: RequestKind = RequestKind.BATCH
    method: str = "eth_getBalance"

    def __init__(
        self, addresses: Optional[Sequence[str]] = None, size: Optional[int] = None
    ) -> None:
        if addresses is None:
            addresses = get_settings().watch_address_list
        if size is None:
            size = get_settings().batch_size
        if not addresses:
            raise ValueError("batch check needs at least one address")
        if size < 1:
            raise ValueError(f"batch size must be positive, got {size}")
        self.addresses = list(addresses)
        self.size = size

    def _requests(self, ctx: CheckContext) -> List[RpcRequest]:
        return [
            (self.method, [self.addresses[index % len(self.addresses)], ctx.block_tag])
            for index in range(self.size)
        ]

    def _record_entry_errors(
        self, ctx: CheckContext, outcome: CheckOutcome, side: Side, result: BatchResult
    ) -> None:
        for entry in result.entries:
            if entry.error is not None:
                outcome.errors.append(
                    error_record(
                        ctx, side, self.kind, self.method, entry.error, f"batch id {entry.id}"
                    )
                )

    async def run(self, ctx: CheckContext) -> CheckOutcome:
        outcome = CheckOutcome()
        requests = self._requests(ctx)
        primary, reference = await asyncio.gather(
            guarded_batch(ctx.primary, requests),
            guarded_batch(ctx.reference, requests),
        )
        both_answered = self._record_errors(ctx, outcome, self.method, "batch", primary, reference)
        self._record_entry_errors(ctx, outcome, Side.PRIMARY, primary)
        self._record_entry_errors(ctx, outcome, Side.REFERENCE, reference)

        metrics: Dict[str, Any] = {
            "size": self.size,
            "primary_latency_ms": primary.latency_ms,
            "reference_latency_ms": reference.latency_ms,
            "primary_ordered": batch_ordered(primary.entries) if primary.ok else None,
            "reference_ordered": batch_ordered(reference.entries) if reference.ok else None,
            "speedup": estimate_batch_speedup(
                ctx.primary_latency_ms, ctx.reference_latency_ms, self.size, primary.latency_ms
            ),
        }
        if not both_answered:
            outcome.metrics = BatchMetrics(**metrics)
            return outcome

        try:
            verdict = compare_batch(primary.entries, reference.entries, canonical_quantity)
        except ValueError as exc:
            message = f"unparseable value: {exc}"
            outcome.errors.append(
                error_record(ctx, Side.PRIMARY, self.kind, self.method, message, "batch")
            )
            outcome.metrics = BatchMetrics(**metrics)
            return outcome

        outcome.metrics = BatchMetrics(
            **metrics,
            compared=verdict.compared,
            mismatched=verdict.mismatched,
            matched=verdict.matched,
        )
        if verdict.compared == 0:
            return outcome
        outcome.attempted += 1
        if verdict.matched:
            return outcome

        primary_values = {entry.id: entry.value for entry in primary.entries if entry.ok}
        reference_values = {entry.id: entry.value for entry in reference.entries if entry.ok}
        for entry_id in verdict.mismatched_ids:
            in_range = isinstance(entry_id, int) and 0 < entry_id <= len(requests)
            params = requests[entry_id - 1][1] if in_range else []
            outcome.mismatches.append(
                PendingMismatch(
                    kind=self.kind,
                    method=self.method,
                    params=tuple(params),
                    context=f"batch id {entry_id}: {params[0] if params else '?'}",
                    primary_raw=primary_values[entry_id],
                    reference_raw=reference_values[entry_id],
                    primary_value=canonical_quantity(primary_values[entry_id]),
                    reference_value=canonical_quantity(reference_values[entry_id]),
                )
            )
        return outcome


__all__ = ["BatchCheck"]
