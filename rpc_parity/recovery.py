"""
Mismatch re-verification for the RPC parity monitor.

A detected mismatch is re-checked once, after a fixed delay, by querying the
reference backend again and comparing its fresh answer with the ORIGINAL
primary answer:
- equal: recovered, the reference served a transient stale/incorrect read
- different, or the re-query failed: persistent, a possible primary defect

Re-checks run as detached asyncio tasks registered by mismatch id, so the
sampler never waits for them, shutdown can drain or cancel them, and tests can
enumerate them. The registry is bounded; once full, new mismatches are left
pending instead of queueing more work.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from rpc_parity.checks.abstract import PendingMismatch, guarded_call
from rpc_parity.comparator import compare_for_kind
from rpc_parity.domain.models import RecoveryRecord, RequestKind
from rpc_parity.infrastructure.record_store import RecordStore
from rpc_parity.infrastructure.rpc_client import RpcClient
from rpc_parity.utils.clock import Clock, SystemClock, iso_from_ms
from rpc_parity.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class RecheckContext:
    """
    Everything needed to repeat one comparison, captured at detection time.
    """

    mismatch_id: str
    kind: RequestKind
    method: str
    params: Tuple[Any, ...]
    block: int
    context: str
    original_primary: Any
    original_reference: Any
    detected_at_ms: int

    @classmethod
    def from_pending(
        cls, mismatch_id: str, pending: PendingMismatch, block: int, detected_at_ms: int
    ) -> "RecheckContext":
        return cls(
            mismatch_id=mismatch_id,
            kind=pending.kind,
            method=pending.method,
            params=pending.params,
            block=block,
            context=pending.context,
            original_primary=pending.primary_raw,
            original_reference=pending.reference_raw,
            detected_at_ms=detected_at_ms,
        )


class RecoveryScheduler:
    """
    Owns the delayed re-check tasks.

    Parameters
    ----------
    reference : RpcClient
        Client for the reference backend; the primary is never re-queried.
    store : RecordStore
        Destination of recovery records.
    clock : Clock, optional
        Clock used for the delay and record timestamps.
    delay_seconds : float
        Wait between detection and re-query.
    max_in_flight : int
        Maximum number of pending re-checks.
    strict_logs : bool
        Strict log-set comparison for log-query re-checks.
    """

    def __init__(
        self,
        reference: RpcClient,
        store: RecordStore,
        clock: Optional[Clock] = None,
        delay_seconds: float = 5.0,
        max_in_flight: int = 256,
        strict_logs: bool = False,
    ) -> None:
        self._reference = reference
        self._store = store
        self._clock = clock or SystemClock()
        self.delay_seconds = delay_seconds
        self.max_in_flight = max_in_flight
        self.strict_logs = strict_logs
        self.refused = 0
        self._tasks: Dict[str, asyncio.Task] = {}

    def in_flight(self) -> List[str]:
        """Mismatch ids whose re-check has not completed yet."""
        return list(self._tasks)

    def schedule(self, ctx: RecheckContext) -> bool:
        """
        Register a re-check for `ctx` and return immediately.

        Returns False when the mismatch is already scheduled or the registry is full.
        """
        if ctx.mismatch_id in self._tasks:
            return False
        if len(self._tasks) >= self.max_in_flight:
            self.refused += 1
            log.warning(
                f"[RECHECK REFUSED] {ctx.mismatch_id}: {len(self._tasks)} re-checks in flight",
                extra={"mismatch_id": ctx.mismatch_id, "in_flight": len(self._tasks)},
            )
            return False

        task = asyncio.get_running_loop().create_task(
            self._delayed_recheck(ctx), name=f"recheck-{ctx.mismatch_id}"
        )
        self._tasks[ctx.mismatch_id] = task
        task.add_done_callback(
            lambda _, mismatch_id=ctx.mismatch_id: self._tasks.pop(mismatch_id, None)
        )
        return True

    async def _delayed_recheck(self, ctx: RecheckContext) -> None:
        await self._clock.sleep(self.delay_seconds)
        try:
            await self.recheck(ctx)
        except Exception:  # noqa: BLE001 - intentional broad catch to record failures
            log.exception(
                f"[RECHECK FAILED] {ctx.mismatch_id}", extra={"mismatch_id": ctx.mismatch_id}
            )

    async def recheck(self, ctx: RecheckContext) -> RecoveryRecord:
        """
        Re-query the reference now, classify, and append the recovery record.
        """
        result = await guarded_call(self._reference, ctx.method, list(ctx.params))
        now = self._clock.now_ms()
        if not result.ok:
            record = RecoveryRecord(
                mismatch_id=ctx.mismatch_id,
                timestamp=now,
                iso_time=iso_from_ms(now),
                recovered=False,
                error=str(result.error),
            )
        else:
            try:
                verdict = compare_for_kind(
                    ctx.kind, ctx.method, ctx.original_primary, result.value, self.strict_logs
                )
            except (AttributeError, ValueError) as exc:
                record = RecoveryRecord(
                    mismatch_id=ctx.mismatch_id,
                    timestamp=now,
                    iso_time=iso_from_ms(now),
                    recovered=False,
                    error=f"unparseable reference value: {exc}",
                )
            else:
                record = RecoveryRecord(
                    mismatch_id=ctx.mismatch_id,
                    timestamp=now,
                    iso_time=iso_from_ms(now),
                    recovered=verdict.matched,
                    reference_value=verdict.reference,
                )

        self._store.append(record)
        status = "RECOVERED" if record.recovered else "PERSISTENT"
        log.log(
            logging.INFO if record.recovered else logging.WARNING,
            f"[{status}] {ctx.mismatch_id} {ctx.kind.value} {ctx.context} at block {ctx.block}",
            extra={
                "mismatch_id": ctx.mismatch_id,
                "recovered": record.recovered,
                "reference_value": record.reference_value,
                "error": record.error,
            },
        )
        return record

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding re-checks to finish (or `timeout` to pass)."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)

    async def cancel_all(self) -> int:
        """Cancel outstanding re-checks; their mismatches stay pending."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    async def shutdown(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        if drain:
            await self.drain(timeout)
        abandoned = await self.cancel_all()
        if abandoned:
            log.warning(
                f"[RECHECK ABANDONED] {abandoned} re-check(s) cancelled at shutdown",
                extra={"abandoned": abandoned},
            )


__all__ = ["RecheckContext", "RecoveryScheduler"]
