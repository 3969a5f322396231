"""
Sampler loop for the RPC parity monitor.

One iteration:
    fetch both heights -> pick the comparable block (the lower height) -> run the
    configured checks -> persist errors and mismatches, schedule re-checks ->
    emit one Sample -> sleep

The loop is supervisory: a failed iteration is logged, followed by a longer
backoff sleep, and the loop carries on until `stop()` is called.

Usage (example from CLI):
    from rpc_parity.sampler import run_sampler

    asyncio.run(run_sampler(settings, max_iterations=100))
"""

from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import httpx

from rpc_parity.checks import ComparisonCheck, build_checks
from rpc_parity.checks.abstract import CheckContext, CheckOutcome, PendingMismatch
from rpc_parity.config import Settings, get_settings
from rpc_parity.domain.models import (
    BatchMetrics,
    ErrorRecord,
    LogMetrics,
    MismatchRecord,
    RequestKind,
    Sample,
    Side,
)
from rpc_parity.infrastructure.record_store import RecordStore
from rpc_parity.infrastructure.rpc_client import (
    BackendError,
    RpcClient,
    RpcResult,
    RpcTransportError,
    build_clients,
)
from rpc_parity.recovery import RecheckContext, RecoveryScheduler
from rpc_parity.utils.clock import Clock, SystemClock, iso_from_ms
from rpc_parity.utils.logging import get_logger
from rpc_parity.utils.memory import MemoryProbe

log = get_logger(__name__)

_READS_LABEL = {True: "ok", False: "MISMATCH", None: "not compared"}


class IterationError(Exception):
    """An iteration could not complete its own bookkeeping (e.g. no block height)."""


@dataclass
class BlockTracker:
    """Last observed height of one side and when it last changed."""

    last_height: Optional[int] = None
    last_change_ms: Optional[int] = None

    def observe(self, height: int, now_ms: int) -> Tuple[int, Optional[int]]:
        """
        Record a new observation and return (jump, ms since the previous change).

        The delta is only reported when the height advanced.
        """
        jump = 0
        delta_ms: Optional[int] = None
        if self.last_height is not None and self.last_change_ms is not None:
            jump = height - self.last_height
            if jump > 0:
                delta_ms = now_ms - self.last_change_ms
        if height != self.last_height:
            self.last_height = height
            self.last_change_ms = now_ms
        return jump, delta_ms


def _highest_mismatch_number(store: RecordStore) -> int:
    """Largest `M<n>` id already in the mismatch stream (0 when there is none)."""
    highest = 0
    for record in store.read_mismatches().records:
        digits = record.mismatch_id[1:]
        if record.mismatch_id.startswith("M") and digits.isdigit():
            highest = max(highest, int(digits))
    return highest


async def _guarded_block_number(client: RpcClient) -> RpcResult:
    try:
        return await client.block_number()
    except RpcTransportError as exc:
        return RpcResult(error=BackendError(exc.message))


class Sampler:
    """
    Drives the comparison loop.

    Owns all loop-mutable state: the mismatch id sequence, the per-side block
    trackers and the stop signal.

    Parameters
    ----------
    primary, reference : RpcClient
        Connected clients for the two backends.
    store : RecordStore
        Destination of every emitted record.
    checks : sequence of ComparisonCheck
        Checks run in order each iteration.
    recovery : RecoveryScheduler, optional
        Receives every detected mismatch. Without it mismatches stay pending.
    clock : Clock, optional
        Source of time and sleeps.
    memory_probe : MemoryProbe, optional
        Attaches memory snapshots to samples.
    settings : Settings, optional
        Interval, backoff and shutdown behaviour.
    """

    def __init__(
        self,
        primary: RpcClient,
        reference: RpcClient,
        store: RecordStore,
        checks: Sequence[ComparisonCheck],
        recovery: Optional[RecoveryScheduler] = None,
        clock: Optional[Clock] = None,
        memory_probe: Optional[MemoryProbe] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.primary = primary
        self.reference = reference
        self.store = store
        self.checks = list(checks)
        self.recovery = recovery
        self.clock = clock or SystemClock()
        self.memory_probe = memory_probe
        self.settings = settings or get_settings()
        self.iterations = 0
        self.failed_iterations = 0
        # Ids stay unique across runs that share a data file.
        self._mismatch_seq = _highest_mismatch_number(store)
        if self._mismatch_seq:
            log.info(
                f"[MISMATCH IDS] continuing after M{self._mismatch_seq}",
                extra={"mismatch_seq": self._mismatch_seq},
            )
        self._primary_tracker = BlockTracker()
        self._reference_tracker = BlockTracker()
        self._stop_event = asyncio.Event()

    def stop(self) -> None:
        """Ask the loop to exit after the current iteration."""
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def _next_mismatch_id(self) -> str:
        self._mismatch_seq += 1
        return f"M{self._mismatch_seq}"

    async def _fetch_heights(self, now_ms: int) -> Tuple[RpcResult, RpcResult]:
        primary, reference = await asyncio.gather(
            _guarded_block_number(self.primary),
            _guarded_block_number(self.reference),
        )
        failed = [
            (side, result)
            for side, result in ((Side.PRIMARY, primary), (Side.REFERENCE, reference))
            if result.error is not None
        ]
        for side, result in failed:
            self.store.append(
                ErrorRecord(
                    timestamp=now_ms,
                    iso_time=iso_from_ms(now_ms),
                    kind=RequestKind.BLOCK_NUMBER,
                    side=side,
                    method="eth_blockNumber",
                    message=str(result.error),
                )
            )
        if failed:
            detail = "; ".join(f"{side.value}: {result.error}" for side, result in failed)
            raise IterationError(f"block height unavailable ({detail})")
        return primary, reference

    def _record_mismatch(self, pending: PendingMismatch, block: int, now_ms: int) -> MismatchRecord:
        mismatch_id = self._next_mismatch_id()
        record = MismatchRecord(
            mismatch_id=mismatch_id,
            timestamp=now_ms,
            iso_time=iso_from_ms(now_ms),
            block=block,
            kind=pending.kind,
            method=pending.method,
            context=pending.context,
            primary_value=pending.primary_value,
            reference_value=pending.reference_value,
        )
        self.store.append(record)
        log.warning(
            f"[MISMATCH] {mismatch_id} {pending.kind.value} {pending.context} at block {block}: "
            f"primary={pending.primary_value} reference={pending.reference_value}",
            extra={"mismatch_id": mismatch_id, "block": block, "kind": pending.kind.value},
        )
        if self.recovery is not None:
            self.recovery.schedule(RecheckContext.from_pending(mismatch_id, pending, block, now_ms))
        return record

    async def run_once(self) -> Sample:
        """
        Run one iteration and return the emitted sample.

        Raises
        ------
        IterationError
            If either block height could not be read; no sample is emitted.
        """
        now_ms = self.clock.now_ms()
        primary_height, reference_height = await self._fetch_heights(now_ms)
        primary_block = primary_height.value
        reference_block = reference_height.value
        block = min(primary_block, reference_block)

        ctx = CheckContext(
            primary=self.primary,
            reference=self.reference,
            block=block,
            timestamp_ms=now_ms,
            primary_latency_ms=primary_height.latency_ms,
            reference_latency_ms=reference_height.latency_ms,
        )
        outcomes: List[CheckOutcome] = []
        for check in self.checks:
            outcomes.append(await check.run(ctx))

        primary_errors = reference_errors = 0
        for outcome in outcomes:
            for error in outcome.errors:
                self.store.append(error)
                if error.side is Side.PRIMARY:
                    primary_errors += 1
                else:
                    reference_errors += 1
        for outcome in outcomes:
            for pending in outcome.mismatches:
                self._record_mismatch(pending, block, now_ms)

        primary_jump, primary_delta = self._primary_tracker.observe(primary_block, now_ms)
        reference_jump, reference_delta = self._reference_tracker.observe(reference_block, now_ms)
        batch = next((o.metrics for o in outcomes if isinstance(o.metrics, BatchMetrics)), None)
        logs = next((o.metrics for o in outcomes if isinstance(o.metrics, LogMetrics)), None)
        read_count = sum(outcome.attempted for outcome in outcomes)

        sample = Sample(
            timestamp=now_ms,
            iso_time=iso_from_ms(now_ms),
            primary_block=primary_block,
            reference_block=reference_block,
            drift=primary_block - reference_block,
            primary_latency_ms=round(primary_height.latency_ms or 0.0, 2),
            reference_latency_ms=round(reference_height.latency_ms or 0.0, 2),
            reads_matched=None if read_count == 0 else all(o.matched for o in outcomes),
            read_count=read_count,
            primary_errors=primary_errors,
            reference_errors=reference_errors,
            primary_block_jump=primary_jump,
            reference_block_jump=reference_jump,
            primary_block_delta_ms=primary_delta,
            reference_block_delta_ms=reference_delta,
            batch=batch,
            memory=self.memory_probe.maybe_snapshot() if self.memory_probe else None,
            logs=logs,
        )
        self.store.append(sample)
        self.iterations += 1
        log.debug(
            f"[SAMPLE {self.iterations}] primary={primary_block} reference={reference_block} "
            f"drift={sample.drift} reads={_READS_LABEL[sample.reads_matched]} "
            f"primary={sample.primary_latency_ms}ms reference={sample.reference_latency_ms}ms",
            extra={"block": block, "drift": sample.drift},
        )
        return sample

    async def _sleep(self, seconds: float) -> None:
        """Sleep on the clock, returning early when stop() is called."""
        sleeper = asyncio.ensure_future(self.clock.sleep(seconds))
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                task.cancel()
            await asyncio.gather(sleeper, stopper, return_exceptions=True)

    async def run(self, max_iterations: Optional[int] = None) -> int:
        """
        Loop until stop() is called (or `max_iterations` iterations ran).

        Returns the number of iterations attempted, failed ones included.
        """
        log.info(
            "[SAMPLER START]",
            extra={
                "checks": [check.name for check in self.checks],
                "data_file": str(self.store.paths["sample"]),
            },
        )
        if self.memory_probe is not None:
            self.memory_probe.start()
        attempted = 0
        try:
            while not self.stopping:
                try:
                    await self.run_once()
                    delay = self.settings.sample_interval_seconds
                except IterationError as exc:
                    self.failed_iterations += 1
                    delay = self.settings.error_backoff_seconds
                    log.warning(f"[ITERATION FAILED] {exc}", extra={"backoff": delay})
                except Exception:  # noqa: BLE001 - intentional broad catch to keep the loop alive
                    self.failed_iterations += 1
                    log.exception("[ITERATION FAILED] unexpected error")
                    delay = self.settings.error_backoff_seconds
                attempted += 1
                if max_iterations is not None and attempted >= max_iterations:
                    break
                await self._sleep(delay)
        finally:
            if self.recovery is not None:
                grace = self.settings.recovery_delay_seconds + self.settings.rpc_timeout_seconds
                await self.recovery.shutdown(drain=self.settings.drain_on_stop, timeout=grace)
            if self.memory_probe is not None:
                self.memory_probe.stop()
            log.info(
                f"[SAMPLER STOP] {attempted} iteration(s), {self.failed_iterations} failed",
                extra={"iterations": attempted, "failed": self.failed_iterations},
            )
        return attempted


async def run_sampler(
    settings: Optional[Settings] = None,
    max_iterations: Optional[int] = None,
    clock: Optional[Clock] = None,
    primary_transport: Optional[httpx.AsyncBaseTransport] = None,
    reference_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """
    Wire clients, store, checks, recovery and memory probe from settings and run.
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()
    primary, reference = build_clients(settings, primary_transport, reference_transport)
    store = RecordStore(settings.data_file)
    checks = build_checks(settings.check_names, settings)

    async with primary, reference:
        recovery = RecoveryScheduler(
            reference,
            store,
            clock=clock,
            delay_seconds=settings.recovery_delay_seconds,
            max_in_flight=settings.recovery_max_in_flight,
            strict_logs=settings.logs_strict,
        )
        sampler = Sampler(
            primary,
            reference,
            store,
            checks,
            recovery=recovery,
            clock=clock,
            memory_probe=MemoryProbe(every=settings.memory_sample_every),
            settings=settings,
        )
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGTERM, sampler.stop)
        except (NotImplementedError, RuntimeError):
            pass  # signal handlers unsupported here (Windows, non-main thread)
        try:
            return await sampler.run(max_iterations=max_iterations)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGTERM)
            except (NotImplementedError, RuntimeError):
                pass


__all__ = ["BlockTracker", "IterationError", "Sampler", "run_sampler"]
