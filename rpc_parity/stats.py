"""
Rolling statistics over the accumulated record streams.

Everything here is a pure function of its inputs: the aggregator keeps no
incremental state and recomputes from the full sample list on every call.

Usage:
    from rpc_parity.stats import compute_stats, summarize_mismatches

    stats = compute_stats(samples)
    mismatch_stats = summarize_mismatches(mismatches, recoveries)
"""

from __future__ import annotations

import math
import statistics
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel

from rpc_parity.domain.models import MismatchRecord, RecoveryRecord, Sample

MEMORY_TREND_MIN_SAMPLES = 20
MEMORY_TREND_WINDOW = 0.1

_FROZEN = {"frozen": True}


class DriftStats(BaseModel):
    mean: Optional[float] = None
    stddev: Optional[float] = None
    min: Optional[int] = None
    max: Optional[int] = None
    p50: Optional[float] = None
    p90: Optional[float] = None
    p99: Optional[float] = None

    model_config = _FROZEN


class LatencyStats(BaseModel):
    primary_avg_ms: Optional[float] = None
    reference_avg_ms: Optional[float] = None

    model_config = _FROZEN


class BatchStats(BaseModel):
    avg_latency_ms: Optional[float] = None
    ordered_rate: Optional[float] = None
    match_rate: Optional[float] = None
    avg_speedup: Optional[float] = None

    model_config = _FROZEN


class MemoryStats(BaseModel):
    current_heap_mb: Optional[float] = None
    max_heap_mb: Optional[float] = None
    trend: Optional[float] = None

    model_config = _FROZEN


class BlockIntervalStats(BaseModel):
    primary_avg_ms: Optional[float] = None
    reference_avg_ms: Optional[float] = None

    model_config = _FROZEN


class SampleStats(BaseModel):
    """Aggregate view of a sample stream."""

    sample_count: int = 0
    drift: DriftStats = DriftStats()
    latency: LatencyStats = LatencyStats()
    speedup_ratio: Optional[float] = None
    pass_count: int = 0
    fail_count: int = 0
    not_compared_count: int = 0
    total_primary_errors: int = 0
    total_reference_errors: int = 0
    batch: BatchStats = BatchStats()
    memory: MemoryStats = MemoryStats()
    block_interval: BlockIntervalStats = BlockIntervalStats()

    model_config = _FROZEN


class MismatchStats(BaseModel):
    total: int = 0
    recovered: int = 0
    persistent: int = 0
    pending: int = 0

    model_config = _FROZEN


def percentile(sorted_values: Sequence[float], p: float) -> Optional[float]:
    """
    Percentile by linear interpolation between order statistics.

    Parameters
    ----------
    sorted_values : sequence of float
        Values in ascending order.
    p : float
        Fraction in [0, 1].

    Returns
    -------
    float or None
        None for an empty sequence.
    """
    if not sorted_values:
        return None
    index = (len(sorted_values) - 1) * p
    lo, hi = math.floor(index), math.ceil(index)
    if lo == hi:
        return sorted_values[lo]
    weight = index - lo
    return sorted_values[lo] * (1 - weight) + sorted_values[hi] * weight


def _mean(values: Sequence[float]) -> Optional[float]:
    return statistics.fmean(values) if values else None


def drift_stats(drifts: Iterable[int]) -> DriftStats:
    ordered = sorted(drifts)
    if not ordered:
        return DriftStats()
    return DriftStats(
        mean=statistics.fmean(ordered),
        stddev=statistics.pstdev(ordered),
        min=ordered[0],
        max=ordered[-1],
        p50=percentile(ordered, 0.5),
        p90=percentile(ordered, 0.9),
        p99=percentile(ordered, 0.99),
    )


def memory_trend(heap_values: Sequence[float]) -> Optional[float]:
    """
    Mean of the last 10% of heap readings minus the mean of the first 10%.

    Only reported once at least 20 readings exist; rounded to 2 decimals.
    """
    if len(heap_values) < MEMORY_TREND_MIN_SAMPLES:
        return None
    window = math.floor(len(heap_values) * MEMORY_TREND_WINDOW)
    first = statistics.fmean(heap_values[:window])
    last = statistics.fmean(heap_values[-window:])
    return round(last - first, 2)


def _speedup(primary_avg: Optional[float], reference_avg: Optional[float]) -> Optional[float]:
    if not primary_avg or not reference_avg:
        return None
    return reference_avg / primary_avg


def _batch_stats(samples: Sequence[Sample]) -> BatchStats:
    batches = [
        s.batch
        for s in samples
        if s.batch is not None and s.batch.primary_latency_ms is not None
    ]
    if not batches:
        return BatchStats()
    speedups = [b.speedup for b in batches if b.speedup is not None]
    return BatchStats(
        avg_latency_ms=statistics.fmean(b.primary_latency_ms for b in batches),
        ordered_rate=sum(1 for b in batches if b.primary_ordered) / len(batches),
        match_rate=sum(1 for b in batches if b.matched is True) / len(batches),
        avg_speedup=_mean(speedups),
    )


def _memory_stats(samples: Sequence[Sample]) -> MemoryStats:
    heap = [s.memory.heap_used_mb for s in samples if s.memory is not None]
    if not heap:
        return MemoryStats()
    return MemoryStats(current_heap_mb=heap[-1], max_heap_mb=max(heap), trend=memory_trend(heap))


def _block_interval_stats(samples: Sequence[Sample]) -> BlockIntervalStats:
    primary = [s.primary_block_delta_ms for s in samples if s.primary_block_delta_ms is not None]
    reference = [
        s.reference_block_delta_ms for s in samples if s.reference_block_delta_ms is not None
    ]
    return BlockIntervalStats(primary_avg_ms=_mean(primary), reference_avg_ms=_mean(reference))


def compute_stats(samples: Sequence[Sample]) -> SampleStats:
    """
    Aggregate a sample stream.

    Samples are consumed in the order given; callers sort by timestamp first
    when the memory trend and current heap value should follow wall time.
    """
    if not samples:
        return SampleStats()

    primary_avg = _mean([s.primary_latency_ms for s in samples])
    reference_avg = _mean([s.reference_latency_ms for s in samples])

    return SampleStats(
        sample_count=len(samples),
        drift=drift_stats(s.drift for s in samples),
        latency=LatencyStats(primary_avg_ms=primary_avg, reference_avg_ms=reference_avg),
        speedup_ratio=_speedup(primary_avg, reference_avg),
        pass_count=sum(1 for s in samples if s.reads_matched is True),
        fail_count=sum(1 for s in samples if s.reads_matched is False),
        not_compared_count=sum(1 for s in samples if s.reads_matched is None),
        total_primary_errors=sum(s.primary_errors for s in samples),
        total_reference_errors=sum(s.reference_errors for s in samples),
        batch=_batch_stats(samples),
        memory=_memory_stats(samples),
        block_interval=_block_interval_stats(samples),
    )


def _state(recovery: Optional[RecoveryRecord]) -> str:
    if recovery is None:
        return "pending"
    return "recovered" if recovery.recovered else "persistent"


def pair_recoveries(
    mismatches: Sequence[MismatchRecord], recoveries: Sequence[RecoveryRecord]
) -> List[Optional[RecoveryRecord]]:
    """
    Attach each recovery to the mismatch it re-checked.

    Returns one entry per mismatch, in order (None while still pending). A
    recovery belongs to the latest not yet paired mismatch with the same id
    detected at or before the recovery's timestamp, so streams that hold
    several runs with repeated ids still pair correctly.
    """
    paired: List[Optional[RecoveryRecord]] = [None] * len(mismatches)
    positions: Dict[str, List[int]] = {}
    for index, mismatch in enumerate(mismatches):
        positions.setdefault(mismatch.mismatch_id, []).append(index)

    for recovery in recoveries:
        candidates = positions.get(recovery.mismatch_id, [])
        for index in reversed(candidates):
            if paired[index] is None and mismatches[index].timestamp <= recovery.timestamp:
                paired[index] = recovery
                break
    return paired


def mismatch_states(
    mismatches: Sequence[MismatchRecord], recoveries: Sequence[RecoveryRecord]
) -> List[str]:
    """
    State of each mismatch, in order: "recovered", "persistent" or "pending".
    """
    return [_state(recovery) for recovery in pair_recoveries(mismatches, recoveries)]


def summarize_mismatches(
    mismatches: Sequence[MismatchRecord], recoveries: Sequence[RecoveryRecord]
) -> MismatchStats:
    states = mismatch_states(mismatches, recoveries)
    return MismatchStats(
        total=len(mismatches),
        recovered=states.count("recovered"),
        persistent=states.count("persistent"),
        pending=states.count("pending"),
    )


__all__ = [
    "BatchStats",
    "BlockIntervalStats",
    "DriftStats",
    "LatencyStats",
    "MemoryStats",
    "MismatchStats",
    "SampleStats",
    "compute_stats",
    "drift_stats",
    "memory_trend",
    "mismatch_states",
    "pair_recoveries",
    "percentile",
    "summarize_mismatches",
]
