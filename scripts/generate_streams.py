"""
Synthetic record stream generator for the RPC parity monitor.

Writes deterministic pseudo-random samples, mismatches, recoveries and errors
through `RecordStore`, so `rpc-parity stats` and external dashboards can be
exercised without live backends.
"""

from __future__ import annotations

import random
import sys
import time
from pathlib import Path

import typer

from rpc_parity.domain.models import (
    BatchMetrics,
    ErrorRecord,
    LogMetrics,
    MemorySnapshot,
    MismatchRecord,
    RecoveryRecord,
    RequestKind,
    Sample,
    Side,
)
from rpc_parity.infrastructure.record_store import RecordStore
from rpc_parity.utils.clock import iso_from_ms

app = typer.Typer(help="Generate synthetic parity record streams (NDJSON).")

BLOCK_TIME_MS = 12_000


def generate_streams(
    store: RecordStore,
    samples: int,
    seed: int = 42,
    interval_ms: int = 500,
    mismatch_rate: float = 0.02,
    start_ms: int = 1_700_000_000_000,
) -> dict:
    """
    Append `samples` synthetic iterations to `store`.

    Returns counts of the records written per stream.
    """
    rng = random.Random(seed)
    counts = {"sample": 0, "mismatch": 0, "recovery": 0, "error": 0}
    block = 18_000_000
    heap = 40.0
    last_block_ms = start_ms

    for i in range(samples):
        now_ms = start_ms + i * interval_ms
        jump = 0
        if now_ms - last_block_ms >= BLOCK_TIME_MS:
            jump = 1
            block += 1
        delta_ms = now_ms - last_block_ms if jump else None
        if jump:
            last_block_ms = now_ms
        drift = rng.choice([0, 0, 0, 0, 1, -1])
        heap += rng.uniform(-0.2, 0.3)

        mismatched = rng.random() < mismatch_rate
        reference_errors = 1 if rng.random() < 0.01 else 0
        primary_latency = rng.uniform(2, 8)
        reference_latency = rng.uniform(40, 120)
        batch_latency = rng.uniform(5, 15)

        store.append(
            Sample(
                timestamp=now_ms,
                iso_time=iso_from_ms(now_ms),
                primary_block=block + drift,
                reference_block=block,
                drift=drift,
                primary_latency_ms=round(primary_latency, 3),
                reference_latency_ms=round(reference_latency, 3),
                reads_matched=not mismatched,
                read_count=8,
                reference_errors=reference_errors,
                primary_block_jump=jump,
                reference_block_jump=jump,
                primary_block_delta_ms=delta_ms,
                reference_block_delta_ms=delta_ms,
                batch=BatchMetrics(
                    size=10,
                    primary_latency_ms=round(batch_latency, 3),
                    reference_latency_ms=round(rng.uniform(80, 200), 3),
                    primary_ordered=True,
                    reference_ordered=True,
                    compared=10,
                    mismatched=0,
                    matched=True,
                    speedup=round(
                        (primary_latency + reference_latency) / 2 * 10 / batch_latency, 3
                    ),
                ),
                memory=MemorySnapshot(
                    heap_used_mb=round(heap, 2),
                    heap_total_mb=round(heap * 1.2, 2),
                    rss_mb=round(heap * 2.5, 2),
                    external_mb=round(heap * 1.5, 2),
                ),
                logs=LogMetrics(
                    primary_latency_ms=round(rng.uniform(3, 10), 3),
                    reference_latency_ms=round(rng.uniform(50, 150), 3),
                    matched=True,
                    primary_count=3,
                    reference_count=3,
                ),
            )
        )
        counts["sample"] += 1

        if mismatched:
            mismatch_id = f"M{counts['mismatch'] + 1}"
            store.append(
                MismatchRecord(
                    mismatch_id=mismatch_id,
                    timestamp=now_ms,
                    iso_time=iso_from_ms(now_ms),
                    block=block,
                    kind=RequestKind.VALUE_READ,
                    method="eth_getBalance",
                    context="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
                    primary_value=str(10**18 + i),
                    reference_value=str(10**18),
                )
            )
            counts["mismatch"] += 1
            # The most recent mismatches stay pending.
            if i < samples - 10:
                recovered_ms = now_ms + 5_000
                recovered = rng.random() < 0.8
                store.append(
                    RecoveryRecord(
                        mismatch_id=mismatch_id,
                        timestamp=recovered_ms,
                        iso_time=iso_from_ms(recovered_ms),
                        recovered=recovered,
                        reference_value=str(10**18 + i) if recovered else str(10**18),
                    )
                )
                counts["recovery"] += 1

        if reference_errors:
            store.append(
                ErrorRecord(
                    timestamp=now_ms,
                    iso_time=iso_from_ms(now_ms),
                    block=block,
                    kind=RequestKind.VALUE_READ,
                    side=Side.REFERENCE,
                    method="eth_getBalance",
                    message="[429] rate limited",
                )
            )
            counts["error"] += 1

    return counts


@app.command()
def main(
    samples: int = typer.Option(
        1_000,
        "--samples",
        "-n",
        help="Number of iterations to generate.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    output: Path = typer.Option(
        Path("results/parity-data.ndjson"),
        "--output",
        "-o",
        help="Samples stream path; the other streams are written beside it.",
    ),
    mismatch_rate: float = typer.Option(
        0.02,
        "--mismatch-rate",
        help="Probability that an iteration records a mismatch.",
    ),
) -> None:
    """
    Generate synthetic record streams.
    """
    start = time.perf_counter()
    store = RecordStore(output)
    typer.echo(f"Generating {samples:,} samples -> {output} (seed={seed})")
    counts = generate_streams(store, samples=samples, seed=seed, mismatch_rate=mismatch_rate)
    duration = time.perf_counter() - start
    typer.echo(
        f"Wrote {counts['sample']:,} samples, {counts['mismatch']:,} mismatches, "
        f"{counts['recovery']:,} recoveries, {counts['error']:,} errors in {duration:.2f}s"
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
