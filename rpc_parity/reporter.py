from __future__ import annotations

from typing import List, Optional, Tuple

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from rpc_parity.summary import DashboardPayload

_STATE_STYLES = {"pending": "dim", "recovered": "green", "persistent": "red"}


def _fmt(value: Optional[float], fmt: str = ".2f", suffix: str = "") -> str:
    if value is None:
        return "N/A"
    return f"{value:{fmt}}{suffix}"


def _rate(value: Optional[float]) -> str:
    return _fmt(None if value is None else value * 100, ".1f", "%")


def _metric_table(title: str, rows: List[Tuple[str, str]]) -> Table:
    table = Table(title=title, box=box.ROUNDED, show_header=False)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="bold green")
    for label, value in rows:
        table.add_row(label, value)
    return table


def print_summary(payload: DashboardPayload, console: Optional[Console] = None) -> None:
    """
    Render a dashboard payload as rich tables.

    Shows the overview, drift distribution, latency, batch and memory
    aggregates, the mismatch lifecycle counts with the most recent mismatches,
    and any stream read issues.
    """
    console = console or Console()
    stats = payload.stats

    if stats.sample_count == 0 and payload.mismatch_stats.total == 0:
        console.print("[yellow]No samples recorded yet.[/yellow]")
        return

    total = stats.pass_count + stats.fail_count
    pass_rate = stats.pass_count / total if total else None
    console.print(
        _metric_table(
            "RPC Parity Overview",
            [
                ("Samples", f"{stats.sample_count:,}"),
                ("Pass / Fail", f"{stats.pass_count:,} / {stats.fail_count:,}"),
                ("Pass rate", _rate(pass_rate)),
                ("Not compared", f"{stats.not_compared_count:,}"),
                ("Primary errors", f"{stats.total_primary_errors:,}"),
                ("Reference errors", f"{stats.total_reference_errors:,}"),
            ],
        )
    )

    drift = stats.drift
    console.print(
        _metric_table(
            "Block Drift (primary - reference)",
            [
                ("Mean ± StdDev", f"{_fmt(drift.mean)} ± {_fmt(drift.stddev)}"),
                ("Min / Max", f"{_fmt(drift.min, 'd')} / {_fmt(drift.max, 'd')}"),
                ("p50 / p90 / p99", f"{_fmt(drift.p50)} / {_fmt(drift.p90)} / {_fmt(drift.p99)}"),
            ],
        )
    )

    console.print(
        _metric_table(
            "Latency & Resources",
            [
                ("Primary avg", _fmt(stats.latency.primary_avg_ms, suffix=" ms")),
                ("Reference avg", _fmt(stats.latency.reference_avg_ms, suffix=" ms")),
                ("Speedup", _fmt(stats.speedup_ratio, suffix="x")),
                ("Primary block interval", _fmt(stats.block_interval.primary_avg_ms, ".0f", " ms")),
                (
                    "Reference block interval",
                    _fmt(stats.block_interval.reference_avg_ms, ".0f", " ms"),
                ),
                ("Batch avg latency", _fmt(stats.batch.avg_latency_ms, suffix=" ms")),
                ("Batch ordered rate", _rate(stats.batch.ordered_rate)),
                ("Batch match rate", _rate(stats.batch.match_rate)),
                ("Batch avg speedup", _fmt(stats.batch.avg_speedup, suffix="x")),
                ("Heap current", _fmt(stats.memory.current_heap_mb, suffix=" MB")),
                ("Heap max", _fmt(stats.memory.max_heap_mb, suffix=" MB")),
                ("Heap trend", _fmt(stats.memory.trend, "+.2f", " MB")),
            ],
        )
    )

    mismatch_stats = payload.mismatch_stats
    table = Table(
        title="Mismatches",
        box=box.ROUNDED,
        caption=(
            f"total={mismatch_stats.total} recovered={mismatch_stats.recovered} "
            f"persistent={mismatch_stats.persistent} pending={mismatch_stats.pending}"
        ),
    )
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Block", justify="right", style="magenta")
    table.add_column("Kind", style="blue")
    table.add_column("Context")
    table.add_column("Primary", style="green")
    table.add_column("Reference", style="yellow")
    table.add_column("State", style="bold")
    for mismatch, state in zip(mismatch_stats.mismatches, mismatch_stats.states):
        table.add_row(
            mismatch.mismatch_id,
            str(mismatch.block),
            mismatch.kind.value,
            escape(mismatch.context),
            escape(mismatch.primary_value or "-"),
            escape(mismatch.reference_value or "-"),
            f"[{_STATE_STYLES[state]}]{state}[/{_STATE_STYLES[state]}]",
        )
    console.print(table)

    for name, issue in payload.read_issues.items():
        detail = issue.io_error or f"{issue.malformed_lines} malformed line(s) skipped"
        console.print(f"[yellow]{name} stream: {detail}[/yellow]")


__all__ = ["print_summary"]
