"""
Dashboard query surface.

Reads the four record streams and assembles the payload a dashboard renders:
the most recent samples, statistics over all samples, mismatch and error
summaries, and any read issues encountered in the streams.

Usage:
    from rpc_parity.summary import build_dashboard_payload

    payload = build_dashboard_payload(RecordStore(settings.data_file))
    print(payload.model_dump_json(indent=2))
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from rpc_parity.domain.models import ErrorRecord, MismatchRecord, RecoveryRecord, Sample
from rpc_parity.infrastructure.record_store import RecordStore, StreamReadResult
from rpc_parity.stats import (
    MismatchStats,
    SampleStats,
    compute_stats,
    mismatch_states,
    summarize_mismatches,
)
from rpc_parity.utils.logging import get_logger

log = get_logger(__name__)

MAX_POINTS = 500
RECENT_RECORDS = 20


class MismatchSummary(MismatchStats):
    mismatches: List[MismatchRecord] = Field(default_factory=list)
    recoveries: List[RecoveryRecord] = Field(default_factory=list)
    states: List[str] = Field(
        default_factory=list, description="Lifecycle state of each listed mismatch, in order."
    )


class ErrorSummary(BaseModel):
    primary_errors: int = 0
    reference_errors: int = 0
    recent_errors: List[ErrorRecord] = Field(default_factory=list)

    model_config = {"frozen": True}


class ReadIssue(BaseModel):
    malformed_lines: int = 0
    io_error: Optional[str] = None

    model_config = {"frozen": True}


class DashboardPayload(BaseModel):
    points: List[Sample] = Field(default_factory=list)
    stats: SampleStats = SampleStats()
    mismatch_stats: MismatchSummary = MismatchSummary()
    error_stats: ErrorSummary = ErrorSummary()
    read_issues: Dict[str, ReadIssue] = Field(default_factory=dict)

    model_config = {"frozen": True}


def _issue(result: StreamReadResult) -> Optional[ReadIssue]:
    if not result.malformed and result.io_error is None:
        return None
    return ReadIssue(malformed_lines=len(result.malformed), io_error=result.io_error)


def _tail(records: list, count: int) -> list:
    return records[-count:] if count > 0 else []


def build_dashboard_payload(
    store: RecordStore, max_points: int = MAX_POINTS, recent: int = RECENT_RECORDS
) -> DashboardPayload:
    """
    Assemble the dashboard payload from the record streams.

    Parameters
    ----------
    store : RecordStore
        Source of the four streams. Missing streams read as empty.
    max_points : int
        Number of most recent samples returned in `points`. Statistics are
        always computed over every sample.
    recent : int
        Number of most recent mismatches, recoveries and errors returned.
    """
    reads = {
        "sample": store.read_samples(),
        "mismatch": store.read_mismatches(),
        "recovery": store.read_recoveries(),
        "error": store.read_errors(),
    }
    issues: Dict[str, ReadIssue] = {}
    for name, result in reads.items():
        issue = _issue(result)
        if issue is not None:
            issues[name] = issue
    if issues:
        log.warning(
            f"[READ ISSUES] {', '.join(sorted(issues))}",
            extra={"streams": sorted(issues)},
        )

    samples = sorted(reads["sample"].records, key=lambda s: s.timestamp)
    mismatches = reads["mismatch"].records
    recoveries = reads["recovery"].records
    stats = compute_stats(samples)
    counts = summarize_mismatches(mismatches, recoveries)
    states = mismatch_states(mismatches, recoveries)

    return DashboardPayload(
        points=_tail(samples, max_points),
        stats=stats,
        mismatch_stats=MismatchSummary(
            **counts.model_dump(),
            mismatches=_tail(mismatches, recent),
            recoveries=_tail(recoveries, recent),
            states=_tail(states, recent),
        ),
        error_stats=ErrorSummary(
            primary_errors=stats.total_primary_errors,
            reference_errors=stats.total_reference_errors,
            recent_errors=_tail(reads["error"].records, recent),
        ),
        read_issues=issues,
    )


__all__ = [
    "DashboardPayload",
    "ErrorSummary",
    "MismatchSummary",
    "ReadIssue",
    "build_dashboard_payload",
]
