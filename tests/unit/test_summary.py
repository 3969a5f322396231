from __future__ import annotations

import json

from rich.console import Console

from rpc_parity.domain.models import MismatchRecord, RecoveryRecord, RequestKind, Sample
from rpc_parity.infrastructure.record_store import RecordStore
from rpc_parity.reporter import print_summary
from rpc_parity.summary import build_dashboard_payload

BASE_MS = 1_700_000_000_000
ISO = "2023-11-14T22:13:20+00:00"


def _sample(index: int, drift: int = 0) -> Sample:
    return Sample(
        timestamp=BASE_MS + index * 500,
        iso_time=ISO,
        primary_block=100 + drift,
        reference_block=100,
        drift=drift,
        primary_latency_ms=5.0,
        reference_latency_ms=50.0,
        reads_matched=index % 2 == 0,
        read_count=2,
    )


def _mismatch(mismatch_id: str) -> MismatchRecord:
    return MismatchRecord(
        mismatch_id=mismatch_id,
        timestamp=BASE_MS,
        iso_time=ISO,
        block=100,
        kind=RequestKind.LOG_QUERY,
        method="eth_getLogs",
        context="0xabc:0xddf (count 1 != 2)",
        primary_value='["0xaa:0"]',
        reference_value='["0xaa:0", "0xbb:1"]',
    )


def test_empty_store_yields_empty_payload(record_store: RecordStore):
    payload = build_dashboard_payload(record_store)

    assert payload.points == []
    assert payload.stats.sample_count == 0
    assert payload.mismatch_stats.total == 0
    assert payload.read_issues == {}


def test_stats_cover_all_samples_but_points_are_capped(record_store: RecordStore):
    # appended out of order; the payload sorts by timestamp
    for index in [3, 0, 2, 1, 4]:
        record_store.append(_sample(index, drift=index))

    payload = build_dashboard_payload(record_store, max_points=2)

    assert [p.timestamp for p in payload.points] == [BASE_MS + 1_500, BASE_MS + 2_000]
    assert payload.stats.sample_count == 5
    assert payload.stats.drift.max == 4
    assert payload.stats.pass_count == 3


def test_recent_mismatches_keep_their_true_state(record_store: RecordStore):
    for number in range(1, 6):
        record_store.append(_mismatch(f"M{number}"))
    record_store.append(
        RecoveryRecord(mismatch_id="M4", timestamp=BASE_MS, iso_time=ISO, recovered=True)
    )
    record_store.append(
        RecoveryRecord(mismatch_id="M5", timestamp=BASE_MS, iso_time=ISO, recovered=False)
    )

    payload = build_dashboard_payload(record_store, recent=1)
    mismatch_stats = payload.mismatch_stats

    assert (mismatch_stats.total, mismatch_stats.recovered, mismatch_stats.persistent) == (5, 1, 1)
    assert mismatch_stats.pending == 3
    assert [m.mismatch_id for m in mismatch_stats.mismatches] == ["M5"]
    assert [r.mismatch_id for r in mismatch_stats.recoveries] == ["M5"]
    assert mismatch_stats.states == ["persistent"]


def test_read_issues_are_reported_per_stream(record_store: RecordStore):
    record_store.append(_sample(0))
    with record_store.paths["sample"].open("a", encoding="utf-8") as f:
        f.write("{broken\n")

    payload = build_dashboard_payload(record_store)

    assert payload.stats.sample_count == 1
    assert payload.read_issues["sample"].malformed_lines == 1
    assert "mismatch" not in payload.read_issues


def test_payload_serializes_to_json(record_store: RecordStore):
    record_store.append(_sample(0))
    record_store.append(_mismatch("M1"))

    data = json.loads(build_dashboard_payload(record_store).model_dump_json())

    assert set(data) == {"points", "stats", "mismatch_stats", "error_stats", "read_issues"}
    assert data["mismatch_stats"]["mismatches"][0]["kind"] == "log_query"
    assert data["stats"]["speedup_ratio"] == 10.0


def test_print_summary_renders_tables(record_store: RecordStore):
    for index in range(3):
        record_store.append(_sample(index, drift=1))
    record_store.append(_mismatch("M1"))
    console = Console(record=True, width=160)

    print_summary(build_dashboard_payload(record_store), console=console)

    output = console.export_text()
    assert "RPC Parity Overview" in output
    assert "Block Drift" in output
    assert "M1" in output
    assert "pending" in output
    assert '["0xaa:0"]' in output


def test_print_summary_without_data(record_store: RecordStore):
    console = Console(record=True)
    print_summary(build_dashboard_payload(record_store), console=console)
    assert "No samples recorded yet" in console.export_text()
