"""
Equivalence rules between primary and reference answers.

Everything here is pure: no I/O, no clocks. Checks feed paired answers in and
get a verdict back; the recovery scheduler reuses the same rules to compare a
fresh reference answer with the original primary one.

State reads at the same block must match exactly, so value comparison has no
tolerance. Batches are the exception: backends throttle parts of large batches,
so a batch passes when at most 10% (rounded up) of the compared ids disagree.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from rpc_parity.domain.models import RequestKind
from rpc_parity.infrastructure.rpc_client import BatchEntry

BATCH_MISMATCH_TOLERANCE = 0.1

Canonicalizer = Callable[[Any], Optional[str]]


def canonical_quantity(value: Any) -> Optional[str]:
    """Hex quantity (or int) as a decimal string."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"not a quantity: {value!r}")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text.startswith("0x"):
            return str(int(text, 16)) if len(text) > 2 else "0"
        return str(int(text))
    raise ValueError(f"not a quantity: {value!r}")


def canonical_bytes(value: Any) -> Optional[str]:
    """Byte payload as lower-case, 0x-prefixed hex."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).strip().lower()
    return text if text.startswith("0x") else "0x" + text


@dataclass(frozen=True)
class ValueComparison:
    matched: bool
    primary: Optional[str]
    reference: Optional[str]


def compare_values(primary: Any, reference: Any, canonicalize: Canonicalizer) -> ValueComparison:
    p = canonicalize(primary)
    r = canonicalize(reference)
    return ValueComparison(matched=p == r, primary=p, reference=r)


def log_key(entry: Dict[str, Any]) -> str:
    """Composite key `transactionHash:logIndex` of a log entry."""
    tx_hash = str(entry.get("transactionHash", "")).lower()
    return f"{tx_hash}:{canonical_quantity(entry.get('logIndex'))}"


@dataclass(frozen=True)
class LogComparison:
    matched: bool
    primary_count: int
    reference_count: int
    missing_in_primary: List[str] = field(default_factory=list)
    extra_in_primary: List[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        if self.primary_count != self.reference_count:
            return f"count {self.primary_count} != {self.reference_count}"
        if self.missing_in_primary:
            return f"missing in primary: {', '.join(self.missing_in_primary)}"
        if self.extra_in_primary:
            return f"extra in primary: {', '.join(self.extra_in_primary)}"
        return "ok"


def compare_logs(
    primary: Sequence[Dict[str, Any]],
    reference: Sequence[Dict[str, Any]],
    strict: bool = False,
) -> LogComparison:
    """
    Compare two `eth_getLogs` result sets.

    Counts are compared first. Keys present on the reference side but missing on
    the primary side always fail the comparison; primary-only keys fail it only
    in strict mode.
    """
    primary_keys = {log_key(entry) for entry in primary}
    reference_keys = {log_key(entry) for entry in reference}
    missing = sorted(reference_keys - primary_keys)
    extra = sorted(primary_keys - reference_keys) if strict else []
    matched = len(primary) == len(reference) and not missing and not extra
    return LogComparison(
        matched=matched,
        primary_count=len(primary),
        reference_count=len(reference),
        missing_in_primary=missing,
        extra_in_primary=extra,
    )


def canonical_logs(entries: Optional[Iterable[Dict[str, Any]]]) -> Optional[str]:
    """Sorted log keys as a JSON list, for storing in mismatch/recovery records."""
    if entries is None:
        return None
    return json.dumps(sorted(log_key(entry) for entry in entries))


def batch_ordered(entries: Sequence[BatchEntry]) -> bool:
    """True when position i carries correlation id i + 1."""
    return all(entry.id == position for position, entry in enumerate(entries, start=1))


@dataclass(frozen=True)
class BatchComparison:
    compared: int
    mismatched_ids: List[Any]
    matched: bool

    @property
    def mismatched(self) -> int:
        return len(self.mismatched_ids)


def batch_within_tolerance(compared: int, mismatched: int) -> bool:
    if compared == 0:
        return False
    return mismatched <= math.ceil(compared * BATCH_MISMATCH_TOLERANCE)


def compare_batch(
    primary: Sequence[BatchEntry],
    reference: Sequence[BatchEntry],
    canonicalize: Canonicalizer,
) -> BatchComparison:
    """
    Compare values of ids answered successfully by both sides.

    Ordering is deliberately not considered here; see `batch_ordered`.
    """
    primary_values = {entry.id: entry.value for entry in primary if entry.ok}
    reference_values = {entry.id: entry.value for entry in reference if entry.ok}
    shared = [entry_id for entry_id in primary_values if entry_id in reference_values]
    mismatched = [
        entry_id
        for entry_id in shared
        if canonicalize(primary_values[entry_id]) != canonicalize(reference_values[entry_id])
    ]
    return BatchComparison(
        compared=len(shared),
        mismatched_ids=mismatched,
        matched=batch_within_tolerance(len(shared), len(mismatched)),
    )


def estimate_batch_speedup(
    primary_single_ms: Optional[float],
    reference_single_ms: Optional[float],
    batch_size: int,
    primary_batch_ms: Optional[float],
) -> Optional[float]:
    """
    Diagnostic ratio: time `batch_size` single calls would take vs. the batch.
    """
    if primary_single_ms is None or reference_single_ms is None:
        return None
    if not primary_batch_ms or primary_batch_ms <= 0:
        return None
    average_single = (primary_single_ms + reference_single_ms) / 2
    return average_single * batch_size / primary_batch_ms


_CANONICALIZERS: Dict[str, Canonicalizer] = {
    "eth_getBalance": canonical_quantity,
    "eth_getTransactionCount": canonical_quantity,
    "eth_call": canonical_bytes,
    "eth_getStorageAt": canonical_bytes,
    "eth_getCode": canonical_bytes,
}


def canonicalizer_for(method: str) -> Canonicalizer:
    return _CANONICALIZERS.get(method, canonical_bytes)


def compare_for_kind(
    kind: RequestKind,
    method: str,
    primary: Any,
    reference: Any,
    strict_logs: bool = False,
) -> ValueComparison:
    """
    Apply the equivalence rule of `kind` and report canonical representations.

    Batch mismatches are tracked per id, so a batch id is compared like the
    single value read it wraps.
    """
    if kind is RequestKind.LOG_QUERY:
        verdict = compare_logs(primary or [], reference or [], strict=strict_logs)
        return ValueComparison(
            matched=verdict.matched,
            primary=canonical_logs(primary),
            reference=canonical_logs(reference),
        )
    return compare_values(primary, reference, canonicalizer_for(method))


__all__ = [
    "BATCH_MISMATCH_TOLERANCE",
    "BatchComparison",
    "LogComparison",
    "ValueComparison",
    "batch_ordered",
    "batch_within_tolerance",
    "canonical_bytes",
    "canonical_logs",
    "canonical_quantity",
    "canonicalizer_for",
    "compare_batch",
    "compare_for_kind",
    "compare_logs",
    "compare_values",
    "estimate_batch_speedup",
    "log_key",
]
