"""
Domain models for the RPC parity monitor.

Every persisted record is a frozen, tagged pydantic model: `record_type` names
the stream it belongs to and `schema_version` lets readers reject lines written
by an incompatible writer. Records are appended once and never mutated.
"""
from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

SCHEMA_VERSION = 1

_FROZEN = {
    "frozen": True,
    "populate_by_name": True,
    "extra": "ignore",
}


class RequestKind(str, Enum):
    """Logical request families compared between the two backends."""

    VALUE_READ = "value_read"
    CALL = "call"
    LOG_QUERY = "log_query"
    BATCH = "batch"
    BLOCK_NUMBER = "block_number"


class Side(str, Enum):
    PRIMARY = "primary"
    REFERENCE = "reference"


class MemorySnapshot(BaseModel):
    heap_used_mb: float
    heap_total_mb: float
    rss_mb: float
    external_mb: float

    model_config = _FROZEN


class BatchMetrics(BaseModel):
    """Batch sub-metrics attached to a sample."""

    size: int
    primary_latency_ms: Optional[float] = None
    reference_latency_ms: Optional[float] = None
    primary_ordered: Optional[bool] = None
    reference_ordered: Optional[bool] = None
    compared: int = 0
    mismatched: int = 0
    matched: Optional[bool] = Field(
        None, description="None when one side failed as a whole and nothing was compared."
    )
    speedup: Optional[float] = None

    model_config = _FROZEN


class LogMetrics(BaseModel):
    primary_latency_ms: Optional[float] = None
    reference_latency_ms: Optional[float] = None
    matched: Optional[bool] = None
    primary_count: Optional[int] = None
    reference_count: Optional[int] = None

    model_config = _FROZEN


class Sample(BaseModel):
    """
    Outcome of one sampler iteration.
    """

    record_type: Literal["sample"] = "sample"
    schema_version: Literal[1] = SCHEMA_VERSION
    timestamp: int = Field(..., description="Epoch milliseconds.")
    iso_time: str
    primary_block: int
    reference_block: int
    drift: int = Field(..., description="primary_block - reference_block.")
    primary_latency_ms: float
    reference_latency_ms: float
    reads_matched: Optional[bool] = Field(
        ..., description="None when no comparison completed (every read lost to errors)."
    )
    read_count: int
    primary_errors: int = 0
    reference_errors: int = 0
    primary_block_jump: int = 0
    reference_block_jump: int = 0
    primary_block_delta_ms: Optional[int] = None
    reference_block_delta_ms: Optional[int] = None
    batch: Optional[BatchMetrics] = None
    memory: Optional[MemorySnapshot] = None
    logs: Optional[LogMetrics] = None

    model_config = _FROZEN


class MismatchRecord(BaseModel):
    """
    A value disagreement between the two backends at the same block.
    """

    record_type: Literal["mismatch"] = "mismatch"
    schema_version: Literal[1] = SCHEMA_VERSION
    mismatch_id: str
    timestamp: int
    iso_time: str
    block: int
    kind: RequestKind
    method: str
    context: str = Field(..., description="Address, topic or batch id the read targeted.")
    primary_value: Optional[str] = None
    reference_value: Optional[str] = None

    model_config = _FROZEN


class RecoveryRecord(BaseModel):
    """
    Outcome of re-querying the reference side after a mismatch.
    """

    record_type: Literal["recovery"] = "recovery"
    schema_version: Literal[1] = SCHEMA_VERSION
    mismatch_id: str
    timestamp: int
    iso_time: str
    recovered: bool
    reference_value: Optional[str] = None
    error: Optional[str] = None

    model_config = _FROZEN


class ErrorRecord(BaseModel):
    """
    A single backend call that failed outright.
    """

    record_type: Literal["error"] = "error"
    schema_version: Literal[1] = SCHEMA_VERSION
    timestamp: int
    iso_time: str
    block: Optional[int] = None
    kind: RequestKind
    side: Side
    method: str
    context: Optional[str] = None
    message: str

    model_config = _FROZEN


__all__ = [
    "SCHEMA_VERSION",
    "BatchMetrics",
    "ErrorRecord",
    "LogMetrics",
    "MemorySnapshot",
    "MismatchRecord",
    "RecoveryRecord",
    "RequestKind",
    "Sample",
    "Side",
]
