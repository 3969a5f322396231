"""
Domain package for the RPC parity monitor.

Exports the record models shared by the sampler, the recovery scheduler, the
record store and the stats aggregator. Keep this package focused on data
definitions and validation concerns.
"""

from rpc_parity.domain.models import (
    SCHEMA_VERSION,
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
