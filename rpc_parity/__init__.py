"""
RPC Parity Monitor - continuous equivalence checking of two JSON-RPC backends.

This package samples an accelerated or cached backend ("primary") against an
unmodified upstream node ("reference") and records how they diverge:

- Block height drift and per-side latency on every iteration
- Value-read, contract call, log query and batch request comparisons
- Delayed re-verification of every mismatch (recovered vs persistent)
- Rolling statistics over the append-only record streams

Records are written as NDJSON so long unattended runs can be inspected with the
`stats` command or served to an external dashboard.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from rpc_parity.checks import AbstractComparisonCheck, ComparisonCheck, available_checks
from rpc_parity.config import Settings, get_settings
from rpc_parity.infrastructure.record_store import RecordStore
from rpc_parity.infrastructure.rpc_client import RpcClient, build_clients
from rpc_parity.recovery import RecheckContext, RecoveryScheduler
from rpc_parity.sampler import Sampler, run_sampler
from rpc_parity.stats import compute_stats, percentile, summarize_mismatches
from rpc_parity.summary import build_dashboard_payload
from rpc_parity.utils.logging import configure_logging, get_logger
from rpc_parity.utils.memory import MemoryProbe

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Sampling
    "Sampler",
    "run_sampler",
    "RecheckContext",
    "RecoveryScheduler",
    # Check abstractions
    "AbstractComparisonCheck",
    "ComparisonCheck",
    "available_checks",
    # Backends and storage
    "RpcClient",
    "build_clients",
    "RecordStore",
    # Aggregation
    "build_dashboard_payload",
    "compute_stats",
    "percentile",
    "summarize_mismatches",
    # Logging
    "configure_logging",
    "get_logger",
    # Resources
    "MemoryProbe",
]
