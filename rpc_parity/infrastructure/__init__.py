"""
Infrastructure package for the RPC parity monitor.

Centralizes I/O concerns: the JSON-RPC client adapter for both backends and
the NDJSON record store. Keep this layer focused on transport and persistence,
decoupled from comparison and sampling logic.
"""

from rpc_parity.infrastructure.record_store import (
    MalformedLine,
    RecordStore,
    StreamReadResult,
    read_stream,
    stream_paths,
)
from rpc_parity.infrastructure.rpc_client import (
    BackendError,
    BatchEntry,
    BatchResult,
    RpcClient,
    RpcResult,
    RpcTransportError,
    build_clients,
)

__all__ = [
    "BackendError",
    "BatchEntry",
    "BatchResult",
    "MalformedLine",
    "RecordStore",
    "RpcClient",
    "RpcResult",
    "RpcTransportError",
    "StreamReadResult",
    "build_clients",
    "read_stream",
    "stream_paths",
]
