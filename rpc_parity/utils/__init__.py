"""
Utilities package for the RPC parity monitor.

Exports shared helpers for logging, timekeeping and memory probing.
Keep this package lightweight and free of comparison logic.
"""

from rpc_parity.utils.clock import Clock, SystemClock, iso_from_ms
from rpc_parity.utils.logging import configure_logging, get_logger
from rpc_parity.utils.memory import MemoryProbe

__all__ = [
    "Clock",
    "MemoryProbe",
    "SystemClock",
    "configure_logging",
    "get_logger",
    "iso_from_ms",
]
