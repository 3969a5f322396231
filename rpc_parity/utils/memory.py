"""
Process memory probe for the RPC parity monitor.

Each sample may carry a snapshot of the sampler's own memory so long runs can be
checked for growth (e.g. an unbounded re-check registry or a leaking client):
- Python heap in use and its high-water mark (tracemalloc)
- Resident set size (psutil)
- Memory outside the traced Python heap (RSS minus traced bytes)

Usage example:
    from rpc_parity.utils.memory import MemoryProbe

    probe = MemoryProbe()
    probe.start()
    snapshot = probe.snapshot()
    print(snapshot.heap_used_mb, snapshot.rss_mb)
"""

from __future__ import annotations

import tracemalloc
from typing import Optional

import psutil

from rpc_parity.domain.models import MemorySnapshot

_MB = 1024 * 1024


def _to_mb(value: int) -> float:
    return round(value / _MB, 2)


class MemoryProbe:
    """
    Takes process memory snapshots.

    Parameters
    ----------
    every : int
        Only every n-th call to `maybe_snapshot` produces a snapshot.
    enable_tracemalloc : bool
        Whether to start tracemalloc for Python-level heap accounting. Without it
        heap figures fall back to RSS.
    """

    def __init__(self, every: int = 1, enable_tracemalloc: bool = True) -> None:
        self.every = max(every, 1)
        self.enable_tracemalloc = enable_tracemalloc
        self._process = psutil.Process()
        self._calls = 0
        self._started_tracing = False

    def start(self) -> None:
        if self.enable_tracemalloc and not tracemalloc.is_tracing():
            tracemalloc.start()
            self._started_tracing = True

    def stop(self) -> None:
        # Stop tracemalloc only if we started it
        if self._started_tracing and tracemalloc.is_tracing():
            tracemalloc.stop()
        self._started_tracing = False

    def snapshot(self) -> MemorySnapshot:
        rss = self._process.memory_info().rss
        if tracemalloc.is_tracing():
            current, peak = tracemalloc.get_traced_memory()
        else:
            current, peak = rss, rss
        return MemorySnapshot(
            heap_used_mb=_to_mb(current),
            heap_total_mb=_to_mb(peak),
            rss_mb=_to_mb(rss),
            external_mb=_to_mb(max(rss - current, 0)),
        )

    def maybe_snapshot(self) -> Optional[MemorySnapshot]:
        """Return a snapshot on every `every`-th call, None otherwise."""
        self._calls += 1
        if (self._calls - 1) % self.every:
            return None
        return self.snapshot()


__all__ = ["MemoryProbe"]
