"""
Checks package for the RPC parity monitor.

Re-exports the abstract interfaces and the concrete checks, and holds the
registry the sampler resolves configured check names against.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

from rpc_parity.checks.abstract import (
    AbstractComparisonCheck,
    CheckContext,
    CheckOutcome,
    ComparisonCheck,
    PendingMismatch,
)
from rpc_parity.checks.balance import BalanceCheck
from rpc_parity.checks.batch import BatchCheck
from rpc_parity.checks.call import CallCheck
from rpc_parity.checks.logs import LogsCheck
from rpc_parity.config import Settings, get_settings


def _check_factories(settings: Settings) -> Dict[str, Callable[[], ComparisonCheck]]:
    """Registry of available checks, configured from `settings`."""
    addresses = settings.watch_address_list
    return {
        "balance": lambda: BalanceCheck(addresses),
        "call": lambda: CallCheck(addresses),
        "logs": lambda: LogsCheck(addresses[0], strict=settings.logs_strict),
        "batch": lambda: BatchCheck(addresses, size=settings.batch_size),
    }


def available_checks() -> List[str]:
    """List available check names."""
    return sorted(_check_factories(get_settings()).keys())


def build_checks(
    names: Optional[Iterable[str]] = None, settings: Optional[Settings] = None
) -> List[ComparisonCheck]:
    """
    Instantiate checks by name, in the given order.

    Raises
    ------
    ValueError
        If a name is not registered, or no watch address is configured.
    """
    settings = settings or get_settings()
    factories = _check_factories(settings)
    selected = list(names) if names is not None else settings.check_names
    unknown = [name for name in selected if name not in factories]
    if unknown:
        raise ValueError(
            f"Unknown check(s) {', '.join(unknown)}. Available: {', '.join(sorted(factories))}"
        )
    if selected and not settings.watch_address_list:
        raise ValueError("WATCH_ADDRESSES is empty; every check needs at least one address")
    return [factories[name]() for name in selected]


__all__ = [
    # Abstracts
    "AbstractComparisonCheck",
    "CheckContext",
    "CheckOutcome",
    "ComparisonCheck",
    "PendingMismatch",
    # Concrete checks
    "BalanceCheck",
    "BatchCheck",
    "CallCheck",
    "LogsCheck",
    # Registry
    "available_checks",
    "build_checks",
]
