"""
Value-read check: native balances of the watched addresses.

Each address is read from both backends concurrently at the comparable block,
and the addresses themselves are fanned out together.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from rpc_parity.checks.abstract import AbstractComparisonCheck, CheckContext, CheckOutcome
from rpc_parity.comparator import canonical_quantity
from rpc_parity.config import get_settings
from rpc_parity.domain.models import RequestKind


class BalanceCheck(AbstractComparisonCheck):
    """
    Compare `eth_getBalance` for every watched address.
    """

    name: str = "balance"
    kind: RequestKind = RequestKind.VALUE_READ
    method: str = "eth_getBalance"

    def __init__(self, addresses: Optional[Sequence[str]] = None) -> None:
        if addresses is None:
            addresses = get_settings().watch_address_list
        self.addresses = list(addresses)

    async def run(self, ctx: CheckContext) -> CheckOutcome:
        outcome = CheckOutcome()
        await asyncio.gather(
            *(
                self._compare_pair(
                    ctx, outcome, self.method, [address, ctx.block_tag], address, canonical_quantity
                )
                for address in self.addresses
            )
        )
        return outcome


__all__ = ["BalanceCheck"]
