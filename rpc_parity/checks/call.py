"""
Contract call check: `totalSupply()` of the watched token contracts.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from rpc_parity.checks.abstract import AbstractComparisonCheck, CheckContext, CheckOutcome
from rpc_parity.comparator import canonical_bytes
from rpc_parity.config import get_settings
from rpc_parity.domain.models import RequestKind

TOTAL_SUPPLY_SELECTOR = "0x18160ddd"


class CallCheck(AbstractComparisonCheck):
    """
    Compare `eth_call` return data byte-for-byte.

    Parameters
    ----------
    contracts : sequence of str, optional
        Contract addresses to call. Defaults to the watched addresses.
    data : str
        Calldata sent to every contract.
    """

    name: str = "call"
    kind: RequestKind = RequestKind.CALL
    method: str = "eth_call"

    def __init__(
        self, contracts: Optional[Sequence[str]] = None, data: str = TOTAL_SUPPLY_SELECTOR
    ) -> None:
        if contracts is None:
            contracts = get_settings().watch_address_list
        self.contracts = list(contracts)
        self.data = data

    async def run(self, ctx: CheckContext) -> CheckOutcome:
        outcome = CheckOutcome()
        await asyncio.gather(
            *(
                self._compare_pair(
                    ctx,
                    outcome,
                    self.method,
                    [{"to": contract, "data": self.data}, ctx.block_tag],
                    f"{contract}:{self.data}",
                    canonical_bytes,
                )
                for contract in self.contracts
            )
        )
        return outcome


__all__ = ["CallCheck", "TOTAL_SUPPLY_SELECTOR"]
