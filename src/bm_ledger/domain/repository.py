"""Protocols for ledger access.

Unit tests inject fakes that conform to these Protocols. The settlement
program itself is an external collaborator: this repo only invokes it.
"""

from typing import Protocol

from src.bm_ledger.domain.models import LedgerTransaction
from src.bm_market.domain.models import Market


class LedgerClientProtocol(Protocol):
    async def get_recent_transactions(
        self, program_id: str, limit: int
    ) -> list[LedgerTransaction]:
        """Newest first. Raises LedgerRpcError when the listing itself fails."""
        ...


class SettlementProgramProtocol(Protocol):
    """Instructions of the on-chain settlement program.

    Each call returns the settlement signature, or raises a
    TradeSubmissionError subclass describing how far the instruction got.
    """

    async def initialize_market(self, market: Market, price_scaled: int) -> str: ...

    async def buy(self, market: Market, trader: str, amount: int) -> str: ...

    async def sell(self, market: Market, trader: str, amount: int) -> str: ...

    async def update_price(self, market: Market, price_scaled: int) -> str: ...

    async def pause(self, market: Market) -> str: ...
