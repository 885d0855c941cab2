"""Repository Protocols for trades and positions.

Unit tests inject mocks that conform to these Protocols.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_trading.domain.models import Position, Trade


class TradeRepositoryProtocol(Protocol):
    async def insert_pending(
        self,
        db: AsyncSession,
        tx_signature: str,
        market_id: int,
        user_wallet: str,
        side: str,
        amount: int,
        price_scaled: int,
        total_value: int,
    ) -> Trade | None:
        """None when the signature already exists."""
        ...

    async def get_by_signature(self, db: AsyncSession, tx_signature: str) -> Trade | None: ...

    async def get_by_id(self, db: AsyncSession, trade_id: int) -> Trade | None: ...

    async def confirm(
        self,
        db: AsyncSession,
        trade_id: int,
        slot: int,
        confirmed_at: datetime | None,
    ) -> Trade | None:
        """pending -> confirmed. None when the trade is missing or not pending."""
        ...

    async def mark_failed(self, db: AsyncSession, trade_id: int, slot: int) -> Trade | None: ...


class PositionRepositoryProtocol(Protocol):
    async def get_for_update(
        self, db: AsyncSession, wallet: str, bond_id: int
    ) -> Position | None: ...

    async def upsert(self, db: AsyncSession, position: Position) -> None: ...

    async def delete(self, db: AsyncSession, wallet: str, bond_id: int) -> None: ...
