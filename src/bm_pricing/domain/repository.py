"""Repository Protocol for the append-only price tables."""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession


class PriceWriterProtocol(Protocol):
    async def insert_history(
        self, db: AsyncSession, market_id: int, price_scaled: int, source: str
    ) -> None: ...

    async def insert_oracle_update(
        self,
        db: AsyncSession,
        market_id: int,
        old_price_scaled: int,
        new_price_scaled: int,
        source: str,
    ) -> int: ...

    async def set_oracle_tx_signature(
        self, db: AsyncSession, update_id: int, tx_signature: str
    ) -> None: ...
