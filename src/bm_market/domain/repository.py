# src/bm_market/domain/repository.py
"""Repository Protocol for markets.

Unit tests inject a mock that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_market.domain.models import Market


class MarketRepositoryProtocol(Protocol):
    async def get_market_by_id(self, db: AsyncSession, market_id: int) -> Market | None: ...

    async def get_market_for_update(
        self, db: AsyncSession, market_id: int
    ) -> Market | None: ...

    async def list_priceable_markets(self, db: AsyncSession) -> list[Market]: ...

    async def update_price(self, db: AsyncSession, market_id: int, price_scaled: int) -> None: ...

    async def set_paused(self, db: AsyncSession, market_id: int, paused: bool) -> None: ...
