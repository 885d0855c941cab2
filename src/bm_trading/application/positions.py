# src/bm_trading/application/positions.py
"""Applies a confirmed trade to the trader's position.

Runs inside the caller's transaction and never commits; the caller
invalidates `portfolio_cache_key(wallet)` after its own commit.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_common.enums import TradeSide
from src.bm_common.errors import MarketNotFoundError
from src.bm_market.domain.repository import MarketRepositoryProtocol
from src.bm_market.infrastructure.persistence import MarketRepository
from src.bm_trading.domain.models import Position, Trade
from src.bm_trading.domain.position_math import apply_trade
from src.bm_trading.domain.repository import PositionRepositoryProtocol
from src.bm_trading.infrastructure.positions_repository import PositionsRepository

logger = logging.getLogger(__name__)


def portfolio_cache_key(wallet: str) -> str:
    return f"portfolio:{wallet}"


class PositionUpdater:
    def __init__(
        self,
        market_repo: MarketRepositoryProtocol | None = None,
        positions_repo: PositionRepositoryProtocol | None = None,
    ) -> None:
        self._markets = market_repo or MarketRepository()
        self._positions = positions_repo or PositionsRepository()

    async def apply_confirmed_trade(self, db: AsyncSession, trade: Trade) -> Position | None:
        market = await self._markets.get_market_by_id(db, trade.market_id)
        if market is None:
            raise MarketNotFoundError(trade.market_id)

        current = await self._positions.get_for_update(db, trade.user_wallet, market.bond_id)
        updated = apply_trade(
            current,
            trade.user_wallet,
            market.bond_id,
            TradeSide(trade.side),
            trade.amount,
            trade.total_value,
        )
        if updated is None:
            if current is not None:
                await self._positions.delete(db, trade.user_wallet, market.bond_id)
                logger.info("Position closed: %s on bond %d", trade.user_wallet, market.bond_id)
            return None

        await self._positions.upsert(db, updated)
        return updated
