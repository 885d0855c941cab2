# src/bm_trading/application/admin.py
"""Administrative market instructions: pause and initialize."""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_common.enums import EventType
from src.bm_common.errors import MarketNotFoundError
from src.bm_common.notifier import CHANNEL_MARKET_STATUS, Notifier
from src.bm_common.scaled import validate_scaled_price
from src.bm_ledger.application.submission import submit_instruction
from src.bm_ledger.domain.repository import SettlementProgramProtocol
from src.bm_market.domain.models import Market
from src.bm_market.domain.repository import MarketRepositoryProtocol
from src.bm_market.infrastructure.persistence import MarketRepository
from src.bm_reconciler.domain.repository import SystemEventRepositoryProtocol
from src.bm_reconciler.infrastructure.events_repository import SystemEventRepository

logger = logging.getLogger(__name__)


def market_details_key(market_id: int) -> str:
    return f"market:{market_id}:details"


class MarketAdminService:
    def __init__(
        self,
        settlement: SettlementProgramProtocol,
        notifier: Notifier | None = None,
        market_repo: MarketRepositoryProtocol | None = None,
        events_repo: SystemEventRepositoryProtocol | None = None,
        submit_timeout_seconds: float = 30.0,
    ) -> None:
        self._settlement = settlement
        self._notifier = notifier
        self._markets = market_repo or MarketRepository()
        self._events = events_repo or SystemEventRepository()
        self._submit_timeout = submit_timeout_seconds

    async def _load(self, db: AsyncSession, market_id: int) -> Market:
        market = await self._markets.get_market_by_id(db, market_id)
        if market is None:
            raise MarketNotFoundError(market_id)
        return market

    async def pause_market(self, db: AsyncSession, market_id: int) -> str | None:
        """Returns the settlement signature, or None if the market was already paused."""
        market = await self._load(db, market_id)
        if market.paused:
            logger.info("Market %d already paused", market_id)
            return None

        signature = await submit_instruction(
            "pause", self._settlement.pause(market), self._submit_timeout
        )
        try:
            await self._markets.set_paused(db, market_id, True)
            # pause events are audit-only; the reconciler never matches them
            await self._events.insert_event(
                db,
                EventType.PAUSE.value,
                str(market_id),
                signature,
                {"market_id": market_id, "market_pda": market.market_pda},
                processed=True,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Market %d paused (sig=%s)", market_id, signature)
        if self._notifier is not None:
            await self._notifier.invalidate(market_details_key(market_id))
            await self._notifier.publish(
                CHANNEL_MARKET_STATUS,
                "market_paused",
                {"market_id": market_id, "paused": True, "tx_signature": signature},
            )
        return signature

    async def initialize_market(
        self, db: AsyncSession, market_id: int, price_scaled: int
    ) -> str:
        validate_scaled_price(price_scaled)
        market = await self._load(db, market_id)

        signature = await submit_instruction(
            "initialize_market",
            self._settlement.initialize_market(market, price_scaled),
            self._submit_timeout,
        )
        try:
            await self._events.insert_event(
                db,
                EventType.MARKET_INIT.value,
                str(market_id),
                signature,
                {
                    "market_id": market_id,
                    "market_pda": market.market_pda,
                    "bond_mint": market.bond_mint,
                    "price_scaled": price_scaled,
                },
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Market %d initialize submitted (sig=%s)", market_id, signature)
        if self._notifier is not None:
            await self._notifier.publish(
                CHANNEL_MARKET_STATUS,
                "market_initialized",
                {"market_id": market_id, "price_scaled": price_scaled, "tx_signature": signature},
            )
        return signature
