# src/bm_trading/application/executor.py
"""Trade execution: validate, submit to the settlement program, record pending.

The trade row and its `trade` audit event are written in one commit. The
reconciler later moves the trade to confirmed/failed once the settlement
signature shows up on the ledger.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_common.enums import EventType, TradeSide
from src.bm_common.errors import (
    DuplicateSignatureError,
    LedgerOutcomeUnknownError,
    MarketNotFoundError,
)
from src.bm_common.notifier import CHANNEL_TRADES, Notifier
from src.bm_common.scaled import calc_total_value
from src.bm_ledger.application.submission import submit_instruction
from src.bm_ledger.domain.repository import SettlementProgramProtocol
from src.bm_market.domain.models import Market
from src.bm_market.domain.repository import MarketRepositoryProtocol
from src.bm_market.infrastructure.persistence import MarketRepository
from src.bm_reconciler.domain.repository import SystemEventRepositoryProtocol
from src.bm_reconciler.infrastructure.events_repository import SystemEventRepository
from src.bm_trading.domain.models import Trade, TradeReceipt, TradeRequest
from src.bm_trading.domain.repository import TradeRepositoryProtocol
from src.bm_trading.domain.rules import check_amount, check_market_tradable, check_price_limit
from src.bm_trading.infrastructure.trades_repository import TradesRepository

logger = logging.getLogger(__name__)


def trades_cache_pattern(wallet: str) -> str:
    return f"trades:{wallet}:*"


class TradeExecutor:
    def __init__(
        self,
        settlement: SettlementProgramProtocol,
        notifier: Notifier | None = None,
        market_repo: MarketRepositoryProtocol | None = None,
        trades_repo: TradeRepositoryProtocol | None = None,
        events_repo: SystemEventRepositoryProtocol | None = None,
        submit_timeout_seconds: float = 30.0,
    ) -> None:
        self._settlement = settlement
        self._notifier = notifier
        self._markets = market_repo or MarketRepository()
        self._trades = trades_repo or TradesRepository()
        self._events = events_repo or SystemEventRepository()
        self._submit_timeout = submit_timeout_seconds

    async def execute(self, request: TradeRequest, db: AsyncSession) -> TradeReceipt:
        check_amount(request.amount)

        market = await self._markets.get_market_by_id(db, request.market_id)
        if market is None:
            raise MarketNotFoundError(request.market_id)
        check_market_tradable(market)

        price = market.price_per_token_scaled
        check_price_limit(
            request.side, price, request.max_price_scaled, request.min_price_scaled
        )
        total_value = calc_total_value(request.amount, price)

        if request.tx_signature:
            # Wallet flow: the trader already signed and submitted.
            existing = await self._trades.get_by_signature(db, request.tx_signature)
            if existing is not None:
                raise DuplicateSignatureError(request.tx_signature)
            signature = request.tx_signature
            submitted_by_executor = False
        else:
            try:
                signature = await self._submit(market, request)
            except LedgerOutcomeUnknownError as e:
                if e.signature:
                    await self._record(db, e.signature, request, price, total_value, True)
                    logger.warning(
                        "Trade %s on market %d recorded pending with unknown outcome",
                        e.signature, market.id,
                    )
                raise
            submitted_by_executor = True

        trade = await self._record(
            db, signature, request, price, total_value, submitted_by_executor
        )
        logger.info(
            "Trade %d recorded pending: %s %d on market %d at %d (sig=%s)",
            trade.id, trade.side, trade.amount, market.id, price, signature,
        )
        await self._notify(trade)
        return TradeReceipt(
            trade=trade,
            market_pda=market.market_pda,
            submitted_by_executor=submitted_by_executor,
        )

    async def _submit(self, market: Market, request: TradeRequest) -> str:
        if request.side is TradeSide.BUY:
            call = self._settlement.buy(market, request.trader, request.amount)
        else:
            call = self._settlement.sell(market, request.trader, request.amount)
        return await submit_instruction(
            f"settlement {request.side.value}", call, self._submit_timeout
        )

    async def _record(
        self,
        db: AsyncSession,
        signature: str,
        request: TradeRequest,
        price: int,
        total_value: int,
        submitted_by_executor: bool,
    ) -> Trade:
        try:
            trade = await self._trades.insert_pending(
                db,
                tx_signature=signature,
                market_id=request.market_id,
                user_wallet=request.trader,
                side=request.side.value,
                amount=request.amount,
                price_scaled=price,
                total_value=total_value,
            )
            if trade is None:
                raise DuplicateSignatureError(signature)
            await self._events.insert_event(
                db,
                EventType.TRADE.value,
                str(trade.id),
                signature,
                {**trade.to_event_data(), "submitted_by_executor": submitted_by_executor},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return trade

    async def _notify(self, trade: Trade) -> None:
        if self._notifier is None:
            return
        await self._notifier.invalidate(trades_cache_pattern(trade.user_wallet))
        await self._notifier.publish(CHANNEL_TRADES, "trade_pending", trade.to_event_data())
