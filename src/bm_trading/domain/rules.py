"""Pre-submission trade checks. Any failure here means nothing reached the ledger."""

from src.bm_common.enums import BondStatus, TradeSide
from src.bm_common.errors import (
    InvalidTradeAmountError,
    MarketNotActiveError,
    MarketPausedError,
    PriceLimitExceededError,
)
from src.bm_market.domain.models import Market


def check_amount(amount: int) -> None:
    if amount <= 0:
        raise InvalidTradeAmountError(amount)


def check_market_tradable(market: Market) -> None:
    if market.paused:
        raise MarketPausedError(market.id)
    if market.bond_status != BondStatus.ACTIVE.value:
        raise MarketNotActiveError(market.id, market.bond_status)


def check_price_limit(
    side: TradeSide,
    current_price: int,
    max_price: int | None,
    min_price: int | None,
) -> None:
    """buy: reject if current > max. sell: reject if current < min."""
    if side is TradeSide.BUY and max_price is not None and current_price > max_price:
        raise PriceLimitExceededError(side.value, current_price, max_price)
    if side is TradeSide.SELL and min_price is not None and current_price < min_price:
        raise PriceLimitExceededError(side.value, current_price, min_price)
