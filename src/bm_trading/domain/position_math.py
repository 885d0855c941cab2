"""Incremental position arithmetic for one confirmed trade.

Buys add quantity and cost; the average is recomputed from the totals.
Sells remove quantity at the current average cost, so the average of the
remaining holding does not move. A position at zero quantity is removed
(returned as None).
"""

import logging

from src.bm_common.enums import TradeSide
from src.bm_common.scaled import PRICE_SCALE, calc_avg_price
from src.bm_trading.domain.models import Position

logger = logging.getLogger(__name__)


def apply_trade(
    current: Position | None,
    wallet: str,
    bond_id: int,
    side: TradeSide,
    amount: int,
    total_value: int,
) -> Position | None:
    if side is TradeSide.BUY:
        qty = (current.quantity_scaled if current else 0) + amount
        cost = (current.total_cost if current else 0) + total_value
        return Position(
            wallet_address=wallet,
            bond_id=bond_id,
            quantity_scaled=qty,
            avg_price_scaled=calc_avg_price(cost, qty),
            total_cost=cost,
        )

    if current is None:
        logger.warning(
            "Sell of %d by %s on bond %d with no local position", amount, wallet, bond_id
        )
        return None

    remaining = current.quantity_scaled - amount
    if remaining <= 0:
        if remaining < 0:
            logger.warning(
                "Sell of %d by %s exceeds held %d on bond %d; closing position",
                amount, wallet, current.quantity_scaled, bond_id,
            )
        return None

    released_cost = (current.avg_price_scaled * amount) // PRICE_SCALE
    return Position(
        wallet_address=wallet,
        bond_id=bond_id,
        quantity_scaled=remaining,
        avg_price_scaled=current.avg_price_scaled,
        total_cost=max(current.total_cost - released_cost, 0),
    )
