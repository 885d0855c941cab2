"""Bounded price moves.

Two entry points, two bounds, both exclusive on each side:
  feed pipeline:           0.1% < |change| < 10%
  oracle / admin path:     0%   < |change| < 20%
"""

from dataclasses import dataclass

from src.bm_common.errors import PriceChangeRejectedError
from src.bm_common.scaled import change_percent


@dataclass(frozen=True)
class PriceBounds:
    min_change_pct: float
    max_change_pct: float

    def accepts(self, change_pct: float) -> bool:
        return self.min_change_pct < change_pct < self.max_change_pct


FEED_PRICE_BOUNDS = PriceBounds(min_change_pct=0.1, max_change_pct=10.0)
ORACLE_PRICE_BOUNDS = PriceBounds(min_change_pct=0.0, max_change_pct=20.0)


def validate_price_move(
    current_scaled: int,
    candidate_scaled: int,
    bounds: PriceBounds,
    market_id: int = 0,
) -> float:
    """Return |change %| or raise PriceChangeRejectedError."""
    if current_scaled <= 0:
        raise PriceChangeRejectedError(market_id, None, "current price is not positive")
    if candidate_scaled <= 0:
        raise PriceChangeRejectedError(market_id, None, "candidate price is not positive")

    pct = change_percent(current_scaled, candidate_scaled)
    if bounds.accepts(pct):
        return pct
    if pct <= bounds.min_change_pct:
        reason = f"change not above {bounds.min_change_pct}%"
    else:
        reason = f"change not below {bounds.max_change_pct}%"
    raise PriceChangeRejectedError(market_id, pct, reason)


def signed_change_percent(current_scaled: int, candidate_scaled: int) -> float:
    return (candidate_scaled - current_scaled) / current_scaled * 100
