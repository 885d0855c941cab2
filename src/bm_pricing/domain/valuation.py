"""Simplified discounted-cash-flow bond pricing.

    n     = years to maturity (days / 365.25)
    r     = yield / 100
    c     = coupon / 100 * face
    price = c * (1 - (1 + r)^-n) / r + face / (1 + r)^n

Annual compounding, no day-count convention, no accrued interest. This is an
estimator for nudging market prices, not a pricing engine.
"""

import logging
import math
from datetime import date, datetime, time, timezone

from src.bm_common.datetime_utils import ensure_aware, utc_now
from src.bm_common.scaled import PRICE_SCALE

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.25
_SECONDS_PER_YEAR = DAYS_PER_YEAR * 24 * 60 * 60


def years_to_maturity(maturity: date | datetime, now: datetime) -> float:
    if isinstance(maturity, datetime):
        maturity_at = ensure_aware(maturity)
    else:
        maturity_at = datetime.combine(maturity, time.min, tzinfo=timezone.utc)
    return (maturity_at - ensure_aware(now)).total_seconds() / _SECONDS_PER_YEAR


def price_from_yield(
    yield_pct: float,
    coupon_pct: float,
    maturity: date | datetime,
    face_value: float,
    now: datetime | None = None,
) -> int:
    """Present value per unit, scaled by PRICE_SCALE.

    Matured bonds and any arithmetic failure return the scaled face value.
    """
    scaled_face = math.floor(face_value * PRICE_SCALE)
    n = years_to_maturity(maturity, now or utc_now())
    if n <= 0:
        return scaled_face

    r = yield_pct / 100
    c = coupon_pct / 100 * face_value
    if 1 + r <= 0:
        logger.warning("Yield %.4f%% out of range, using face value", yield_pct)
        return scaled_face
    try:
        growth = (1 + r) ** n
        price = c * (1 - 1 / growth) / r + face_value / growth
    except (ZeroDivisionError, OverflowError) as e:
        logger.warning(
            "Valuation failed (yield=%s coupon=%s n=%.4f): %s; using face value",
            yield_pct, coupon_pct, n, e,
        )
        return scaled_face

    if not math.isfinite(price):
        logger.warning("Non-finite valuation for yield=%s coupon=%s", yield_pct, coupon_pct)
        return scaled_face
    return math.floor(price * PRICE_SCALE)
