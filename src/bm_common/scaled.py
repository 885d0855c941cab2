"""Fixed-point arithmetic for scaled prices.

All prices are int scaled by PRICE_SCALE (1_000_000 = 1 unit of quote
currency). Floats only appear at the valuation boundary.
"""

PRICE_SCALE = 1_000_000


def validate_scaled_price(price_scaled: int) -> None:
    """Validate that a scaled price is a positive integer."""
    if isinstance(price_scaled, bool) or not isinstance(price_scaled, int):
        raise ValueError(f"Scaled price must be int, got {type(price_scaled).__name__}")
    if price_scaled <= 0:
        raise ValueError(f"Scaled price must be positive, got {price_scaled}")


def scaled_to_display(price_scaled: int) -> str:
    """1_050_000 -> '1.050000'."""
    sign = "-" if price_scaled < 0 else ""
    value = abs(price_scaled)
    return f"{sign}{value // PRICE_SCALE:,}.{value % PRICE_SCALE:06d}"


def calc_total_value(amount: int, price_scaled: int) -> int:
    """total = floor(amount * price_scaled / PRICE_SCALE)."""
    return (amount * price_scaled) // PRICE_SCALE


def calc_avg_price(total_cost: int, quantity: int) -> int:
    """Volume-weighted average price, scaled: floor(total_cost * SCALE / quantity)."""
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")
    return (total_cost * PRICE_SCALE) // quantity


def change_percent(current_scaled: int, candidate_scaled: int) -> float:
    """|candidate - current| / current * 100."""
    if current_scaled <= 0:
        raise ValueError(f"current price must be positive, got {current_scaled}")
    return abs(candidate_scaled - current_scaled) / current_scaled * 100
