"""Market <-> external bond matching: exact ISIN first, then name containment."""

from collections.abc import Iterable

from src.bm_market.domain.models import Market
from src.bm_pricing.domain.models import ExternalBond


def match_bond(market: Market, bonds: Iterable[ExternalBond]) -> ExternalBond | None:
    candidates = list(bonds)
    if market.isin:
        for bond in candidates:
            if bond.identifier and bond.identifier == market.isin:
                return bond

    market_name = market.name.strip().lower()
    if not market_name:
        return None
    for bond in candidates:
        bond_name = bond.name.strip().lower()
        if bond_name and (market_name in bond_name or bond_name in market_name):
            return bond
    return None
