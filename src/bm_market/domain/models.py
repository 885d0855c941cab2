"""Domain models for bm_market. Plain dataclasses."""

from dataclasses import dataclass


@dataclass
class Market:
    id: int
    bond_id: int
    market_pda: str
    price_per_token_scaled: int      # PRICE_SCALE fixed point, always > 0
    paused: bool
    vault_bond_account: str
    vault_usdc_account: str
    admin_pubkey: str
    # Joined from bonds
    bond_mint: str
    bond_status: str
    isin: str | None
    name: str
    issuer: str
