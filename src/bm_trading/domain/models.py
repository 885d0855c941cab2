"""Domain models for bm_trading: plain dataclasses."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.bm_common.enums import TradeSide


@dataclass
class Trade:
    id: int
    tx_signature: str
    market_id: int
    user_wallet: str
    side: str                        # TradeSide value
    amount: int
    price_scaled: int
    total_value: int                 # floor(amount * price_scaled / PRICE_SCALE)
    status: str                      # TradeStatus value
    block_height: int | None = None  # slot of the confirming transaction
    created_at: datetime | None = None
    confirmed_at: datetime | None = None

    def to_event_data(self) -> dict[str, Any]:
        return {
            "trade_id": self.id,
            "tx_signature": self.tx_signature,
            "market_id": self.market_id,
            "user_wallet": self.user_wallet,
            "side": self.side,
            "amount": self.amount,
            "price_scaled": self.price_scaled,
            "total_value": self.total_value,
            "status": self.status,
        }


@dataclass
class Position:
    wallet_address: str
    bond_id: int
    quantity_scaled: int = 0
    avg_price_scaled: int = 0        # volume-weighted average cost, scaled
    total_cost: int = 0              # cost basis of the remaining quantity


@dataclass(frozen=True)
class TradeRequest:
    market_id: int
    trader: str                      # wallet address of the signer
    side: TradeSide
    amount: int
    max_price_scaled: int | None = None   # buy only
    min_price_scaled: int | None = None   # sell only
    # Set when the trader already signed and submitted from their wallet.
    tx_signature: str | None = None


@dataclass(frozen=True)
class TradeReceipt:
    trade: Trade
    market_pda: str
    submitted_by_executor: bool
