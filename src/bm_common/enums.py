"""Global enums. Values must match DB CHECK constraints exactly.

Ref: alembic/versions/002_create_bonds_markets.py and siblings.
"""

from enum import Enum


class BondStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    MATURED = "matured"
    DEFAULTED = "defaulted"


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class TradeStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class EventType(str, Enum):
    TRADE = "trade"
    PRICE_UPDATE = "price_update"
    MARKET_INIT = "market_init"
    BOND_MINT = "bond_mint"
    PAUSE = "pause"
    RESUME = "resume"


class ReconciliationResult(str, Enum):
    MATCHED = "matched"
    UNMATCHED_TIMEOUT = "unmatched_timeout"


class PriceSource(str, Enum):
    ORACLE = "oracle"
    TRADE = "trade"
    MANUAL = "manual"
    ASPERO = "aspero"
    FALLBACK = "fallback"


class TransactionKind(str, Enum):
    """Outcome of classifying a ledger transaction by its log lines."""
    TRADE = "trade"
    MARKET_INIT = "market_init"
    PRICE_UPDATE = "price_update"
    UNKNOWN = "unknown"


class SubmissionOutcome(str, Enum):
    """How far a settlement instruction got before it failed."""
    NOT_SUBMITTED = "not_submitted"
    REJECTED = "rejected"
    UNKNOWN = "unknown"


class ServiceStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    ERROR = "error"
