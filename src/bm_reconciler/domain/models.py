"""Domain models for bm_reconciler."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from config.settings import Settings
from src.bm_common.enums import EventType


@dataclass
class SystemEvent:
    id: int
    event_type: str                  # EventType value
    entity_id: str | None            # trade id, market id, ... depending on type
    tx_signature: str | None
    data: dict[str, Any]
    processed: bool
    created_at: datetime
    processed_at: datetime | None = None
    reconciliation_result: str | None = None


RECONCILABLE_EVENT_TYPES: tuple[str, ...] = (
    EventType.TRADE.value,
    EventType.PRICE_UPDATE.value,
    EventType.MARKET_INIT.value,
)


@dataclass(frozen=True)
class ReconcilerConfig:
    program_id: str
    batch_size: int = 100
    transaction_limit: int = 20
    stale_after_seconds: int = 3600
    status_ttl_seconds: int = 300
    # price_update events from these sources originate off-chain
    off_chain_price_sources: frozenset[str] = frozenset({"oracle", "aspero", "manual", "fallback"})

    @classmethod
    def from_settings(cls, s: Settings) -> "ReconcilerConfig":
        return cls(
            program_id=s.SETTLEMENT_PROGRAM_ID,
            batch_size=s.RECONCILER_BATCH_SIZE,
            transaction_limit=s.LEDGER_TRANSACTION_FETCH_LIMIT,
            stale_after_seconds=s.RECONCILER_STALE_AFTER_SECONDS,
            status_ttl_seconds=s.STATUS_TTL_SECONDS,
        )


@dataclass
class CycleStats:
    """Counts published to the status key after every cycle."""

    events_loaded: int = 0
    events_matched: int = 0
    events_expired: int = 0          # processed without ever matching
    events_pending: int = 0
    transactions_checked: int = 0
    trades_confirmed: int = 0
    trades_failed: int = 0
    missing_events_created: int = 0
    errors: int = 0
    aborted: bool = False
    error_messages: list[str] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "events_loaded": self.events_loaded,
            "events_matched": self.events_matched,
            "events_expired": self.events_expired,
            "events_pending": self.events_pending,
            "transactions_checked": self.transactions_checked,
            "trades_confirmed": self.trades_confirmed,
            "trades_failed": self.trades_failed,
            "missing_events_created": self.missing_events_created,
            "errors": self.errors,
        }
