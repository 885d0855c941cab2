"""Domain models for bm_pricing."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from config.settings import Settings
from src.bm_common.enums import PriceSource
from src.bm_pricing.domain.validation import (
    FEED_PRICE_BOUNDS,
    ORACLE_PRICE_BOUNDS,
    PriceBounds,
)


@dataclass(frozen=True)
class ExternalBond:
    identifier: str | None           # ISIN
    feed_id: str | None
    name: str
    yield_pct: float
    coupon_pct: float
    maturity: date
    face_value: float


@dataclass(frozen=True)
class FeedSnapshot:
    source: str                      # PriceSource value: aspero or fallback
    bonds: tuple[ExternalBond, ...]
    fetched_at: datetime

    @property
    def is_fallback(self) -> bool:
        return self.source == PriceSource.FALLBACK.value


@dataclass(frozen=True)
class OraclePriceUpdate:
    market_id: int
    new_price_scaled: int
    source: str = PriceSource.ORACLE.value


@dataclass
class PriceUpdateResult:
    market_id: int
    success: bool
    old_price: int | None = None
    new_price: int | None = None
    change_percent: float | None = None
    error: str | None = None
    oracle_update_id: int | None = None
    # None: sync disabled; False: DB updated but ledger price diverges
    onchain_synced: bool | None = None
    tx_signature: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "success": self.success,
            "old_price": self.old_price,
            "new_price": self.new_price,
            "change_percent": self.change_percent,
            "error": self.error,
        }


@dataclass
class PublishStats:
    source: str | None = None
    bonds_fetched: int = 0
    markets_checked: int = 0
    markets_matched: int = 0
    updates_applied: int = 0
    updates_rejected: int = 0
    fallback_skipped: int = 0
    onchain_sync_failures: int = 0
    errors: int = 0
    aborted: bool = False
    error_messages: list[str] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "bonds_fetched": self.bonds_fetched,
            "markets_checked": self.markets_checked,
            "markets_matched": self.markets_matched,
            "updates_applied": self.updates_applied,
            "updates_rejected": self.updates_rejected,
            "fallback_skipped": self.fallback_skipped,
            "onchain_sync_failures": self.onchain_sync_failures,
            "errors": self.errors,
        }


@dataclass(frozen=True)
class FeedConfig:
    base_url: str
    home_path: str = "/bff/api/v1/home"
    bearer_token: str = ""
    user_id: str = ""
    product_id: str = ""
    channel: str = "invest"
    user_category: str = "KYC_PENDING"
    device_platform: str = "web"
    pin_token: str = ""
    timeout_seconds: float = 10.0

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.bearer_token)

    @property
    def url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.home_path}"

    @classmethod
    def from_settings(cls, s: Settings) -> "FeedConfig":
        return cls(
            base_url=s.FEED_BASE_URL,
            home_path=s.FEED_HOME_PATH,
            bearer_token=s.FEED_BEARER_TOKEN,
            user_id=s.FEED_USER_ID,
            product_id=s.FEED_PRODUCT_ID,
            channel=s.FEED_CHANNEL,
            user_category=s.FEED_USER_CATEGORY,
            device_platform=s.FEED_DEVICE_PLATFORM,
            pin_token=s.FEED_PIN_TOKEN,
            timeout_seconds=s.FEED_TIMEOUT_SECONDS,
        )


@dataclass(frozen=True)
class PublisherConfig:
    feed_bounds: PriceBounds = FEED_PRICE_BOUNDS
    oracle_bounds: PriceBounds = ORACLE_PRICE_BOUNDS
    publish_fallback_prices: bool = False
    onchain_sync_enabled: bool = False
    status_ttl_seconds: int = 300
    settlement_timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, s: Settings) -> "PublisherConfig":
        return cls(
            feed_bounds=PriceBounds(s.FEED_MIN_CHANGE_PCT, s.FEED_MAX_CHANGE_PCT),
            oracle_bounds=PriceBounds(s.ORACLE_MIN_CHANGE_PCT, s.ORACLE_MAX_CHANGE_PCT),
            publish_fallback_prices=s.PUBLISH_FALLBACK_PRICES,
            onchain_sync_enabled=s.ONCHAIN_PRICE_SYNC_ENABLED,
            status_ttl_seconds=s.STATUS_TTL_SECONDS,
            settlement_timeout_seconds=s.SETTLEMENT_SUBMIT_TIMEOUT_SECONDS,
        )
