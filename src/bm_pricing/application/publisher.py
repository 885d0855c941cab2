# src/bm_pricing/application/publisher.py
"""Price publisher: feed -> valuation -> bounded update -> notify.

Two entry points share `apply_price_update`:
  run_cycle()               feed pipeline, feed bounds
  submit_oracle_updates()   administrative/oracle path, oracle bounds

A price update is one transaction: lock the market row, validate, update the
price, append price_history, oracle_updates and a price_update system event.
Redis fan-out and the optional on-chain sync happen after the commit; a
failed sync leaves the committed price in place and is reported as a
divergence.
"""
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_common.datetime_utils import utc_now
from src.bm_common.enums import EventType, PriceSource, ServiceStatus
from src.bm_common.errors import (
    AppError,
    MarketNotFoundError,
    PriceChangeRejectedError,
    TradeSubmissionError,
)
from src.bm_common.notifier import CHANNEL_MARKET_STATUS, CHANNEL_PRICE_UPDATES, Notifier
from src.bm_common.scaled import scaled_to_display
from src.bm_ledger.application.submission import submit_instruction
from src.bm_ledger.domain.repository import SettlementProgramProtocol
from src.bm_market.domain.models import Market
from src.bm_market.domain.repository import MarketRepositoryProtocol
from src.bm_market.infrastructure.persistence import MarketRepository
from src.bm_pricing.domain.matching import match_bond
from src.bm_pricing.domain.models import (
    FeedSnapshot,
    OraclePriceUpdate,
    PriceUpdateResult,
    PublisherConfig,
    PublishStats,
)
from src.bm_pricing.domain.repository import PriceWriterProtocol
from src.bm_pricing.domain.validation import (
    PriceBounds,
    signed_change_percent,
    validate_price_move,
)
from src.bm_pricing.domain.valuation import price_from_yield
from src.bm_pricing.infrastructure.feed_client import BondFeedClient
from src.bm_pricing.infrastructure.price_writer import PriceWriter
from src.bm_reconciler.domain.repository import SystemEventRepositoryProtocol
from src.bm_reconciler.infrastructure.events_repository import SystemEventRepository
from src.bm_trading.application.admin import market_details_key
from src.bm_trading.domain.rules import check_market_tradable

logger = logging.getLogger(__name__)

STATUS_KEY = "oracle:status"
SERVICE_NAME = "oracle-publisher"
BOND_DETAILS_PATTERN = "bond:*:details"

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class PricePublisher:
    def __init__(
        self,
        config: PublisherConfig,
        feed: BondFeedClient,
        session_factory: SessionFactory,
        notifier: Notifier | None = None,
        settlement: SettlementProgramProtocol | None = None,
        market_repo: MarketRepositoryProtocol | None = None,
        price_writer: PriceWriterProtocol | None = None,
        events_repo: SystemEventRepositoryProtocol | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._feed = feed
        self._session_factory = session_factory
        self._notifier = notifier
        self._settlement = settlement
        self._markets = market_repo or MarketRepository()
        self._prices = price_writer or PriceWriter()
        self._events = events_repo or SystemEventRepository()
        self._clock = clock

    async def get_status(self) -> dict[str, Any] | None:
        if self._notifier is None:
            return None
        return await self._notifier.read_status(STATUS_KEY)

    # ------------------------------------------------------------------
    # Feed pipeline
    # ------------------------------------------------------------------

    async def run_cycle(self) -> PublishStats:
        stats = PublishStats()
        try:
            snapshot = await self._feed.fetch_bonds()
            stats.source = snapshot.source
            stats.bonds_fetched = len(snapshot.bonds)
            async with self._session_factory() as db:
                markets = await self._markets.list_priceable_markets(db)
        except Exception as e:
            logger.exception("Price cycle aborted before pricing markets")
            stats.aborted = True
            stats.errors += 1
            stats.error_messages.append(str(e))
            await self._write_status(ServiceStatus.ERROR, stats, str(e))
            return stats

        stats.markets_checked = len(markets)
        for market in markets:
            try:
                await self._price_market(market, snapshot, stats)
            except PriceChangeRejectedError as e:
                stats.updates_rejected += 1
                logger.info("Market %d: %s", market.id, e.message)
            except Exception as e:
                stats.errors += 1
                stats.error_messages.append(f"market {market.id}: {e}")
                logger.exception("Price update failed for market %d", market.id)

        logger.info(
            "Price cycle (%s): %d markets, %d matched, %d applied, %d rejected",
            snapshot.source, stats.markets_checked, stats.markets_matched,
            stats.updates_applied, stats.updates_rejected,
        )
        if stats.errors or stats.onchain_sync_failures:
            status = ServiceStatus.DEGRADED
        else:
            status = ServiceStatus.HEALTHY
        await self._write_status(status, stats, "; ".join(stats.error_messages[:5]) or None)
        return stats

    async def _price_market(
        self, market: Market, snapshot: FeedSnapshot, stats: PublishStats
    ) -> None:
        bond = match_bond(market, snapshot.bonds)
        if bond is None:
            return
        stats.markets_matched += 1

        candidate = price_from_yield(
            bond.yield_pct, bond.coupon_pct, bond.maturity, bond.face_value, now=self._clock()
        )
        if snapshot.is_fallback and not self._config.publish_fallback_prices:
            stats.fallback_skipped += 1
            logger.info(
                "Market %d: fallback candidate %d not published", market.id, candidate
            )
            return

        result = await self.apply_price_update(
            market.id, candidate, snapshot.source, self._config.feed_bounds
        )
        stats.updates_applied += 1
        if result.onchain_synced is False:
            stats.onchain_sync_failures += 1

    # ------------------------------------------------------------------
    # Administrative / oracle path
    # ------------------------------------------------------------------

    async def submit_oracle_updates(
        self, updates: list[OraclePriceUpdate]
    ) -> list[PriceUpdateResult]:
        results: list[PriceUpdateResult] = []
        for update in updates:
            if not update.market_id or not update.new_price_scaled:
                results.append(
                    PriceUpdateResult(
                        market_id=update.market_id,
                        success=False,
                        error="Missing required fields",
                    )
                )
                continue
            try:
                PriceSource(update.source)
            except ValueError:
                results.append(
                    PriceUpdateResult(
                        market_id=update.market_id,
                        success=False,
                        new_price=update.new_price_scaled,
                        error=f"Unknown price source: {update.source}",
                    )
                )
                continue
            try:
                result = await self.apply_price_update(
                    update.market_id,
                    update.new_price_scaled,
                    update.source,
                    self._config.oracle_bounds,
                )
            except AppError as e:
                result = PriceUpdateResult(
                    market_id=update.market_id,
                    success=False,
                    new_price=update.new_price_scaled,
                    change_percent=getattr(e, "change_pct", None),
                    error=e.message,
                )
            except Exception:
                logger.exception("Oracle update failed for market %d", update.market_id)
                result = PriceUpdateResult(
                    market_id=update.market_id,
                    success=False,
                    new_price=update.new_price_scaled,
                    error="Internal error",
                )
            results.append(result)
        return results

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    async def apply_price_update(
        self,
        market_id: int,
        new_price_scaled: int,
        source: str,
        bounds: PriceBounds,
    ) -> PriceUpdateResult:
        """Raises PriceChangeRejectedError or a market error; nothing is written then."""
        async with self._session_factory() as db:
            try:
                market = await self._markets.get_market_for_update(db, market_id)
                if market is None:
                    raise MarketNotFoundError(market_id)
                check_market_tradable(market)

                old_price = market.price_per_token_scaled
                validate_price_move(old_price, new_price_scaled, bounds, market_id=market_id)
                change_pct = signed_change_percent(old_price, new_price_scaled)

                await self._markets.update_price(db, market_id, new_price_scaled)
                await self._prices.insert_history(db, market_id, new_price_scaled, source)
                update_id = await self._prices.insert_oracle_update(
                    db, market_id, old_price, new_price_scaled, source
                )
                await self._events.insert_event(
                    db,
                    EventType.PRICE_UPDATE.value,
                    str(market_id),
                    None,
                    {
                        "market_id": market_id,
                        "old_price": old_price,
                        "new_price": new_price_scaled,
                        "source": source,
                        "change_percent": change_pct,
                    },
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info(
            "Market %d price %s -> %s (%+.4f%%, source=%s)",
            market_id, scaled_to_display(old_price), scaled_to_display(new_price_scaled),
            change_pct, source,
        )
        result = PriceUpdateResult(
            market_id=market_id,
            success=True,
            old_price=old_price,
            new_price=new_price_scaled,
            change_percent=change_pct,
            oracle_update_id=update_id,
        )
        await self._notify_price(market, result, source)

        if self._config.onchain_sync_enabled and self._settlement is not None:
            await self._sync_onchain(self._settlement, market, new_price_scaled, result)
        return result

    async def _notify_price(
        self, market: Market, result: PriceUpdateResult, source: str
    ) -> None:
        if self._notifier is None:
            return
        await self._notifier.invalidate(market_details_key(market.id), BOND_DETAILS_PATTERN)
        await self._notifier.publish(
            CHANNEL_PRICE_UPDATES,
            "price_update",
            {
                "market_id": market.id,
                "bond_mint": market.bond_mint,
                "old_price_scaled": result.old_price,
                "new_price_scaled": result.new_price,
                "source": source,
                "change_percent": result.change_percent,
            },
        )

    async def _sync_onchain(
        self,
        settlement: SettlementProgramProtocol,
        market: Market,
        new_price_scaled: int,
        result: PriceUpdateResult,
    ) -> None:
        try:
            signature = await submit_instruction(
                "update_price",
                settlement.update_price(market, new_price_scaled),
                self._config.settlement_timeout_seconds,
            )
        except TradeSubmissionError as e:
            result.onchain_synced = False
            logger.error(
                "On-chain price sync failed for market %d; ledger price diverges from %d: %s",
                market.id, new_price_scaled, e.message,
            )
            if self._notifier is not None:
                await self._notifier.publish(
                    CHANNEL_MARKET_STATUS,
                    "price_divergence",
                    {
                        "market_id": market.id,
                        "database_price_scaled": new_price_scaled,
                        "oracle_update_id": result.oracle_update_id,
                        "outcome": e.outcome.value,
                        "error": e.message,
                    },
                )
            return

        result.onchain_synced = True
        result.tx_signature = signature
        if result.oracle_update_id is not None:
            try:
                async with self._session_factory() as db:
                    await self._prices.set_oracle_tx_signature(
                        db, result.oracle_update_id, signature
                    )
                    await db.commit()
            except Exception:
                logger.exception(
                    "Could not record signature %s on oracle update %d",
                    signature, result.oracle_update_id,
                )
        logger.info("Market %d price synced on-chain (sig=%s)", market.id, signature)

    async def _write_status(
        self, status: ServiceStatus, stats: PublishStats, error: str | None
    ) -> None:
        if self._notifier is None:
            return
        await self._notifier.write_status(
            STATUS_KEY,
            {
                "status": status.value,
                "last_run": self._clock().isoformat(),
                "counts": stats.counts(),
                "error": error,
                "source": stats.source,
                "service": SERVICE_NAME,
            },
            self._config.status_ttl_seconds,
        )
