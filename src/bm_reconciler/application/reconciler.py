# src/bm_reconciler/application/reconciler.py
"""Event reconciler: matches unprocessed system events against recent ledger
transactions and settles pending trades.

Per-event state machine:
    unprocessed -> matched            (signature or content match)
    unprocessed -> unmatched_timeout  (older than the stale threshold)
Events that neither match nor expire stay unprocessed for the next cycle.

Each event is handled in its own session, so one bad event never rolls back
the rest of the batch. Redis notifications are sent after that session commits.
"""
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_common.datetime_utils import ensure_aware, utc_now
from src.bm_common.enums import (
    EventType,
    ReconciliationResult,
    ServiceStatus,
    TransactionKind,
)
from src.bm_common.errors import LedgerRpcError
from src.bm_common.notifier import CHANNEL_PRICE_UPDATES, CHANNEL_TRADES, Notifier
from src.bm_ledger.domain.classifier import classify_transaction
from src.bm_ledger.domain.models import LedgerTransaction
from src.bm_ledger.domain.repository import LedgerClientProtocol
from src.bm_reconciler.domain.models import (
    RECONCILABLE_EVENT_TYPES,
    CycleStats,
    ReconcilerConfig,
    SystemEvent,
)
from src.bm_reconciler.domain.repository import SystemEventRepositoryProtocol
from src.bm_reconciler.infrastructure.events_repository import SystemEventRepository
from src.bm_trading.application.executor import trades_cache_pattern
from src.bm_trading.application.positions import PositionUpdater, portfolio_cache_key
from src.bm_trading.domain.models import Trade
from src.bm_trading.domain.repository import TradeRepositoryProtocol
from src.bm_trading.infrastructure.trades_repository import TradesRepository

logger = logging.getLogger(__name__)

STATUS_KEY = "reconciler:status"
LAST_SLOT_KEY = "reconciler:last_slot"
SERVICE_NAME = "event-reconciler"

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass
class _CycleContext:
    """State shared by every event within one cycle."""

    transactions: list[LedgerTransaction]
    by_signature: dict[str, LedgerTransaction]
    # signatures already owned by an event in this batch
    batch_signatures: set[str]
    claimed: set[str] = field(default_factory=set)


@dataclass
class _Notifications:
    invalidate: list[str] = field(default_factory=list)
    publish: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)


class EventReconciler:
    def __init__(
        self,
        config: ReconcilerConfig,
        ledger: LedgerClientProtocol,
        session_factory: SessionFactory,
        notifier: Notifier | None = None,
        events_repo: SystemEventRepositoryProtocol | None = None,
        trades_repo: TradeRepositoryProtocol | None = None,
        position_updater: PositionUpdater | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._session_factory = session_factory
        self._notifier = notifier
        self._events = events_repo or SystemEventRepository()
        self._trades = trades_repo or TradesRepository()
        self._positions = position_updater or PositionUpdater()
        self._clock = clock
        self._last_processed_slot = 0

    @property
    def last_processed_slot(self) -> int:
        return self._last_processed_slot

    async def start(self) -> None:
        """Reload the highest slot seen by a previous run."""
        if self._notifier is None:
            return
        raw = await self._notifier.get_value(LAST_SLOT_KEY)
        try:
            self._last_processed_slot = int(raw) if raw else 0
        except ValueError:
            logger.warning("Ignoring malformed %s value %r", LAST_SLOT_KEY, raw)
            self._last_processed_slot = 0
        logger.info("Reconciler resuming from slot %d", self._last_processed_slot)

    async def get_status(self) -> dict[str, Any] | None:
        if self._notifier is None:
            return None
        return await self._notifier.read_status(STATUS_KEY)

    async def run_cycle(self) -> CycleStats:
        stats = CycleStats()

        try:
            async with self._session_factory() as db:
                events = await self._events.list_unprocessed(
                    db, RECONCILABLE_EVENT_TYPES, self._config.batch_size
                )
            transactions = await self._ledger.get_recent_transactions(
                self._config.program_id, self._config.transaction_limit
            )
        except LedgerRpcError as e:
            logger.error("Reconciliation cycle aborted: %s", e.message)
            return await self._abort(stats, e.message)
        except Exception as e:
            logger.exception("Reconciliation cycle aborted while loading events")
            return await self._abort(stats, str(e))

        stats.events_loaded = len(events)
        stats.transactions_checked = len(transactions)
        logger.info(
            "Reconciling %d events against %d ledger transactions",
            len(events), len(transactions),
        )

        ctx = _CycleContext(
            transactions=transactions,
            by_signature={tx.signature: tx for tx in transactions},
            batch_signatures={e.tx_signature for e in events if e.tx_signature},
        )
        for event in events:
            try:
                await self._process_event(event, ctx, stats)
            except Exception as e:
                stats.errors += 1
                stats.error_messages.append(f"event {event.id}: {e}")
                logger.exception("Failed to reconcile event %d (%s)", event.id, event.event_type)

        try:
            await self._create_missing_events(transactions, stats)
        except Exception as e:
            stats.errors += 1
            stats.error_messages.append(f"missing events: {e}")
            logger.exception("Failed to record missing ledger events")

        await self._advance_slot(transactions)

        if stats.events_expired:
            logger.warning(
                "%d events expired unmatched after %ds",
                stats.events_expired, self._config.stale_after_seconds,
            )
        status = ServiceStatus.DEGRADED if stats.errors else ServiceStatus.HEALTHY
        error = "; ".join(stats.error_messages[:5]) or None
        await self._write_status(status, stats, error)
        return stats

    # ------------------------------------------------------------------
    # Per event
    # ------------------------------------------------------------------

    async def _process_event(
        self, event: SystemEvent, ctx: _CycleContext, stats: CycleStats
    ) -> None:
        notes = _Notifications()
        async with self._session_factory() as db:
            try:
                matched = await self._match_event(db, event, ctx, stats, notes)
                if matched:
                    await self._events.mark_processed(
                        db, event.id, ReconciliationResult.MATCHED.value
                    )
                    stats.events_matched += 1
                elif self._is_stale(event):
                    await self._events.mark_processed(
                        db, event.id, ReconciliationResult.UNMATCHED_TIMEOUT.value
                    )
                    stats.events_expired += 1
                    logger.warning(
                        "Event %d (%s) expired without a ledger match",
                        event.id, event.event_type,
                    )
                else:
                    stats.events_pending += 1
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        await self._send(notes)

    async def _match_event(
        self,
        db: AsyncSession,
        event: SystemEvent,
        ctx: _CycleContext,
        stats: CycleStats,
        notes: _Notifications,
    ) -> bool:
        if event.tx_signature:
            tx = ctx.by_signature.get(event.tx_signature)
            if tx is None:
                return False
            ctx.claimed.add(tx.signature)
            await self._apply_match(db, event, tx, stats, notes)
            return True

        if (
            event.event_type == EventType.PRICE_UPDATE.value
            and event.data.get("source") in self._config.off_chain_price_sources
        ):
            notes.publish.append((CHANNEL_PRICE_UPDATES, "price_update", event.data))
            return True

        tx = await self._find_content_match(db, event, ctx)
        if tx is None:
            return False
        ctx.claimed.add(tx.signature)
        await self._apply_match(db, event, tx, stats, notes)
        return True

    async def _find_content_match(
        self, db: AsyncSession, event: SystemEvent, ctx: _CycleContext
    ) -> LedgerTransaction | None:
        expected = TransactionKind(event.event_type)
        wallet = event.data.get("user_wallet")
        market_pda = event.data.get("market_pda")
        for tx in ctx.transactions:
            if not tx.succeeded or tx.signature in ctx.claimed:
                continue
            if tx.signature in ctx.batch_signatures:
                continue
            if classify_transaction(tx) is not expected:
                continue
            if tx.account_keys:
                if wallet and wallet not in tx.account_keys:
                    continue
                if market_pda and market_pda not in tx.account_keys:
                    continue
            if await self._events.signature_known(db, tx.signature):
                continue
            return tx
        return None

    async def _apply_match(
        self,
        db: AsyncSession,
        event: SystemEvent,
        tx: LedgerTransaction,
        stats: CycleStats,
        notes: _Notifications,
    ) -> None:
        if event.event_type != EventType.TRADE.value:
            if tx.succeeded:
                logger.info("Event %d (%s) matched %s", event.id, event.event_type, tx.signature)
            else:
                logger.warning(
                    "Event %d (%s) matched failed transaction %s: %s",
                    event.id, event.event_type, tx.signature, tx.error,
                )
            return

        trade = await self._load_trade(db, event, tx)
        if trade is None:
            logger.warning("Trade event %d matched %s but no trade row exists", event.id, tx.signature)
            return

        if tx.succeeded:
            confirmed = await self._trades.confirm(
                db, trade.id, tx.slot, tx.confirmed_at or self._clock()
            )
            if confirmed is None:
                # Already settled by an earlier cycle; never apply the position twice.
                logger.info("Trade %d already %s, skipping", trade.id, trade.status)
                return
            await self._positions.apply_confirmed_trade(db, confirmed)
            stats.trades_confirmed += 1
            self._queue_trade_notes(notes, confirmed, tx, "trade_confirmed")
            logger.info("Trade %d confirmed at slot %d (sig=%s)", trade.id, tx.slot, tx.signature)
        else:
            failed = await self._trades.mark_failed(db, trade.id, tx.slot)
            if failed is None:
                return
            stats.trades_failed += 1
            self._queue_trade_notes(notes, failed, tx, "trade_failed")
            logger.warning("Trade %d failed on ledger: %s", trade.id, tx.error)

    async def _load_trade(
        self, db: AsyncSession, event: SystemEvent, tx: LedgerTransaction
    ) -> Trade | None:
        if event.entity_id and event.entity_id.isdigit():
            trade = await self._trades.get_by_id(db, int(event.entity_id))
            if trade is not None:
                return trade
        return await self._trades.get_by_signature(db, event.tx_signature or tx.signature)

    @staticmethod
    def _queue_trade_notes(
        notes: _Notifications, trade: Trade, tx: LedgerTransaction, event_type: str
    ) -> None:
        data = trade.to_event_data()
        data.update(
            tx_signature=tx.signature,
            block_height=tx.slot,
            confirmed_at=tx.confirmed_at.isoformat() if tx.confirmed_at else None,
        )
        notes.invalidate.append(trades_cache_pattern(trade.user_wallet))
        if event_type == "trade_confirmed":
            notes.invalidate.append(portfolio_cache_key(trade.user_wallet))
        notes.publish.append((CHANNEL_TRADES, event_type, data))

    def _is_stale(self, event: SystemEvent) -> bool:
        age = self._clock() - ensure_aware(event.created_at)
        return age > timedelta(seconds=self._config.stale_after_seconds)

    # ------------------------------------------------------------------
    # Ledger-side bookkeeping
    # ------------------------------------------------------------------

    async def _create_missing_events(
        self, transactions: list[LedgerTransaction], stats: CycleStats
    ) -> None:
        async with self._session_factory() as db:
            try:
                for tx in transactions:
                    if not tx.succeeded:
                        continue
                    kind = classify_transaction(tx)
                    if kind is TransactionKind.UNKNOWN:
                        continue
                    if await self._events.signature_known(db, tx.signature):
                        continue
                    await self._events.insert_event(
                        db,
                        kind.value,
                        None,
                        tx.signature,
                        {
                            "tx_signature": tx.signature,
                            "slot": tx.slot,
                            "block_time": tx.block_time,
                            "logs": list(tx.log_messages),
                            "detected_by": "reconciler",
                        },
                    )
                    stats.missing_events_created += 1
                    logger.info("Recorded missing %s event for %s", kind.value, tx.signature)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def _advance_slot(self, transactions: list[LedgerTransaction]) -> None:
        if not transactions:
            return
        latest = max(tx.slot for tx in transactions)
        if latest <= self._last_processed_slot:
            return
        self._last_processed_slot = latest
        if self._notifier is not None:
            await self._notifier.set_value(LAST_SLOT_KEY, str(latest))

    async def _send(self, notes: _Notifications) -> None:
        if self._notifier is None:
            return
        if notes.invalidate:
            await self._notifier.invalidate(*notes.invalidate)
        for channel, event_type, data in notes.publish:
            await self._notifier.publish(channel, event_type, data)

    async def _abort(self, stats: CycleStats, error: str) -> CycleStats:
        stats.aborted = True
        stats.errors += 1
        stats.error_messages.append(error)
        await self._write_status(ServiceStatus.ERROR, stats, error)
        return stats

    async def _write_status(
        self, status: ServiceStatus, stats: CycleStats, error: str | None
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
                "last_processed_slot": self._last_processed_slot,
                "service": SERVICE_NAME,
            },
            self._config.status_ttl_seconds,
        )
