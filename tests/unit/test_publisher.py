# tests/unit/test_publisher.py
"""Unit tests for PricePublisher: feed cycle, oracle path, on-chain sync."""
import asyncio
from dataclasses import replace
from datetime import UTC, date, datetime
from unittest.mock import ANY, AsyncMock, MagicMock

import pytest

from src.bm_common.errors import LedgerOutcomeUnknownError
from src.bm_market.domain.models import Market
from src.bm_pricing.application.publisher import STATUS_KEY, PricePublisher
from src.bm_pricing.domain.models import (
    ExternalBond,
    FeedSnapshot,
    OraclePriceUpdate,
    PublisherConfig,
)

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 10, 19, tzinfo=UTC)
ISIN = "INE0NES07261"


def _make_market(**kwargs) -> Market:
    defaults = dict(
        id=1, bond_id=5, market_pda="MarketPda111", price_per_token_scaled=95_000_000,
        paused=False, vault_bond_account="VaultBond", vault_usdc_account="VaultUsdc",
        admin_pubkey="Admin111", bond_mint="BondMint111", bond_status="active",
        isin=ISIN, name="KEERTANA FINSERV", issuer="Keertana Finserv Pvt Ltd",
    )
    defaults.update(kwargs)
    return Market(**defaults)


def _matured_bond(face_value: float, isin: str = ISIN) -> ExternalBond:
    # Matured bonds value at exactly face * 1e6, which keeps the arithmetic obvious.
    return ExternalBond(
        identifier=isin, feed_id="1351", name="KEERTANA FINSERV PRIVATE LIMITED",
        yield_pct=13.7, coupon_pct=11.1, maturity=date(2020, 1, 1), face_value=face_value,
    )


def _snapshot(*bonds: ExternalBond, source: str = "aspero") -> FeedSnapshot:
    return FeedSnapshot(source=source, bonds=tuple(bonds), fetched_at=NOW)


@pytest.fixture
def market_repo() -> MagicMock:
    repo = MagicMock()
    repo.list_priceable_markets = AsyncMock(return_value=[_make_market()])
    repo.get_market_for_update = AsyncMock(return_value=_make_market())
    repo.update_price = AsyncMock()
    return repo


@pytest.fixture
def price_writer() -> MagicMock:
    writer = MagicMock()
    writer.insert_history = AsyncMock()
    writer.insert_oracle_update = AsyncMock(return_value=77)
    writer.set_oracle_tx_signature = AsyncMock()
    return writer


@pytest.fixture
def events_repo() -> MagicMock:
    repo = MagicMock()
    repo.insert_event = AsyncMock(return_value=900)
    return repo


@pytest.fixture
def feed() -> MagicMock:
    client = MagicMock()
    client.fetch_bonds = AsyncMock(return_value=_snapshot(_matured_bond(100.0)))
    return client


@pytest.fixture
def make_publisher(feed, session_factory, notifier, market_repo, price_writer, events_repo):
    def _make(config: PublisherConfig | None = None, settlement=None) -> PricePublisher:
        return PricePublisher(
            config or PublisherConfig(),
            feed,
            session_factory,
            notifier=notifier,
            settlement=settlement,
            market_repo=market_repo,
            price_writer=price_writer,
            events_repo=events_repo,
            clock=lambda: NOW,
        )

    return _make


class TestFeedCycle:
    async def test_applies_update_in_one_transaction(
        self, make_publisher, db, market_repo, price_writer, events_repo, notifier
    ) -> None:
        stats = await make_publisher().run_cycle()

        assert stats.updates_applied == 1
        market_repo.get_market_for_update.assert_awaited_once_with(db, 1)
        market_repo.update_price.assert_awaited_once_with(db, 1, 100_000_000)
        price_writer.insert_history.assert_awaited_once_with(db, 1, 100_000_000, "aspero")
        price_writer.insert_oracle_update.assert_awaited_once_with(
            db, 1, 95_000_000, 100_000_000, "aspero"
        )
        event_args = events_repo.insert_event.await_args.args
        assert event_args[1:4] == ("price_update", "1", None)
        assert event_args[4]["change_percent"] == pytest.approx(5.2631578)
        assert event_args[4]["source"] == "aspero"
        db.commit.assert_awaited_once()
        notifier.invalidate.assert_awaited_once_with("market:1:details", "bond:*:details")
        channel, event_type, data = notifier.publish.await_args.args
        assert (channel, event_type) == ("price_updates", "price_update")
        assert data["new_price_scaled"] == 100_000_000

    async def test_thirty_percent_move_is_rejected_without_writes(
        self, make_publisher, db, feed, market_repo, price_writer, events_repo, notifier
    ) -> None:
        feed.fetch_bonds.return_value = _snapshot(_matured_bond(1.3))
        market_repo.get_market_for_update.return_value = _make_market(
            price_per_token_scaled=1_000_000
        )

        stats = await make_publisher().run_cycle()

        assert stats.updates_rejected == 1
        assert stats.updates_applied == 0
        market_repo.update_price.assert_not_awaited()
        price_writer.insert_history.assert_not_awaited()
        price_writer.insert_oracle_update.assert_not_awaited()
        events_repo.insert_event.assert_not_awaited()
        db.commit.assert_not_awaited()
        db.rollback.assert_awaited_once()
        notifier.publish.assert_not_awaited()

    async def test_unmatched_market_is_left_alone(
        self, make_publisher, feed, market_repo
    ) -> None:
        feed.fetch_bonds.return_value = _snapshot(
            replace(_matured_bond(100.0, isin="INE999"), name="SOMEONE ELSE")
        )

        stats = await make_publisher().run_cycle()

        assert stats.markets_matched == 0
        market_repo.get_market_for_update.assert_not_awaited()

    async def test_fallback_snapshot_is_not_published_by_default(
        self, make_publisher, feed, market_repo
    ) -> None:
        feed.fetch_bonds.return_value = _snapshot(_matured_bond(100.0), source="fallback")

        stats = await make_publisher().run_cycle()

        assert stats.fallback_skipped == 1
        market_repo.get_market_for_update.assert_not_awaited()

    async def test_fallback_snapshot_published_when_enabled(
        self, make_publisher, feed, price_writer
    ) -> None:
        feed.fetch_bonds.return_value = _snapshot(_matured_bond(100.0), source="fallback")

        stats = await make_publisher(PublisherConfig(publish_fallback_prices=True)).run_cycle()

        assert stats.updates_applied == 1
        price_writer.insert_history.assert_awaited_once_with(
            ANY, 1, 100_000_000, "fallback"
        )

    async def test_per_market_failure_is_counted(self, make_publisher, market_repo) -> None:
        market_repo.list_priceable_markets.return_value = [
            _make_market(id=1), _make_market(id=2),
        ]
        market_repo.get_market_for_update.side_effect = [
            RuntimeError("lock timeout"), _make_market(id=2),
        ]

        stats = await make_publisher().run_cycle()

        assert stats.errors == 1
        assert stats.updates_applied == 1

    async def test_listing_failure_writes_error_status(
        self, make_publisher, market_repo, notifier
    ) -> None:
        market_repo.list_priceable_markets.side_effect = RuntimeError("db down")

        stats = await make_publisher().run_cycle()

        assert stats.aborted
        key, payload, ttl = notifier.write_status.await_args.args
        assert key == STATUS_KEY
        assert payload["status"] == "error"
        assert payload["service"] == "oracle-publisher"

    async def test_feed_failure_writes_error_status(
        self, make_publisher, feed, market_repo, notifier
    ) -> None:
        feed.fetch_bonds.side_effect = ValueError("feed payload has no bonds list")

        stats = await make_publisher().run_cycle()

        assert stats.aborted
        assert stats.errors == 1
        market_repo.list_priceable_markets.assert_not_awaited()
        payload = notifier.write_status.await_args.args[1]
        assert payload["status"] == "error"
        assert "no bonds list" in payload["error"]

    async def test_write_failure_rolls_back_without_notifying(
        self, make_publisher, db, price_writer, events_repo, notifier
    ) -> None:
        price_writer.insert_oracle_update.side_effect = RuntimeError("db write failed")

        with pytest.raises(RuntimeError):
            await make_publisher().apply_price_update(
                1, 100_000_000, "aspero", PublisherConfig().feed_bounds
            )

        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()
        events_repo.insert_event.assert_not_awaited()
        notifier.publish.assert_not_awaited()
        notifier.invalidate.assert_not_awaited()

    async def test_status_counts(self, make_publisher, notifier) -> None:
        await make_publisher().run_cycle()

        payload = notifier.write_status.await_args.args[1]
        assert payload["status"] == "healthy"
        assert payload["source"] == "aspero"
        assert payload["counts"]["updates_applied"] == 1


class TestOraclePath:
    async def test_oracle_bounds_allow_fifteen_percent(
        self, make_publisher, market_repo
    ) -> None:
        market_repo.get_market_for_update.return_value = _make_market(
            price_per_token_scaled=1_000_000
        )

        results = await make_publisher().submit_oracle_updates(
            [OraclePriceUpdate(market_id=1, new_price_scaled=1_150_000)]
        )

        assert results[0].success
        assert results[0].old_price == 1_000_000
        assert results[0].change_percent == pytest.approx(15.0)

    async def test_oracle_bounds_reject_twenty_five_percent(
        self, make_publisher, market_repo
    ) -> None:
        market_repo.get_market_for_update.return_value = _make_market(
            price_per_token_scaled=1_000_000
        )

        results = await make_publisher().submit_oracle_updates(
            [OraclePriceUpdate(market_id=1, new_price_scaled=1_250_000)]
        )

        assert not results[0].success
        assert results[0].change_percent == pytest.approx(25.0)
        market_repo.update_price.assert_not_awaited()

    async def test_per_item_results(self, make_publisher, market_repo) -> None:
        market_repo.get_market_for_update.side_effect = [
            None, _make_market(price_per_token_scaled=1_000_000),
        ]

        results = await make_publisher().submit_oracle_updates(
            [
                OraclePriceUpdate(market_id=9, new_price_scaled=1_000_000),
                OraclePriceUpdate(market_id=0, new_price_scaled=1_000_000),
                OraclePriceUpdate(market_id=1, new_price_scaled=1_100_000, source="manual"),
            ]
        )

        assert [r.success for r in results] == [False, False, True]
        assert "Market not found" in results[0].error
        assert results[1].error == "Missing required fields"
        assert set(results[2].to_dict()) == {
            "market_id", "success", "old_price", "new_price", "change_percent", "error",
        }

    async def test_unknown_source_rejected_before_any_write(
        self, make_publisher, market_repo, price_writer
    ) -> None:
        results = await make_publisher().submit_oracle_updates(
            [OraclePriceUpdate(market_id=1, new_price_scaled=1_000_000, source="bloomberg")]
        )

        assert not results[0].success
        assert results[0].error == "Unknown price source: bloomberg"
        market_repo.get_market_for_update.assert_not_awaited()
        price_writer.insert_history.assert_not_awaited()

    async def test_paused_market_rejected(self, make_publisher, market_repo) -> None:
        market_repo.get_market_for_update.return_value = _make_market(paused=True)

        results = await make_publisher().submit_oracle_updates(
            [OraclePriceUpdate(market_id=1, new_price_scaled=100_000_000)]
        )

        assert not results[0].success
        assert "paused" in results[0].error


class TestOnChainSync:
    async def test_success_backfills_signature(self, make_publisher, db, price_writer) -> None:
        settlement = MagicMock()
        settlement.update_price = AsyncMock(return_value="price-sig")
        publisher = make_publisher(PublisherConfig(onchain_sync_enabled=True), settlement)

        result = await publisher.apply_price_update(
            1, 100_000_000, "oracle", PublisherConfig().oracle_bounds
        )

        assert result.onchain_synced is True
        assert result.tx_signature == "price-sig"
        price_writer.set_oracle_tx_signature.assert_awaited_once_with(db, 77, "price-sig")

    async def test_failure_keeps_db_price_and_reports_divergence(
        self, make_publisher, db, market_repo, notifier
    ) -> None:
        settlement = MagicMock()
        settlement.update_price = AsyncMock(side_effect=LedgerOutcomeUnknownError("timeout"))
        publisher = make_publisher(PublisherConfig(onchain_sync_enabled=True), settlement)

        stats = await publisher.run_cycle()

        assert stats.updates_applied == 1
        assert stats.onchain_sync_failures == 1
        market_repo.update_price.assert_awaited_once()
        db.commit.assert_awaited_once()
        db.rollback.assert_not_awaited()
        published = [c.args[:2] for c in notifier.publish.await_args_list]
        assert ("market_status", "price_divergence") in published
        assert notifier.write_status.await_args.args[1]["status"] == "degraded"

    async def test_sync_disabled_does_not_call_settlement(self, make_publisher) -> None:
        settlement = MagicMock()
        settlement.update_price = AsyncMock()

        result = await make_publisher(settlement=settlement).apply_price_update(
            1, 100_000_000, "oracle", PublisherConfig().oracle_bounds
        )

        assert result.onchain_synced is None
        settlement.update_price.assert_not_awaited()

    async def test_settlement_that_never_returns_counts_as_divergence(
        self, make_publisher, db, notifier
    ) -> None:
        async def stuck_update_price(*args):
            await asyncio.Event().wait()

        settlement = MagicMock()
        settlement.update_price = stuck_update_price
        publisher = make_publisher(
            PublisherConfig(onchain_sync_enabled=True, settlement_timeout_seconds=0.01),
            settlement,
        )

        stats = await publisher.run_cycle()

        assert stats.updates_applied == 1
        assert stats.onchain_sync_failures == 1
        db.commit.assert_awaited_once()
        divergence = [
            c.args[2] for c in notifier.publish.await_args_list if c.args[1] == "price_divergence"
        ]
        assert divergence[0]["outcome"] == "unknown"
        assert "timed out" in divergence[0]["error"]
        assert notifier.write_status.await_args.args[1]["status"] == "degraded"

    async def test_untyped_settlement_error_counts_as_divergence(
        self, make_publisher, price_writer
    ) -> None:
        settlement = MagicMock()
        settlement.update_price = AsyncMock(side_effect=ConnectionError("rpc connection reset"))
        publisher = make_publisher(PublisherConfig(onchain_sync_enabled=True), settlement)

        result = await publisher.apply_price_update(
            1, 100_000_000, "oracle", PublisherConfig().oracle_bounds
        )

        assert result.success
        assert result.onchain_synced is False
        price_writer.set_oracle_tx_signature.assert_not_awaited()
