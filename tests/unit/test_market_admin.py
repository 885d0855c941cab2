# tests/unit/test_market_admin.py
"""Unit tests for MarketAdminService (pause / initialize)."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.bm_common.enums import SubmissionOutcome
from src.bm_common.errors import (
    LedgerOutcomeUnknownError,
    LedgerRejectedError,
    MarketNotFoundError,
)
from src.bm_market.domain.models import Market
from src.bm_trading.application.admin import MarketAdminService, market_details_key

pytestmark = pytest.mark.asyncio


def _make_market(paused: bool = False) -> Market:
    return Market(
        id=3, bond_id=7, market_pda="Pda333", price_per_token_scaled=1_000_000,
        paused=paused, vault_bond_account="vb", vault_usdc_account="vu",
        admin_pubkey="admin", bond_mint="Mint333", bond_status="active",
        isin="INE000000001", name="Bond", issuer="Issuer",
    )


@pytest.fixture
def market_repo() -> MagicMock:
    repo = MagicMock()
    repo.get_market_by_id = AsyncMock(return_value=_make_market())
    repo.set_paused = AsyncMock()
    return repo


@pytest.fixture
def events_repo() -> MagicMock:
    repo = MagicMock()
    repo.insert_event = AsyncMock(return_value=1)
    return repo


@pytest.fixture
def settlement() -> MagicMock:
    s = MagicMock()
    s.pause = AsyncMock(return_value="pause-sig")
    s.initialize_market = AsyncMock(return_value="init-sig")
    return s


@pytest.fixture
def service(settlement, notifier, market_repo, events_repo) -> MarketAdminService:
    return MarketAdminService(
        settlement, notifier=notifier, market_repo=market_repo, events_repo=events_repo
    )


class TestPause:
    async def test_pause_records_and_notifies(
        self, service, db, market_repo, events_repo, notifier
    ) -> None:
        assert await service.pause_market(db, 3) == "pause-sig"

        market_repo.set_paused.assert_awaited_once_with(db, 3, True)
        args = events_repo.insert_event.await_args
        assert args.args[1:4] == ("pause", "3", "pause-sig")
        assert args.kwargs == {"processed": True}
        db.commit.assert_awaited_once()
        notifier.invalidate.assert_awaited_once_with(market_details_key(3))
        assert notifier.publish.await_args.args[:2] == ("market_status", "market_paused")

    async def test_already_paused_is_noop(
        self, service, db, market_repo, settlement, notifier
    ) -> None:
        market_repo.get_market_by_id.return_value = _make_market(paused=True)

        assert await service.pause_market(db, 3) is None
        settlement.pause.assert_not_awaited()
        notifier.publish.assert_not_awaited()

    async def test_db_failure_rolls_back(self, service, db, market_repo, notifier) -> None:
        market_repo.set_paused.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError):
            await service.pause_market(db, 3)
        db.rollback.assert_awaited_once()
        notifier.publish.assert_not_awaited()

    async def test_missing_market(self, service, db, market_repo) -> None:
        market_repo.get_market_by_id.return_value = None
        with pytest.raises(MarketNotFoundError):
            await service.pause_market(db, 99)


class TestInitialize:
    async def test_initialize_records_event(
        self, service, db, settlement, events_repo, notifier
    ) -> None:
        assert await service.initialize_market(db, 3, 1_020_000) == "init-sig"

        market = settlement.initialize_market.await_args.args[0]
        assert market.market_pda == "Pda333"
        event = events_repo.insert_event.await_args.args
        assert event[1:4] == ("market_init", "3", "init-sig")
        assert event[4]["price_scaled"] == 1_020_000
        db.commit.assert_awaited_once()
        assert notifier.publish.await_args.args[1] == "market_initialized"

    @pytest.mark.parametrize("price", [0, -1, 1.5])
    async def test_invalid_price(self, service, db, settlement, price) -> None:
        with pytest.raises(ValueError):
            await service.initialize_market(db, 3, price)
        settlement.initialize_market.assert_not_awaited()


class TestSettlementFailures:
    async def test_pause_that_never_returns_times_out(
        self, settlement, notifier, market_repo, events_repo, db
    ) -> None:
        async def stuck_pause(*args):
            await asyncio.Event().wait()

        settlement.pause = stuck_pause
        service = MarketAdminService(
            settlement, notifier=notifier, market_repo=market_repo,
            events_repo=events_repo, submit_timeout_seconds=0.01,
        )

        with pytest.raises(LedgerOutcomeUnknownError) as exc_info:
            await service.pause_market(db, 3)

        assert exc_info.value.outcome is SubmissionOutcome.UNKNOWN
        market_repo.set_paused.assert_not_awaited()
        events_repo.insert_event.assert_not_awaited()
        notifier.publish.assert_not_awaited()

    async def test_initialize_that_never_returns_times_out(
        self, settlement, notifier, market_repo, events_repo, db
    ) -> None:
        async def stuck_initialize(*args):
            await asyncio.Event().wait()

        settlement.initialize_market = stuck_initialize
        service = MarketAdminService(
            settlement, notifier=notifier, market_repo=market_repo,
            events_repo=events_repo, submit_timeout_seconds=0.01,
        )

        with pytest.raises(LedgerOutcomeUnknownError):
            await service.initialize_market(db, 3, 1_020_000)
        events_repo.insert_event.assert_not_awaited()
        db.commit.assert_not_awaited()

    async def test_untyped_error_becomes_outcome_unknown(
        self, service, db, settlement, market_repo
    ) -> None:
        settlement.pause.side_effect = ConnectionError("rpc connection reset")

        with pytest.raises(LedgerOutcomeUnknownError) as exc_info:
            await service.pause_market(db, 3)
        assert "rpc connection reset" in exc_info.value.message
        market_repo.set_paused.assert_not_awaited()

    async def test_rejection_passes_through(self, service, db, settlement) -> None:
        settlement.initialize_market.side_effect = LedgerRejectedError("already initialized")

        with pytest.raises(LedgerRejectedError):
            await service.initialize_market(db, 3, 1_020_000)
        db.commit.assert_not_awaited()
