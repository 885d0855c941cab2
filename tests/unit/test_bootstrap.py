# tests/unit/test_bootstrap.py
"""Wiring of the background services from settings."""
import json
from unittest.mock import MagicMock

import httpx
import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from config.settings import Settings
from src.bm_ledger.infrastructure.demo_client import DemoLedgerClient
from src.bm_ledger.infrastructure.rpc_client import SolanaRpcClient
from src.bm_ledger.infrastructure.settlement_client import AnchorSettlementClient
from src.bm_scheduler.bootstrap import (
    build_ledger_client,
    build_services,
    build_settlement_client,
)


@pytest.fixture
def http() -> httpx.AsyncClient:
    return httpx.AsyncClient()


def test_rpc_client_by_default(http) -> None:
    assert isinstance(build_ledger_client(Settings(LEDGER_DEMO_MODE=False), http), SolanaRpcClient)


def test_demo_client_only_when_enabled(http) -> None:
    assert isinstance(build_ledger_client(Settings(LEDGER_DEMO_MODE=True), http), DemoLedgerClient)


def test_trading_disabled_without_settlement(http, session_factory) -> None:
    services = build_services(Settings(), MagicMock(), session_factory=session_factory, http=http)
    assert services.executor is None
    assert services.admin is None
    assert services.reconciler_task.name == "event-reconciler"
    assert services.publisher_task.name == "oracle-publisher"


def test_trading_enabled_with_settlement(http, session_factory) -> None:
    services = build_services(
        Settings(), MagicMock(), session_factory=session_factory,
        settlement=MagicMock(), http=http,
    )
    assert services.executor is not None
    assert services.admin is not None


def test_settlement_client_off_by_default(http) -> None:
    assert build_settlement_client(Settings(SETTLEMENT_CLIENT_ENABLED=False), http) is None


def test_settlement_client_built_from_keypair_file(http, session_factory, tmp_path) -> None:
    keypair = Keypair()
    path = tmp_path / "admin.json"
    path.write_text(json.dumps(list(bytes(keypair))))
    s = Settings(
        SETTLEMENT_CLIENT_ENABLED=True,
        SETTLEMENT_KEYPAIR_PATH=str(path),
        SETTLEMENT_PROGRAM_ID=str(Pubkey.new_unique()),
        SETTLEMENT_USDC_MINT=str(Pubkey.new_unique()),
    )

    client = build_settlement_client(s, http)
    assert isinstance(client, AnchorSettlementClient)
    assert client.signer_pubkey == str(keypair.pubkey())

    services = build_services(s, MagicMock(), session_factory=session_factory, http=http)
    assert services.executor is not None
    assert services.admin is not None
