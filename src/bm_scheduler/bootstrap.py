"""Builds the background services from settings.

The settlement program client is either injected or built from settings when
SETTLEMENT_CLIENT_ENABLED is on; without one, trade execution, market admin
and on-chain price sync are disabled.
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

import httpx
import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings
from src.bm_common.database import async_session_factory
from src.bm_common.notifier import Notifier
from src.bm_ledger.domain.repository import LedgerClientProtocol, SettlementProgramProtocol
from src.bm_ledger.infrastructure.demo_client import DemoLedgerClient
from src.bm_ledger.infrastructure.rpc_client import RpcConfig, SolanaRpcClient
from src.bm_ledger.infrastructure.settlement_client import (
    AnchorSettlementClient,
    SettlementClientConfig,
    load_keypair,
)
from src.bm_pricing.application.publisher import PricePublisher
from src.bm_pricing.domain.models import FeedConfig, PublisherConfig
from src.bm_pricing.infrastructure.feed_client import BondFeedClient
from src.bm_reconciler.application.reconciler import EventReconciler
from src.bm_reconciler.domain.models import ReconcilerConfig
from src.bm_scheduler.periodic import PeriodicTask
from src.bm_trading.application.admin import MarketAdminService
from src.bm_trading.application.executor import TradeExecutor

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass
class Services:
    notifier: Notifier
    reconciler: EventReconciler
    publisher: PricePublisher
    reconciler_task: PeriodicTask
    publisher_task: PeriodicTask
    executor: TradeExecutor | None
    admin: MarketAdminService | None
    http: httpx.AsyncClient

    async def stop(self) -> None:
        await self.reconciler_task.stop()
        await self.publisher_task.stop()
        await self.http.aclose()


def build_ledger_client(s: Settings, http: httpx.AsyncClient) -> LedgerClientProtocol:
    if s.LEDGER_DEMO_MODE:
        logger.warning("LEDGER_DEMO_MODE is on: reconciling against synthetic transactions")
        return DemoLedgerClient()
    return SolanaRpcClient(RpcConfig.from_settings(s), client=http)


def build_settlement_client(
    s: Settings, http: httpx.AsyncClient
) -> SettlementProgramProtocol | None:
    if not s.SETTLEMENT_CLIENT_ENABLED:
        return None
    client = AnchorSettlementClient(
        SettlementClientConfig.from_settings(s),
        SolanaRpcClient(RpcConfig.from_settings(s), client=http),
        load_keypair(s.SETTLEMENT_KEYPAIR_PATH),
    )
    logger.info("Settlement client signing as %s", client.signer_pubkey)
    return client


def build_services(
    s: Settings,
    redis: aioredis.Redis,
    session_factory: SessionFactory = async_session_factory,
    settlement: SettlementProgramProtocol | None = None,
    http: httpx.AsyncClient | None = None,
) -> Services:
    http = http or httpx.AsyncClient()
    notifier = Notifier(redis)
    if settlement is None:
        settlement = build_settlement_client(s, http)

    reconciler = EventReconciler(
        ReconcilerConfig.from_settings(s),
        build_ledger_client(s, http),
        session_factory,
        notifier=notifier,
    )
    publisher = PricePublisher(
        PublisherConfig.from_settings(s),
        BondFeedClient(FeedConfig.from_settings(s), client=http),
        session_factory,
        notifier=notifier,
        settlement=settlement,
    )

    executor = admin = None
    if settlement is not None:
        executor = TradeExecutor(
            settlement,
            notifier=notifier,
            submit_timeout_seconds=s.SETTLEMENT_SUBMIT_TIMEOUT_SECONDS,
        )
        admin = MarketAdminService(
            settlement,
            notifier=notifier,
            submit_timeout_seconds=s.SETTLEMENT_SUBMIT_TIMEOUT_SECONDS,
        )
    elif s.ONCHAIN_PRICE_SYNC_ENABLED:
        logger.warning("ONCHAIN_PRICE_SYNC_ENABLED set but no settlement client; sync disabled")

    return Services(
        notifier=notifier,
        reconciler=reconciler,
        publisher=publisher,
        reconciler_task=PeriodicTask(
            "event-reconciler", s.RECONCILER_INTERVAL_SECONDS, reconciler.run_cycle
        ),
        publisher_task=PeriodicTask(
            "oracle-publisher", s.PUBLISHER_INTERVAL_SECONDS, publisher.run_cycle
        ),
        executor=executor,
        admin=admin,
        http=http,
    )
