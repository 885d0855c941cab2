"""Process entry point: background loops plus a health endpoint.

Run with: uvicorn src.main:app --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.bm_common.database import engine
from src.bm_common.enums import ServiceStatus
from src.bm_common.errors import AppError
from src.bm_common.notifier import Notifier
from src.bm_common.redis_client import close_redis, get_redis
from src.bm_pricing.application.publisher import STATUS_KEY as ORACLE_STATUS_KEY
from src.bm_reconciler.application.reconciler import STATUS_KEY as RECONCILER_STATUS_KEY
from src.bm_scheduler.bootstrap import build_services

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis, start loops. Shutdown: stop loops, dispose."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    redis = await get_redis()

    services = build_services(settings, redis)
    app.state.services = services
    await services.reconciler.start()
    if settings.RECONCILER_AUTO_START:
        await services.reconciler_task.start()
    if settings.ORACLE_AUTO_START:
        await services.publisher_task.start()
    yield
    await services.stop()
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version=VERSION,
    lifespan=lifespan,
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content={"code": exc.code, "message": exc.message},
    )


def overall_status(statuses: list[dict[str, Any] | None]) -> str:
    """Missing status (expired key, loop not started) counts as unknown."""
    values = [s.get("status") if s else None for s in statuses]
    if any(v == ServiceStatus.ERROR.value for v in values):
        return ServiceStatus.ERROR.value
    if any(v is None for v in values):
        return "unknown"
    if all(v == ServiceStatus.HEALTHY.value for v in values):
        return ServiceStatus.HEALTHY.value
    return ServiceStatus.DEGRADED.value


@app.get("/health")
async def health() -> dict[str, Any]:
    notifier = Notifier(await get_redis())
    reconciler = await notifier.read_status(RECONCILER_STATUS_KEY)
    oracle = await notifier.read_status(ORACLE_STATUS_KEY)
    return {
        "status": overall_status([reconciler, oracle]),
        "version": VERSION,
        "services": {"event_reconciler": reconciler, "oracle_publisher": oracle},
    }
