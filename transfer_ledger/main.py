import asyncio
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timedelta
from functools import partial
from typing import Optional

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.engine import Engine

from .api.exceptions import register_exception_handlers
from .api.routes import router as accounts_router, transfer_router
from .core.config import Settings, get_settings
from .core.db import create_engine_for_url, init_db
from .core.errors import StorageError
from .models import utcnow
from .services import (
    IdempotencyCache,
    LedgerService,
    RequestCoordinator,
    SqlIdempotencyCache,
    SqlUnitOfWork,
    TransferEngine,
)

logger = logging.getLogger(__name__)


async def sweep_idempotency_keys(cache: IdempotencyCache, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await run_in_threadpool(cache.sweep_expired)
        except StorageError:
            logger.exception("idempotency.sweep.failed")
            continue
        if removed:
            logger.info("idempotency.swept", extra={"removed": removed})


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    settings = settings or get_settings()
    engine = engine or create_engine_for_url(
        settings.database_url, busy_timeout=settings.sqlite_busy_timeout_seconds
    )

    transfer_engine = TransferEngine(partial(SqlUnitOfWork, engine), clock=clock)
    cache = SqlIdempotencyCache(
        engine, ttl=timedelta(hours=settings.idempotency_ttl_hours), clock=clock
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        sweeper = None
        if settings.idempotency_sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(
                sweep_idempotency_keys(cache, settings.idempotency_sweep_interval_seconds)
            )
        yield
        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.idempotency_cache = cache
    app.state.ledger_service = LedgerService(engine, transfer_engine)
    app.state.coordinator = RequestCoordinator(
        cache,
        min_key_length=settings.idempotency_key_min_length,
        max_key_length=settings.idempotency_key_max_length,
    )

    app.include_router(accounts_router)
    app.include_router(transfer_router)
    register_exception_handlers(app)

    @app.get("/health")
    def read_health() -> dict[str, str]:
        return {"status": "ok"}

    return app


settings = get_settings()
logging.basicConfig(level=settings.log_level)

app = create_app(settings)
