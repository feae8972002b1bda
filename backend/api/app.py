"""
FastAPI application factory for the settlement trigger API.

Creates the app with:
- Settlement routes (run a cycle on demand)
- Middleware stack
- Health check endpoints
- Lifespan management (startup/shutdown)
- Optional background settlement loop (service_role=combined)
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Dict, Optional, Union

from fastapi import FastAPI

from shared.config import ServiceRole, get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.dependencies import get_db, init_dependencies
from api.middleware import setup_middleware
from api.routes.settlement import router as settlement_router
from settlement.config import get_settlement_settings
from settlement.engine import build_settlement_engine, run_settlement_loop

logger = get_logger(__name__)

_CONNECT_RETRY_ATTEMPTS = 10
_CONNECT_RETRY_BASE_DELAY_S = 2.0


async def _connect_with_retry(connect_fn: Callable[[], Awaitable[None]], name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, _CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == _CONNECT_RETRY_ATTEMPTS:
                raise
            delay = _CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=_CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without a database."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup (connect to Postgres, build the engine, optionally start
    the settlement loop) and shutdown (graceful cleanup).
    """
    settings = get_settings()
    settlement_settings = get_settlement_settings()
    setup_logging("api")
    start_metrics_server()

    db = DatabaseManager(settings)
    await _connect_with_retry(db.connect, "Database")

    engine = build_settlement_engine(db, settlement_settings, settings)
    await engine.client.start()
    init_dependencies(db, engine)

    loop_task: Optional[asyncio.Task] = None
    if settings.service_role == ServiceRole.COMBINED:
        loop_task = asyncio.create_task(
            run_settlement_loop(
                engine,
                settlement_settings.cycle_interval_s,
                settlement_settings.jitter_factor,
                settlement_settings.error_backoff_s,
            )
        )

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        role=settings.service_role.value,
    )

    yield

    # Shutdown
    if loop_task is not None:
        loop_task.cancel()
        try:
            await loop_task
        except asyncio.CancelledError:
            pass

    await engine.client.close()
    await db.disconnect()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without a database."""
    app = FastAPI(
        title="Settlement Engine API",
        description="Fixture matching and prediction settlement",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware
    setup_middleware(app)

    # REST routes
    app.include_router(settlement_router)

    # Health check
    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> Dict[str, Union[str, bool]]:
        """Readiness: checks the database."""
        db_ok = False
        try:
            db_ok = await get_db().ping()
        except Exception as exc:
            logger.warning("readiness_check_failed", error=str(exc))

        return {
            "status": "ok" if db_ok else "degraded",
            "database": db_ok,
        }

    return app


# For running with uvicorn directly
app = create_app()
