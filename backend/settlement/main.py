"""
Settlement worker entrypoint.
Runs the settlement cycle loop with asyncio; upstream or store failures end a cycle, never the process.
"""
from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path

# Ensure backend root is on path when run as python -m settlement.main
_backend = Path(__file__).resolve().parent.parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

from shared.config import get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from settlement.config import get_settlement_settings
from settlement.engine import build_settlement_engine, run_settlement_loop

logger = get_logger(__name__)


async def main() -> None:
    setup_logging("settlement")
    settings = get_settings()
    settlement_settings = get_settlement_settings()

    db = DatabaseManager(settings)
    try:
        await db.connect()
    except Exception as e:
        logger.exception("startup_connect_failed", error=str(e))
        raise

    engine = build_settlement_engine(db, settlement_settings, settings)
    await engine.client.start()
    start_metrics_server(settlement_settings.metrics_port)

    loop_task = asyncio.create_task(
        run_settlement_loop(
            engine,
            settlement_settings.cycle_interval_s,
            settlement_settings.jitter_factor,
            settlement_settings.error_backoff_s,
        )
    )

    shutdown = asyncio.Event()

    def on_signal() -> None:
        shutdown.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            asyncio.get_running_loop().add_signal_handler(sig, on_signal)
        except NotImplementedError:
            pass

    logger.info(
        "settlement_started",
        interval_s=settlement_settings.cycle_interval_s,
        concurrency=settlement_settings.worker_concurrency,
    )
    await shutdown.wait()

    loop_task.cancel()
    try:
        await loop_task
    except asyncio.CancelledError:
        pass

    await engine.client.close()
    await db.disconnect()
    logger.info("settlement_stopped")


if __name__ == "__main__":
    asyncio.run(main())
