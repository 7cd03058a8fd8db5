"""
Scheduler Entry Point.

Usage:
    python -m sitegate.scheduler_main

Runs the APScheduler loop for scoring, recommendations, expiry and event
draining. No web server.
"""

import asyncio
import signal

import structlog

from sitegate.config import settings
from sitegate.db.engine import close_db, init_db
from sitegate.logging_setup import configure_logging
from sitegate.scheduler import SiteGateScheduler
from sitegate.wiring import build_services

logger = structlog.get_logger(__name__)


async def main():
    configure_logging()
    logger.info("scheduler_starting", version=settings.app_version, environment=settings.environment)

    await init_db()
    batch = build_services().batch
    scheduler = SiteGateScheduler(batch)

    # Catch up on anything left unprocessed while we were down
    await batch.process_pending_events(settings.event_drain_batch_size)

    scheduler.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("scheduler_running", msg="Waiting for jobs... Ctrl+C to stop.")
    await stop_event.wait()

    scheduler.stop()
    await close_db()
    logger.info("scheduler_shutdown_complete")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
