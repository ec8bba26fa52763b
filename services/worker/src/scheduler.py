"""
Pipeline Scheduler - hourly queue draining and weekly repository discovery
"""
import sys
import os
import asyncio
import signal
import threading
import time

# Add the project root to the Python path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '../../..'))
sys.path.insert(0, project_root)

import schedule

from shared.application.pipeline_service import PipelineService
from shared.config import config
from shared.infrastructure.fetcher import PoliteFetcher
from shared.infrastructure.rate_limiter import create_rate_limiter
from shared.utils.database import get_db_session, init_db
from shared.utils.error_handling import handle_errors
from shared.utils.logging import get_logger
from shared.utils.metrics import get_metrics, start_metrics_server

logger = get_logger(__name__)

WEEKLY_RUN_TIME = "02:00"


async def _run_cycle(weekly: bool):
    fetcher = PoliteFetcher(rate_limiter=create_rate_limiter())
    try:
        with get_db_session() as db_session:
            pipeline = PipelineService(db_session, fetcher=fetcher)
            result = await pipeline.run_scheduled_cycle(weekly=weekly)
        logger.info(
            f"{'Weekly' if weekly else 'Hourly'} cycle done: {result.sites_queued} queued, "
            f"{len(result.sites_processed)} processed, {len(result.errors)} error(s)"
        )
    finally:
        await fetcher.close()
        await fetcher.rate_limiter.close()


@handle_errors(default_return=None, stage='scheduler')
def run_cycle(weekly: bool = False):
    """Run one scheduled cycle; failures are logged so the scheduler keeps going"""
    logger.info(f"Starting {'weekly' if weekly else 'hourly'} cycle")
    asyncio.run(_run_cycle(weekly))


def register_jobs(scheduler: schedule.Scheduler = None) -> schedule.Scheduler:
    scheduler = scheduler or schedule.default_scheduler
    scheduler.every().hour.do(run_cycle, weekly=False)
    scheduler.every().sunday.at(WEEKLY_RUN_TIME).do(run_cycle, weekly=True)
    return scheduler


def main():
    """Main entry point for the scheduler"""
    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping scheduler...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    init_db()
    start_metrics_server(config.application.metrics_port)
    metrics = get_metrics()
    metrics.set_service_health("scheduler", True)
    scheduler = register_jobs()
    logger.info(f"Scheduler started with {len(scheduler.jobs)} job(s)")

    while not shutdown_event.is_set():
        scheduler.run_pending()
        time.sleep(1)
    metrics.set_service_health("scheduler", False)
    logger.info("Scheduler stopped")


if __name__ == "__main__":
    main()
