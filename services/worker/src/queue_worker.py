"""
Crawl Queue Worker - claims crawl jobs and runs crawl, extraction and scoring for each
Several workers can run side by side; job claims and domain pacing are shared
through the database and Redis
"""
import sys
import os
import asyncio
import signal
import threading

# Add the project root to the Python path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '../../..'))
sys.path.insert(0, project_root)

from shared.application.pipeline_service import PipelineService
from shared.config import config
from shared.infrastructure.fetcher import PoliteFetcher
from shared.infrastructure.rate_limiter import create_rate_limiter
from shared.utils.database import get_db_session, init_db
from shared.utils.logging import get_logger
from shared.utils.metrics import get_metrics, start_metrics_server

IDLE_POLL_SECONDS = 30


class CrawlQueueWorker:
    """
    Queue worker that hands each claimed job to the pipeline service
    """

    def __init__(self, poll_interval: int = IDLE_POLL_SECONDS):
        self.logger = get_logger(__name__)
        self.poll_interval = poll_interval
        self.shutdown_event = threading.Event()
        self.metrics = get_metrics()
        self.setup_signal_handlers()

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown"""
        def signal_handler(signum, frame):
            self.logger.info(f"Received signal {signum}, finishing current job before shutdown...")
            self.shutdown_event.set()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    async def _idle(self, seconds: int):
        for _ in range(seconds):
            if self.shutdown_event.is_set():
                return
            await asyncio.sleep(1)

    async def process_one(self, fetcher: PoliteFetcher) -> bool:
        """Process a single job; returns False when the queue was empty"""
        with get_db_session() as db_session:
            pipeline = PipelineService(db_session, fetcher=fetcher)
            outcome = await pipeline.process_next_in_queue()
        if outcome.processed:
            self.logger.info(
                f"Job {outcome.job_id} for site {outcome.site_id} finished as {outcome.job_status} "
                f"with {len(outcome.errors)} error(s)"
            )
        return outcome.processed

    async def run(self):
        """Drain the queue until shutdown, backing off after unexpected failures"""
        self.logger.info("Crawl queue worker starting...")
        retry_count = 0
        max_retries = config.application.max_retries
        base_delay = config.application.retry_delay_seconds

        fetcher = PoliteFetcher(rate_limiter=create_rate_limiter())
        self.metrics.set_service_health("queue_worker", True)
        try:
            while not self.shutdown_event.is_set():
                try:
                    processed = await self.process_one(fetcher)
                    retry_count = 0
                    if not processed:
                        await self._idle(self.poll_interval)
                except Exception as e:
                    retry_count += 1
                    self.metrics.record_error('worker')
                    self.logger.error(f"Error processing crawl job (attempt {retry_count}/{max_retries}): {e}",
                                      exc_info=True)
                    if retry_count >= max_retries:
                        self.logger.error("Max retries reached. Queue worker shutting down.")
                        break
                    delay = base_delay * (2 ** (retry_count - 1))  # Exponential backoff
                    self.logger.info(f"Retrying in {delay} seconds...")
                    await self._idle(delay)
        finally:
            await fetcher.close()
            await fetcher.rate_limiter.close()
            self.metrics.set_service_health("queue_worker", False)

        self.logger.info("Queue worker shutting down gracefully...")


def main():
    """Main entry point for the queue worker"""
    logger = get_logger(__name__)
    try:
        init_db()
        start_metrics_server(config.application.metrics_port)
        worker = CrawlQueueWorker()
        asyncio.run(worker.run())
    except Exception as e:
        logger.error(f"Fatal error in queue worker: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
