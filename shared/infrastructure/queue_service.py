"""
CrawlQueueService - durable, priority-ordered crawl job queue on the relational store
"""
import datetime
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from shared.exceptions import QueueError
from shared.models import CrawlJob, CrawlStatus, Site
from shared.utils.logging import get_logger
from shared.utils.metrics import get_metrics

logger = get_logger(__name__)

DEFAULT_PRIORITY = 5
DEFAULT_MAX_ATTEMPTS = 3
ACTIVE_STATUSES = (CrawlStatus.PENDING, CrawlStatus.IN_PROGRESS)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class CrawlQueueService:
    """
    Crawl jobs are claimed with a conditional UPDATE so that concurrent
    workers never both take the same job. Lower priority numbers run first.
    """

    MAX_CLAIM_RACES = 5

    def __init__(self, db: Session):
        self.db = db
        self.metrics = get_metrics()

    def enqueue(
        self,
        url: str,
        site_id: Optional[str] = None,
        priority: int = DEFAULT_PRIORITY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS
    ) -> CrawlJob:
        """
        Add a crawl job, or return the active job already queued for the URL.

        An existing active job keeps the higher of the two priorities.
        """
        if not url:
            raise QueueError("Cannot enqueue an empty URL")

        existing = self.db.query(CrawlJob).filter(
            CrawlJob.url == url,
            CrawlJob.status.in_(ACTIVE_STATUSES)
        ).first()
        if existing:
            if priority < existing.priority:
                existing.priority = priority
                self.db.commit()
            logger.debug(f"Crawl job for {url} already queued ({existing.id})")
            return existing

        job = CrawlJob(
            url=url,
            site_id=site_id,
            priority=priority,
            status=CrawlStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts,
            created_at=_utcnow()
        )
        self.db.add(job)
        self.db.commit()
        self.metrics.record_crawl_job('enqueued')
        logger.info(f"Queued crawl job {job.id} for {url} (priority {priority})")
        return job

    def claim_next(self) -> Optional[CrawlJob]:
        """
        Atomically move the next eligible job to in_progress.

        Eligible jobs are pending with attempts below max_attempts, ordered by
        priority then age. Returns None when the queue is drained.
        """
        for _ in range(self.MAX_CLAIM_RACES):
            candidate = (
                self.db.query(CrawlJob.id)
                .filter(
                    CrawlJob.status == CrawlStatus.PENDING,
                    CrawlJob.attempts < CrawlJob.max_attempts
                )
                .order_by(CrawlJob.priority.asc(), CrawlJob.created_at.asc())
                .with_for_update(skip_locked=True)
                .first()
            )
            if candidate is None:
                self.db.commit()
                return None

            claimed = (
                self.db.query(CrawlJob)
                .filter(
                    CrawlJob.id == candidate.id,
                    CrawlJob.status == CrawlStatus.PENDING,
                    CrawlJob.attempts < CrawlJob.max_attempts
                )
                .update(
                    {
                        CrawlJob.status: CrawlStatus.IN_PROGRESS,
                        CrawlJob.attempts: CrawlJob.attempts + 1,
                        CrawlJob.started_at: _utcnow()
                    },
                    synchronize_session=False
                )
            )
            self.db.commit()

            if claimed == 1:
                job = self.db.get(CrawlJob, candidate.id)
                self.db.refresh(job)
                self.metrics.record_crawl_job('claimed')
                logger.info(f"Claimed crawl job {job.id} for {job.url} (attempt {job.attempts}/{job.max_attempts})")
                return job

            logger.debug(f"Lost claim race for job {candidate.id}, trying next candidate")

        logger.warning("Gave up claiming after repeated races with other workers")
        return None

    def complete(self, job_id: str, status: str, error: Optional[str] = None) -> str:
        """
        Record the outcome of a claimed job.

        A failure with attempts left goes back to pending; otherwise the job
        stays failed and is never claimed again.

        Returns:
            The job's resulting status
        """
        if status not in (CrawlStatus.COMPLETE, CrawlStatus.FAILED):
            raise QueueError(f"Invalid completion status: {status}", {'job_id': job_id})

        job = self.db.get(CrawlJob, job_id)
        if job is None:
            raise QueueError(f"Crawl job {job_id} not found", {'job_id': job_id})

        if status == CrawlStatus.COMPLETE:
            job.status = CrawlStatus.COMPLETE
            job.completed_at = _utcnow()
            job.last_error = None
            self.metrics.record_crawl_job('complete')
        elif job.attempts < job.max_attempts:
            job.status = CrawlStatus.PENDING
            job.last_error = error
            self.metrics.record_crawl_job('retry')
            logger.warning(f"Crawl job {job_id} failed (attempt {job.attempts}/{job.max_attempts}), requeued: {error}")
        else:
            job.status = CrawlStatus.FAILED
            job.completed_at = _utcnow()
            job.last_error = error
            self.metrics.record_crawl_job('failed')
            logger.error(f"Crawl job {job_id} permanently failed after {job.attempts} attempts: {error}")

        self.db.commit()
        return job.status

    def requeue_stale(self, older_than_minutes: int = 60) -> int:
        """
        Return in_progress jobs abandoned by a dead worker to the queue.

        Jobs that already used all attempts are marked failed instead.
        """
        cutoff = _utcnow() - datetime.timedelta(minutes=older_than_minutes)
        stale = self.db.query(CrawlJob).filter(
            CrawlJob.status == CrawlStatus.IN_PROGRESS,
            CrawlJob.started_at < cutoff
        ).all()

        for job in stale:
            if job.attempts < job.max_attempts:
                job.status = CrawlStatus.PENDING
            else:
                job.status = CrawlStatus.FAILED
                job.completed_at = _utcnow()
            job.last_error = f"Abandoned in progress since {job.started_at.isoformat()}"

        if stale:
            self.db.commit()
            logger.info(f"Released {len(stale)} stale crawl job(s)")
        return len(stale)

    def queue_site_for_crawl(self, site_id: str, priority: int = DEFAULT_PRIORITY) -> CrawlJob:
        """Queue a crawl of a site's homepage"""
        site = self.db.get(Site, site_id)
        if site is None:
            raise QueueError(f"Site {site_id} not found", {'site_id': site_id})
        return self.enqueue(f"https://{site.domain}/", site_id=site.id, priority=priority)

    def queue_pending_sites(self, limit: int = 10) -> List[CrawlJob]:
        """Queue crawls for pending sites that have no active job yet"""
        active_site_ids = select(CrawlJob.site_id).where(
            CrawlJob.site_id.isnot(None),
            CrawlJob.status.in_(ACTIVE_STATUSES)
        )
        sites = (
            self.db.query(Site)
            .filter(Site.crawl_status == CrawlStatus.PENDING, Site.id.notin_(active_site_ids))
            .order_by(Site.created_at.asc())
            .limit(limit)
            .all()
        )
        jobs = [self.queue_site_for_crawl(site.id) for site in sites]
        if jobs:
            logger.info(f"Queued {len(jobs)} pending site(s) for crawling")
        return jobs

    def get_stats(self) -> Dict[str, int]:
        """Job counts by status"""
        rows = self.db.query(CrawlJob.status, func.count(CrawlJob.id)).group_by(CrawlJob.status).all()
        stats = {status: 0 for status in (CrawlStatus.PENDING, CrawlStatus.IN_PROGRESS,
                                          CrawlStatus.COMPLETE, CrawlStatus.FAILED)}
        stats.update({status: count for status, count in rows})
        return stats
