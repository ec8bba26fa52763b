"""
Unit tests for shared/infrastructure/queue_service.py
"""
import datetime
import pytest

from shared.exceptions import QueueError
from shared.infrastructure.queue_service import CrawlQueueService
from shared.models import CrawlJob, CrawlStatus, Site


class TestEnqueueAndClaim:
    """Tests for enqueue and claim_next."""

    def test_claim_on_empty_queue_returns_none(self, db_session):
        """Nothing queued means nothing claimed."""
        assert CrawlQueueService(db_session).claim_next() is None

    def test_claim_marks_in_progress_and_counts_attempt(self, db_session):
        """Claiming flips the job to in_progress and increments attempts."""
        queue = CrawlQueueService(db_session)
        queue.enqueue("https://a.example/")

        job = queue.claim_next()

        assert job.status == CrawlStatus.IN_PROGRESS
        assert job.attempts == 1
        assert job.started_at is not None
        assert queue.claim_next() is None

    def test_priority_then_age_ordering(self, db_session):
        """Lower priority numbers go first, then older jobs."""
        queue = CrawlQueueService(db_session)
        queue.enqueue("https://low.example/", priority=9)
        queue.enqueue("https://first.example/", priority=1)
        queue.enqueue("https://second.example/", priority=1)

        claimed = [queue.claim_next().url for _ in range(3)]

        assert claimed == ["https://first.example/", "https://second.example/", "https://low.example/"]

    def test_enqueue_deduplicates_active_url(self, db_session):
        """A URL already waiting is not queued twice; the higher priority is kept."""
        queue = CrawlQueueService(db_session)
        first = queue.enqueue("https://a.example/", priority=5)
        second = queue.enqueue("https://a.example/", priority=2)

        assert first.id == second.id
        assert db_session.query(CrawlJob).count() == 1
        assert second.priority == 2

    def test_enqueue_rejects_empty_url(self, db_session):
        """An empty URL is a queue error."""
        with pytest.raises(QueueError):
            CrawlQueueService(db_session).enqueue("")


class TestComplete:
    """Tests for complete and the retry policy."""

    def test_success_marks_complete(self, db_session):
        """A completed job is never claimed again."""
        queue = CrawlQueueService(db_session)
        queue.enqueue("https://a.example/")
        job = queue.claim_next()

        assert queue.complete(job.id, CrawlStatus.COMPLETE) == CrawlStatus.COMPLETE
        assert queue.claim_next() is None

    def test_failure_with_attempts_left_requeues(self, db_session):
        """A failure below max_attempts returns the job to pending."""
        queue = CrawlQueueService(db_session)
        queue.enqueue("https://a.example/")
        job = queue.claim_next()

        assert queue.complete(job.id, CrawlStatus.FAILED, "boom") == CrawlStatus.PENDING
        again = queue.claim_next()
        assert again.id == job.id
        assert again.attempts == 2

    def test_three_failures_are_never_claimed_again(self, db_session):
        """After max_attempts failures the job stays failed for good."""
        queue = CrawlQueueService(db_session)
        queue.enqueue("https://a.example/")

        statuses = []
        for _ in range(3):
            job = queue.claim_next()
            statuses.append(queue.complete(job.id, CrawlStatus.FAILED, "timeout"))

        assert statuses == [CrawlStatus.PENDING, CrawlStatus.PENDING, CrawlStatus.FAILED]
        assert queue.claim_next() is None
        stored = db_session.query(CrawlJob).one()
        assert stored.status == CrawlStatus.FAILED
        assert stored.last_error == "timeout"

    def test_invalid_status_rejected(self, db_session):
        """Only complete and failed are valid outcomes."""
        queue = CrawlQueueService(db_session)
        queue.enqueue("https://a.example/")
        job = queue.claim_next()
        with pytest.raises(QueueError):
            queue.complete(job.id, CrawlStatus.PENDING)

    def test_unknown_job_rejected(self, db_session):
        """Completing a missing job raises QueueError."""
        with pytest.raises(QueueError):
            CrawlQueueService(db_session).complete("missing", CrawlStatus.COMPLETE)


class TestQueueHelpers:
    """Tests for site queueing, stale recovery and stats."""

    def test_queue_site_for_crawl_uses_homepage(self, db_session, sample_site):
        """Sites are queued by their homepage URL."""
        job = CrawlQueueService(db_session).queue_site_for_crawl(sample_site.id, priority=3)
        assert job.url == "https://acme.example/"
        assert job.site_id == sample_site.id
        assert job.priority == 3

    def test_queue_site_for_missing_site(self, db_session):
        """Queueing an unknown site raises QueueError."""
        with pytest.raises(QueueError):
            CrawlQueueService(db_session).queue_site_for_crawl("missing")

    def test_queue_pending_sites_skips_already_queued(self, db_session, sample_site):
        """Pending sites with an active job are not queued again."""
        other = Site(domain="other.example", crawl_status=CrawlStatus.PENDING)
        done = Site(domain="done.example", crawl_status=CrawlStatus.COMPLETE)
        db_session.add_all([other, done])
        db_session.commit()
        queue = CrawlQueueService(db_session)
        queue.queue_site_for_crawl(sample_site.id)

        jobs = queue.queue_pending_sites(limit=10)

        assert [job.site_id for job in jobs] == [other.id]

    def test_requeue_stale_returns_abandoned_jobs(self, db_session):
        """In-progress jobs older than the cutoff go back to pending."""
        queue = CrawlQueueService(db_session)
        queue.enqueue("https://a.example/")
        job = queue.claim_next()
        job.started_at = datetime.datetime.utcnow() - datetime.timedelta(hours=2)
        db_session.commit()

        assert queue.requeue_stale(older_than_minutes=60) == 1
        assert queue.claim_next().id == job.id

    def test_stats_cover_every_status(self, db_session):
        """get_stats reports all four statuses, including zeros."""
        queue = CrawlQueueService(db_session)
        queue.enqueue("https://a.example/")
        queue.enqueue("https://b.example/")
        job = queue.claim_next()
        queue.complete(job.id, CrawlStatus.COMPLETE)

        assert queue.get_stats() == {
            CrawlStatus.PENDING: 1,
            CrawlStatus.IN_PROGRESS: 0,
            CrawlStatus.COMPLETE: 1,
            CrawlStatus.FAILED: 0,
        }
