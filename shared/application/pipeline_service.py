"""
PipelineService - chains the stages: discover, verify, queue, crawl, extract, score

Used by the queue worker and the scheduler; every run returns a result object
carrying the per-stage results and their errors.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from shared.application.crawl_service import CrawlOptions, SiteCrawlResult, SiteCrawlService
from shared.application.discovery_service import DiscoveryResult, RepositoryDiscoveryService
from shared.application.extraction_service import BlockExtractionService, SiteExtractionResult
from shared.application.scoring_service import QualityScoringService, ScoreBlocksResult
from shared.application.verification_service import RepositoryVerificationService, VerificationResult
from shared.infrastructure.blob_store import BlobStore, get_blob_store
from shared.infrastructure.fetcher import PoliteFetcher
from shared.infrastructure.github_service import GitHubService
from shared.infrastructure.queue_service import CrawlQueueService
from shared.models import CrawlStatus, Site
from shared.utils.error_handling import describe_error
from shared.utils.http_client import HTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import get_metrics
from shared.utils.url_utils import extract_domain

logger = get_logger(__name__)

SITES_PER_CYCLE = 10
PENDING_SITES_PER_CYCLE = 500


@dataclass
class QueueProcessResult:
    processed: bool = False
    job_id: Optional[str] = None
    site_id: Optional[str] = None
    job_status: Optional[str] = None
    crawl: Optional[SiteCrawlResult] = None
    extraction: Optional[SiteExtractionResult] = None
    scoring: Optional[ScoreBlocksResult] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    discovery: Optional[DiscoveryResult] = None
    verification: Optional[VerificationResult] = None
    sites_queued: int = 0
    sites_processed: List[QueueProcessResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class PipelineService:
    """Runs the stage services in order against one database session"""

    def __init__(self, db: Session, fetcher: Optional[PoliteFetcher] = None,
                 blob_store: Optional[BlobStore] = None, github_service: Optional[GitHubService] = None,
                 http_client: Optional[HTTPClient] = None):
        self.db = db
        self.fetcher = fetcher or PoliteFetcher()
        self.blob_store = blob_store or get_blob_store()
        self._github_service = github_service
        self._http_client = http_client
        self.queue = CrawlQueueService(db)
        self.crawler = SiteCrawlService(db, fetcher=self.fetcher, blob_store=self.blob_store)
        self.extractor = BlockExtractionService(db, blob_store=self.blob_store)
        self.scorer = QualityScoringService(db, blob_store=self.blob_store)
        self.metrics = get_metrics()

    @property
    def github_service(self) -> GitHubService:
        if self._github_service is None:
            self._github_service = GitHubService()
        return self._github_service

    def _site_for_job(self, job) -> Optional[Site]:
        if job.site_id:
            return self.db.get(Site, job.site_id)
        domain = extract_domain(job.url)
        return self.db.query(Site).filter_by(domain=domain).first() if domain else None

    async def process_next_in_queue(self, options: Optional[CrawlOptions] = None,
                                    extract: bool = True, score: bool = True) -> QueueProcessResult:
        """
        Claim one crawl job, crawl its site and settle the job.

        A successful crawl is followed by block extraction and scoring. A
        failed crawl goes back to the queue until its attempts run out.
        """
        result = QueueProcessResult()
        job = self.queue.claim_next()
        if job is None:
            return result

        result.processed = True
        result.job_id = job.id
        site = self._site_for_job(job)
        if site is None:
            result.errors.append(f"No site for crawl job {job.id} ({job.url})")
            result.job_status = self.queue.complete(job.id, CrawlStatus.FAILED, result.errors[-1])
            return result
        result.site_id = site.id

        try:
            crawl = await self.crawler.crawl_site(site.id, options)
        except Exception as e:
            logger.error(f"Crawl of {site.domain} raised: {e}", exc_info=True)
            result.errors.append(f"Crawl failed: {describe_error(e)}")
            result.job_status = self.queue.complete(job.id, CrawlStatus.FAILED, result.errors[-1])
            return result

        result.crawl = crawl
        result.errors.extend(crawl.errors)
        if crawl.status != CrawlStatus.COMPLETE:
            error = crawl.errors[-1] if crawl.errors else 'Crawl did not complete'
            result.job_status = self.queue.complete(job.id, CrawlStatus.FAILED, error)
            return result

        result.job_status = self.queue.complete(job.id, CrawlStatus.COMPLETE)
        if extract:
            result.extraction = self.extractor.extract_blocks_from_site(site.id)
            result.errors.extend(result.extraction.errors)
            design = self.extractor.extract_design_system(site.id)
            result.errors.extend(design.errors)
        if score:
            result.scoring = self.scorer.score_blocks_for_site(site.id, delete_unrated=False)
            result.errors.extend(result.scoring.errors)
        return result

    async def drain_queue(self, max_sites: int = SITES_PER_CYCLE) -> List[QueueProcessResult]:
        processed = []
        for _ in range(max_sites):
            outcome = await self.process_next_in_queue()
            if not outcome.processed:
                logger.info("Crawl queue empty")
                break
            processed.append(outcome)
            logger.info(f"Processed {len(processed)}/{max_sites}: site {outcome.site_id} ({outcome.job_status})")
        return processed

    def run_discovery_stage(self, max_developers: Optional[int] = None,
                            max_repos: Optional[int] = None, check_live_url: bool = True) -> PipelineResult:
        result = PipelineResult()
        result.discovery = RepositoryDiscoveryService(self.db, self.github_service).run_discovery(max_developers)
        result.errors.extend(result.discovery.errors)

        verifier = RepositoryVerificationService(self.db, self.github_service, http_client=self._http_client)
        result.verification = verifier.verify_repositories(max_repos, check_live_url=check_live_url)
        result.errors.extend(result.verification.errors)
        return result

    async def run_full_pipeline(self, max_developers: Optional[int] = None, max_repos: Optional[int] = None,
                                max_sites: int = SITES_PER_CYCLE) -> PipelineResult:
        """Discover, verify, queue pending sites, then crawl, extract and score up to ``max_sites``"""
        result = self.run_discovery_stage(max_developers, max_repos)
        result.sites_queued = len(self.queue.queue_pending_sites(PENDING_SITES_PER_CYCLE))
        result.sites_processed = await self.drain_queue(max_sites)
        for outcome in result.sites_processed:
            result.errors.extend(outcome.errors)
        logger.info(
            f"Pipeline finished: {result.sites_queued} queued, {len(result.sites_processed)} processed, "
            f"{len(result.errors)} error(s)"
        )
        return result

    async def run_scheduled_cycle(self, weekly: bool = False, max_sites: int = SITES_PER_CYCLE) -> PipelineResult:
        """
        Hourly: requeue stale jobs, queue pending sites and drain the queue.
        Weekly runs discovery and verification first.
        """
        result = PipelineResult()
        if weekly:
            if self.github_service.github_token:
                result = self.run_discovery_stage(max_developers=20, max_repos=50)
            else:
                logger.warning("Skipping weekly discovery: GITHUB_TOKEN not set")

        self.queue.requeue_stale()
        result.sites_queued = len(self.queue.queue_pending_sites(PENDING_SITES_PER_CYCLE))
        result.sites_processed = await self.drain_queue(max_sites)
        for outcome in result.sites_processed:
            result.errors.extend(outcome.errors)
        return result

    async def close(self):
        await self.fetcher.close()
