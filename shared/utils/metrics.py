"""
Prometheus metrics utilities for the Block Collector.
Counters and histograms for each pipeline stage: fetch, crawl queue,
discovery, extraction and scoring.
"""
import time
from typing import Optional
from contextlib import contextmanager
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, Info, start_http_server
import logging

logger = logging.getLogger(__name__)


class AppMetrics:
    """
    Centralized metrics collection for the Block Collector pipeline.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize metrics with optional custom registry"""
        self.registry = registry or CollectorRegistry()
        self._setup_metrics()

    def _setup_metrics(self):
        """Setup all application metrics"""

        # === FETCH METRICS ===

        self.pages_fetched = Counter(
            'blockcollector_fetches_total',
            'Total number of polite HTTP fetches',
            ['kind', 'outcome'],  # page/robots/sitemap, success/http_error/transport_error
            registry=self.registry
        )

        self.fetch_duration = Histogram(
            'blockcollector_fetch_duration_seconds',
            'Duration of HTTP fetches, excluding rate limit waits',
            ['kind'],
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
            registry=self.registry
        )

        self.rate_limit_wait = Histogram(
            'blockcollector_rate_limit_wait_seconds',
            'Time spent waiting for a per-domain fetch slot',
            buckets=[0, 0.5, 1, 3, 5, 10, 30, 60],
            registry=self.registry
        )

        # === CRAWL METRICS ===

        self.crawl_jobs = Counter(
            'blockcollector_crawl_jobs_total',
            'Crawl queue transitions',
            ['status'],  # enqueued/claimed/complete/retry/failed
            registry=self.registry
        )

        self.site_crawls = Counter(
            'blockcollector_site_crawls_total',
            'Completed site crawls',
            ['status'],  # complete/failed
            registry=self.registry
        )

        self.pages_stored = Counter(
            'blockcollector_pages_stored_total',
            'Pages persisted by the crawler',
            ['template_type'],
            registry=self.registry
        )

        # === DISCOVERY METRICS ===

        self.repositories_discovered = Counter(
            'blockcollector_repositories_discovered_total',
            'Repositories recorded by discovery',
            ['source'],  # developer/org/starred
            registry=self.registry
        )

        self.repositories_verified = Counter(
            'blockcollector_repositories_verified_total',
            'Repositories checked for block-convention markers',
            ['result'],  # confirmed/unconfirmed/error
            registry=self.registry
        )

        self.api_requests_total = Counter(
            'blockcollector_api_requests_total',
            'Total number of external API requests',
            ['service', 'status'],
            registry=self.registry
        )

        self.api_rate_limit_remaining = Gauge(
            'blockcollector_api_rate_limit_remaining',
            'Remaining API rate limit',
            ['service'],
            registry=self.registry
        )

        # === EXTRACTION / SCORING METRICS ===

        self.blocks_extracted = Counter(
            'blockcollector_blocks_extracted_total',
            'Blocks extracted from stored pages',
            registry=self.registry
        )

        self.blocks_scored = Counter(
            'blockcollector_blocks_scored_total',
            'Blocks scored, by resulting tier',
            ['tier'],
            registry=self.registry
        )

        self.blocks_pruned = Counter(
            'blockcollector_blocks_pruned_total',
            'Low-quality blocks deleted after scoring',
            registry=self.registry
        )

        # === OPERATIONAL METRICS ===

        self.service_up = Gauge(
            'blockcollector_service_up',
            'Service health status (1=up, 0=down)',
            ['service'],
            registry=self.registry
        )

        self.errors_total = Counter(
            'blockcollector_errors_total',
            'Total number of recorded errors',
            ['stage'],
            registry=self.registry
        )

        self.app_info = Info(
            'blockcollector_app_info',
            'Application information',
            registry=self.registry
        )

        self.app_info.info({
            'name': 'block-collector',
            'component': 'metrics',
            'description': 'Block corpus discovery, crawl, extraction and scoring pipeline'
        })

    # === HELPERS ===

    def record_fetch(self, kind: str, outcome: str, duration_seconds: float):
        """Record a completed fetch"""
        self.pages_fetched.labels(kind=kind, outcome=outcome).inc()
        self.fetch_duration.labels(kind=kind).observe(duration_seconds)

    def record_rate_limit_wait(self, seconds: float):
        self.rate_limit_wait.observe(max(0.0, seconds))

    def record_crawl_job(self, status: str):
        self.crawl_jobs.labels(status=status).inc()

    def record_site_crawl(self, status: str):
        self.site_crawls.labels(status=status).inc()

    def record_page_stored(self, template_type: str):
        self.pages_stored.labels(template_type=template_type).inc()

    def record_repository_discovered(self, source: str):
        """Record a repository found via developer/org/starred provenance"""
        self.repositories_discovered.labels(source=source).inc()

    def record_repository_verified(self, result: str):
        self.repositories_verified.labels(result=result).inc()

    def record_api_request(self, service: str, status: str):
        """Record an external API request"""
        self.api_requests_total.labels(service=service, status=status).inc()

    def update_api_rate_limit(self, service: str, remaining: int):
        """Update API rate limit remaining"""
        self.api_rate_limit_remaining.labels(service=service).set(remaining)

    def record_blocks_extracted(self, count: int):
        self.blocks_extracted.inc(count)

    def record_block_scored(self, tier: str):
        self.blocks_scored.labels(tier=tier).inc()

    def record_blocks_pruned(self, count: int):
        self.blocks_pruned.inc(count)

    def set_service_health(self, service: str, is_up: bool):
        """Set service health status"""
        self.service_up.labels(service=service).set(1 if is_up else 0)

    def record_error(self, stage: str):
        """Record an error occurrence"""
        self.errors_total.labels(stage=stage).inc()

    @contextmanager
    def time_fetch(self, kind: str):
        """Context manager to time a fetch; the caller sets the outcome on the yielded dict"""
        start_time = time.time()
        state = {'outcome': 'transport_error'}
        try:
            yield state
        finally:
            duration = time.time() - start_time
            self.record_fetch(kind, state['outcome'], duration)


# Global metrics instance
_metrics_instance = None


def get_metrics() -> AppMetrics:
    """Get the global metrics instance"""
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = AppMetrics()
    return _metrics_instance


def start_metrics_server(port: int = 9100, addr: str = '0.0.0.0'):
    """Start the Prometheus metrics HTTP server"""
    try:
        start_http_server(port, addr, registry=get_metrics().registry)
        logger.info(f"Metrics server started on {addr}:{port}")
    except Exception as e:
        logger.error(f"Failed to start metrics server: {e}")
        raise
