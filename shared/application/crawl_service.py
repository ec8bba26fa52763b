"""
SiteCrawlService - crawls one site into Page records and stored HTML

Seeds a growing frontier with the homepage, sitemap URLs and common content
paths, then walks it breadth-first under robots rules and a page budget.
"""
import hashlib
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from packages.extractor.block_parser import count_blocks
from packages.extractor.page_parser import extract_link_targets, extract_page_metadata, infer_template_type
from shared.config import config
from shared.exceptions import StorageError
from shared.infrastructure.blob_store import BlobStore, get_blob_store, page_html_key
from shared.infrastructure.fetcher import PoliteFetcher, RobotsRules, is_path_allowed
from shared.models import CrawlStatus, Page, Site, _utcnow
from shared.utils.database import upsert
from shared.utils.error_handling import describe_error
from shared.utils.logging import get_logger, log_stage_complete, log_stage_start
from shared.utils.metrics import get_metrics
from shared.utils.url_utils import is_preview_domain, normalize_path, resolve_internal_link

logger = get_logger(__name__)

COMMON_PATHS = [
    '/', '/about', '/about-us', '/contact', '/contact-us', '/products', '/services',
    '/solutions', '/blog', '/news', '/resources', '/support', '/help', '/faq',
    '/pricing', '/features', '/customers', '/case-studies', '/partners', '/careers',
    '/team', '/company', '/documentation', '/docs', '/getting-started', '/overview',
    '/home',
]


@dataclass
class CrawlOptions:
    max_pages: Optional[int] = None
    respect_robots: bool = True
    include_sitemap: bool = True


@dataclass
class CrawledPage:
    page_id: str
    path: str
    url: str
    template_type: str
    block_count: int = 0


@dataclass
class SiteCrawlResult:
    site_id: str
    domain: str = ''
    status: str = CrawlStatus.PENDING
    pages_discovered: int = 0
    pages_crawled: int = 0
    pages_skipped_robots: int = 0
    blocks_found: int = 0
    pages: List[CrawledPage] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class _Frontier:
    """Ordered path queue read with an advancing index; appends never re-add a path"""

    def __init__(self):
        self.paths: List[str] = []
        self._seen = set()
        self.index = 0

    def add(self, path: Optional[str]):
        if path and path not in self._seen:
            self._seen.add(path)
            self.paths.append(path)

    def next(self) -> Optional[str]:
        if self.index >= len(self.paths):
            return None
        path = self.paths[self.index]
        self.index += 1
        return path

    def __len__(self):
        return len(self.paths)


class SiteCrawlService:
    """Service responsible for crawling a single site"""

    def __init__(self, db: Session, fetcher: Optional[PoliteFetcher] = None,
                 blob_store: Optional[BlobStore] = None):
        self.db = db
        self.fetcher = fetcher or PoliteFetcher()
        self.blob_store = blob_store or get_blob_store()
        self.metrics = get_metrics()

    async def crawl_site(self, site_id: str, options: Optional[CrawlOptions] = None) -> SiteCrawlResult:
        """
        Crawl one site up to the page budget.

        A failure on one page is recorded and the crawl moves on; only an
        error outside the page loop marks the site failed.

        Args:
            site_id: Site to crawl
            options: Page budget, robots and sitemap switches

        Returns:
            SiteCrawlResult with crawled pages and collected errors
        """
        options = options or CrawlOptions()
        max_pages = options.max_pages if options.max_pages is not None else config.crawler.max_pages
        result = SiteCrawlResult(site_id=site_id)

        site = self.db.get(Site, site_id)
        if site is None:
            result.status = CrawlStatus.FAILED
            result.errors.append(f"Site not found: {site_id}")
            return result

        result.domain = site.domain
        # Preview hosts disallow everything in robots.txt
        check_robots = options.respect_robots and not is_preview_domain(site.domain)

        log_stage_start('site crawl', site.domain)
        site.crawl_status = CrawlStatus.IN_PROGRESS
        self.db.commit()

        try:
            rules = RobotsRules()
            if check_robots:
                rules = await self.fetcher.parse_robots(site.domain)

            frontier = _Frontier()
            frontier.add('/')
            if options.include_sitemap:
                for path in await self._sitemap_paths(site.domain, rules):
                    frontier.add(path)
            for path in COMMON_PATHS:
                frontier.add(path)

            while result.pages_crawled < max_pages:
                path = frontier.next()
                if path is None:
                    break
                if check_robots and not is_path_allowed(path, rules):
                    logger.debug(f"Skipping {path} on {site.domain}: disallowed by robots.txt")
                    result.pages_skipped_robots += 1
                    continue
                try:
                    await self._crawl_page(site, path, rules, frontier, result)
                except Exception as e:
                    self.db.rollback()
                    self.metrics.record_error('crawl')
                    logger.warning(f"Failed to crawl {path} on {site.domain}: {e}", exc_info=True)
                    result.errors.append(f"Failed to crawl {path}: {describe_error(e)}")

            result.pages_discovered = len(frontier)
            self._finish(site, result, CrawlStatus.COMPLETE)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Site crawl failed for {site.domain}: {e}", exc_info=True)
            self.metrics.record_error('crawl')
            result.errors.append(f"Site crawl failed: {describe_error(e)}")
            self._finish(site, result, CrawlStatus.FAILED)

        log_stage_complete('site crawl', site.domain, errors=len(result.errors))
        return result

    async def _sitemap_paths(self, domain: str, rules: RobotsRules) -> List[str]:
        sitemap_urls = rules.sitemaps or [f"https://{domain}/sitemap.xml"]
        base_url = f"https://{domain}/"
        paths = []
        for sitemap_url in sitemap_urls:
            for entry in await self.fetcher.parse_sitemap(sitemap_url, min_delay=rules.crawl_delay):
                path = resolve_internal_link(entry.url, base_url, domain)
                if path:
                    paths.append(path)
        logger.info(f"Sitemaps for {domain} listed {len(paths)} same-domain paths")
        return paths

    async def _crawl_page(self, site: Site, path: str, rules: RobotsRules,
                          frontier: _Frontier, result: SiteCrawlResult):
        url = f"https://{site.domain}{path}"
        fetched = await self.fetcher.fetch_polite(url, min_delay=rules.crawl_delay)
        if not fetched.ok:
            logger.info(f"No page at {url}: {fetched.error}")
            return

        content_type = fetched.headers.get('content-type', 'text/html')
        if 'html' not in content_type:
            logger.debug(f"Skipping non-HTML response for {url} ({content_type})")
            return

        html = fetched.body
        try:
            page = self._store_page(site, path, url, html, fetched.elapsed_ms)
        except (SQLAlchemyError, StorageError) as e:
            self.db.rollback()
            self.metrics.record_error('crawl')
            logger.warning(f"Failed to store page {url}: {e}")
            result.errors.append(f"Failed to store {url}: {describe_error(e)}")
            return

        result.pages_crawled += 1
        result.blocks_found += page.block_count
        result.pages.append(CrawledPage(
            page_id=page.id,
            path=path,
            url=url,
            template_type=page.template_type,
            block_count=page.block_count
        ))

        for href in extract_link_targets(html):
            frontier.add(resolve_internal_link(href, url, site.domain))

    def _store_page(self, site: Site, path: str, url: str, html: str, load_time_ms: int) -> Page:
        """Write the HTML blob and upsert the Page row under one id"""
        path = normalize_path(path)
        existing = self.db.query(Page).filter_by(site_id=site.id, path=path).first()
        page_id = existing.id if existing else str(uuid.uuid4())

        html_key = page_html_key(site.id, page_id)
        self.blob_store.put_text(html_key, html)

        template_type = infer_template_type(path, html)
        page, _created = upsert(
            self.db, Page,
            keys={'site_id': site.id, 'path': path},
            values={
                'id': page_id,
                'url': url,
                'template_type': template_type,
                'content_hash': hashlib.sha256(html.encode('utf-8')).hexdigest(),
                'load_time_ms': load_time_ms,
                'html_key': html_key,
                'page_metadata': extract_page_metadata(html),
                'block_count': count_blocks(html),
                'crawled_at': _utcnow(),
            }
        )
        self.db.commit()
        self.metrics.record_page_stored(template_type)
        return page

    def _finish(self, site: Site, result: SiteCrawlResult, status: str):
        result.status = status
        site.crawl_status = status
        if status == CrawlStatus.COMPLETE:
            site.page_count = self.db.query(func.count(Page.id)).filter(Page.site_id == site.id).scalar() or 0
            site.block_count = result.blocks_found
            site.last_crawled_at = _utcnow()
            site.site_metadata = {
                **(site.site_metadata or {}),
                'last_crawl': {
                    'pages_discovered': result.pages_discovered,
                    'pages_crawled': result.pages_crawled,
                    'pages_skipped_robots': result.pages_skipped_robots,
                    'errors': len(result.errors),
                },
            }
        self.db.commit()
        self.metrics.record_site_crawl(status)
