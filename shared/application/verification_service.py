"""
RepositoryVerificationService - confirms candidate repositories and creates Sites

A repository is checked for the platform's structural markers through the
GitHub contents API. Confirmed repositories can additionally be checked at
their canonical preview URL; a live page that looks like a platform page
becomes a Site with a queued crawl.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shared.application.discovery_service import run_in_pool
from shared.config import config
from shared.infrastructure.github_service import GitHubService
from shared.infrastructure.queue_service import CrawlQueueService
from shared.models import CrawlStatus, Repository, Site, _utcnow
from shared.utils.database import upsert
from shared.utils.error_handling import describe_error
from shared.utils.http_client import HTTPClient
from shared.utils.logging import get_logger, log_stage_complete, log_stage_start
from shared.utils.metrics import get_metrics
from shared.utils.url_utils import construct_live_url, extract_domain, is_preview_domain

logger = get_logger(__name__)

# (marker, repository path, weight)
REPOSITORY_MARKERS = [
    ('aem_js', 'scripts/aem.js', 35),
    ('blocks_dir', 'blocks', 25),
    ('fstab_yaml', 'fstab.yaml', 15),
    ('helix_dir', '.helix', 15),
    ('scripts_dir', 'scripts', 5),
    ('styles_dir', 'styles', 5),
]

RUM_SNIPPETS = ('ot.aem.live', 'rum.hlx.page', 'rum.hlx.live', '@adobe/helix-rum-js')
LIVE_CONFIDENCE_THRESHOLD = 50


def repository_confidence(markers: Dict[str, bool]) -> int:
    score = sum(weight for name, _path, weight in REPOSITORY_MARKERS if markers.get(name))
    return min(100, score)


def is_confirmed_repository(markers: Dict[str, bool]) -> bool:
    """The core script alone confirms; otherwise blocks plus a site manifest or config directory"""
    if markers.get('aem_js'):
        return True
    return bool(markers.get('blocks_dir') and (markers.get('fstab_yaml') or markers.get('helix_dir')))


@dataclass
class LiveDetection:
    url: str
    is_eds: bool = False
    confidence: int = 0
    signals: Dict[str, bool] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def live_url(self) -> Optional[str]:
        return self.url if self.is_eds else None


def score_live_page(url: str, html: str, headers) -> LiveDetection:
    """Weigh the signals of a fetched page; 50 or more counts as a platform page"""
    html = html or ''
    signals = {
        'preview_domain': is_preview_domain(extract_domain(url)),
        'rum_script': any(snippet in html for snippet in RUM_SNIPPETS),
        'aem_js': 'aem.js' in html,
        'lib_franklin_js': 'lib-franklin.js' in html,
        'block_structure': 'class="' in html and ('-wrapper"' in html or ' block"' in html),
        'section_structure': 'class="section' in html,
        'cdn_headers': 'x-served-by' in headers or 'surrogate-key' in headers,
    }
    weights = {
        'preview_domain': 30,
        'rum_script': 25,
        'aem_js': 20,
        'lib_franklin_js': 15,
        'block_structure': 10,
        'section_structure': 5,
        'cdn_headers': 5,
    }
    confidence = min(100, sum(weights[name] for name, present in signals.items() if present))
    return LiveDetection(
        url=url,
        is_eds=confidence >= LIVE_CONFIDENCE_THRESHOLD,
        confidence=confidence,
        signals=signals
    )


def detect_live_site(url: str, http_client: HTTPClient) -> LiveDetection:
    """Fetch a URL and score it; transport failures and non-2xx responses are negative"""
    try:
        response = http_client.get(url)
    except httpx.HTTPError as e:
        logger.info(f"Live check failed for {url}: {e}")
        return LiveDetection(url=url, error=f"{type(e).__name__}: {e}")
    if not response.is_success:
        return LiveDetection(url=url, error=f"HTTP {response.status_code}")
    return score_live_page(url, response.text, response.headers)


@dataclass
class RepositoryCheck:
    markers: Dict[str, bool]
    confidence: int
    confirmed: bool
    live: Optional[LiveDetection] = None


@dataclass
class VerificationResult:
    repos_checked: int = 0
    eds_confirmed: int = 0
    sites_created: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class SiteUrlDiscoveryResult:
    repos_checked: int = 0
    discovered: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class OrganizationSitesResult:
    org: str
    repos_checked: int = 0
    sites: List[Dict[str, str]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class RepositoryVerificationService:
    """Service responsible for verifying repositories and creating Sites"""

    def __init__(self, db: Session, github_service: Optional[GitHubService] = None,
                 http_client: Optional[HTTPClient] = None, max_workers: Optional[int] = None):
        self.db = db
        self.github = github_service or GitHubService()
        self.http_client = http_client or HTTPClient()
        self.max_workers = max_workers or config.discovery.max_workers
        self.queue = CrawlQueueService(db)
        self.metrics = get_metrics()

    def check_repository_markers(self, full_name: str, branch: str) -> Dict[str, bool]:
        return {
            name: self.github.path_exists(full_name, path, ref=branch)
            for name, path, _weight in REPOSITORY_MARKERS
        }

    def _check(self, repo: Dict[str, str], check_live_url: bool) -> RepositoryCheck:
        """Runs on a pool thread: GitHub and HTTP calls only"""
        markers = self.check_repository_markers(repo['full_name'], repo['branch'])
        check = RepositoryCheck(
            markers=markers,
            confidence=repository_confidence(markers),
            confirmed=is_confirmed_repository(markers)
        )
        if check.confirmed and check_live_url:
            url = construct_live_url(repo['owner'], repo['name'], repo['branch'])
            check.live = detect_live_site(url, self.http_client)
        return check

    def unscanned_repositories(self, limit: int) -> List[Repository]:
        return (
            self.db.query(Repository)
            .filter(Repository.last_scanned_at.is_(None))
            .order_by(Repository.created_at.asc())
            .limit(limit)
            .all()
        )

    def verify_repositories(self, max_repos: Optional[int] = None, check_live_url: bool = False) -> VerificationResult:
        """
        Check unscanned repositories for the platform markers.

        A repository whose check fails is left unscanned and picked up again
        by the next run.

        Args:
            max_repos: Number of repositories to check
            check_live_url: Also check confirmed repositories at their preview URL

        Returns:
            VerificationResult with counts and per-repository errors
        """
        limit = max_repos or config.discovery.max_repos_per_verification
        result = VerificationResult()
        repos = self.unscanned_repositories(limit)
        log_stage_start('repository verification', f"{len(repos)} repositories")

        items = [self._describe(repo) for repo in repos]
        for item, check, error in run_in_pool(items, lambda r: self._check(r, check_live_url), self.max_workers):
            if error is not None:
                self.metrics.record_error('verification')
                result.errors.append(f"Failed to verify repo {item['full_name']}: {describe_error(error)}")
                continue
            try:
                site_created = self._save_check(item['id'], check)
            except SQLAlchemyError as e:
                self.db.rollback()
                result.errors.append(f"Failed to save verification of {item['full_name']}: {describe_error(e)}")
                continue

            result.repos_checked += 1
            self.metrics.record_repository_verified('confirmed' if check.confirmed else 'unconfirmed')
            if check.confirmed:
                result.eds_confirmed += 1
            if site_created:
                result.sites_created += 1

        log_stage_complete('repository verification', f"{len(repos)} repositories", len(result.errors))
        return result

    @staticmethod
    def _describe(repo: Repository) -> Dict[str, str]:
        # Plain values so pool threads never touch ORM instances
        return {
            'id': repo.id,
            'full_name': repo.full_name,
            'owner': repo.owner,
            'name': repo.name,
            'branch': repo.default_branch or 'main',
        }

    def _save_check(self, repository_id: str, check: RepositoryCheck) -> bool:
        repository = self.db.get(Repository, repository_id)
        repository.markers = check.markers
        repository.eds_confidence = check.confidence
        repository.is_eds_confirmed = check.confirmed
        repository.last_scanned_at = _utcnow()

        created = False
        if check.live is not None and check.live.is_eds:
            repository.live_url = check.live.live_url
            created = self._create_site(check.live.live_url, repository.id)
        self.db.commit()
        return created

    def _create_site(self, live_url: str, repository_id: Optional[str]) -> bool:
        """Upsert a pending Site for the URL's host and queue its crawl"""
        domain = extract_domain(live_url)
        values = {'repository_id': repository_id} if repository_id else {}
        site, created = upsert(self.db, Site, keys={'domain': domain}, values=values)
        if created:
            site.crawl_status = CrawlStatus.PENDING
            self.db.commit()
            self.queue.queue_site_for_crawl(site.id)
            logger.info(f"Created site {domain}")
        return created

    def discover_site_urls(self, limit: int = 50) -> SiteUrlDiscoveryResult:
        """Check confirmed repositories that have no live URL yet"""
        result = SiteUrlDiscoveryResult()
        repos = (
            self.db.query(Repository)
            .filter(Repository.is_eds_confirmed.is_(True), Repository.live_url.is_(None))
            .order_by(Repository.created_at.asc())
            .limit(limit)
            .all()
        )
        items = [self._describe(repo) for repo in repos]

        def check(item):
            return detect_live_site(construct_live_url(item['owner'], item['name'], item['branch']),
                                    self.http_client)

        for item, detection, error in run_in_pool(items, check, self.max_workers):
            if error is not None:
                result.errors.append(f"Failed to discover URL for {item['full_name']}: {describe_error(error)}")
                continue
            result.repos_checked += 1
            if not detection.is_eds:
                continue
            try:
                repository = self.db.get(Repository, item['id'])
                repository.live_url = detection.live_url
                self._create_site(detection.live_url, repository.id)
                self.db.commit()
                result.discovered += 1
            except SQLAlchemyError as e:
                self.db.rollback()
                result.errors.append(f"Failed to save site for {item['full_name']}: {describe_error(e)}")

        logger.info(f"Discovered {result.discovered} live site URL(s) from {result.repos_checked} repositories")
        return result

    def scan_organization_sites(self, org: str, max_repos: int = 100) -> OrganizationSitesResult:
        """Create a Site for every repository of ``org`` whose main-branch preview answers"""
        result = OrganizationSitesResult(org=org)
        try:
            repos = self.github.list_organization_repositories(org, limit=max_repos)
        except Exception as e:
            self.metrics.record_error('verification')
            result.errors.append(f"Failed to scan org {org}: {describe_error(e)}")
            return result

        def probe(repo):
            url = construct_live_url(org, repo.name, 'main')
            try:
                return url, self.http_client.head(url).is_success
            except httpx.HTTPError as e:
                logger.debug(f"No live site for {repo.full_name}: {e}")
                return url, False

        for repo, outcome, error in run_in_pool(repos, probe, self.max_workers):
            if error is not None:
                result.errors.append(f"Failed to check {repo.full_name}: {describe_error(error)}")
                continue
            result.repos_checked += 1
            url, is_live = outcome
            if not is_live:
                continue
            try:
                repository = self.db.query(Repository).filter_by(full_name=repo.full_name).first()
                self._create_site(url, repository.id if repository else None)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                result.errors.append(f"Failed to save site for {repo.full_name}: {describe_error(e)}")
                continue
            result.sites.append({'domain': extract_domain(url), 'repo': repo.full_name, 'live_url': url})

        logger.info(f"Found {len(result.sites)} live site(s) in {org}")
        return result
