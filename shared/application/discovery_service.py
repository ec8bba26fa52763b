"""
RepositoryDiscoveryService - finds candidate repositories on GitHub

Stage 1 collects contributors of the seed repositories into Developer rows.
Stage 2 scans the top developers' repositories, organizations and starred
repositories, plus the seed organizations, into Repository rows.

GitHub calls fan out over a bounded thread pool; the calling thread is the
only one that touches the database session.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shared.config import config
from shared.exceptions import BlockCollectorError
from shared.infrastructure.github_service import GitHubService, RepoInfo
from shared.models import Developer, DeveloperPriority, Organization, Repository, _utcnow
from shared.utils.database import upsert
from shared.utils.error_handling import describe_error
from shared.utils.logging import get_logger, log_stage_complete, log_stage_start
from shared.utils.metrics import get_metrics

logger = get_logger(__name__)


def priority_for_contributions(contributions: int) -> DeveloperPriority:
    if contributions > 100:
        return DeveloperPriority.HIGH
    if contributions > 20:
        return DeveloperPriority.MEDIUM
    return DeveloperPriority.LOW


def matches_starred_keywords(full_name: str, keywords: Optional[Iterable[str]] = None) -> bool:
    """A starred repository is relevant when its name mentions a platform keyword"""
    keywords = config.discovery.starred_keywords if keywords is None else keywords
    lowered = full_name.lower()
    return any(keyword.lower() in lowered for keyword in keywords)


def run_in_pool(items: List, worker: Callable, max_workers: int) -> List[Tuple[object, object, Optional[Exception]]]:
    """
    Apply ``worker`` to each item on a thread pool.

    Returns (item, value, error) tuples in input order; a failing item's
    exception is returned rather than raised so the other items still run.
    """
    def call(item):
        try:
            return item, worker(item), None
        except Exception as e:
            logger.warning(f"Discovery call failed for {item}: {e}")
            return item, None, e

    if not items:
        return []
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        return list(executor.map(call, items))


@dataclass
class ContributorDiscoveryResult:
    repositories_queried: int = 0
    developers_found: int = 0
    developers_created: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class DiscoveryResult:
    developers_scanned: int = 0
    orgs_discovered: int = 0
    repos_discovered: int = 0
    repos_created: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class OrganizationScan:
    name: str
    repos: List[RepoInfo] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class DeveloperScan:
    username: str
    repos: List[RepoInfo] = field(default_factory=list)
    orgs: List[OrganizationScan] = field(default_factory=list)
    starred: List[RepoInfo] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class RepositoryDiscoveryService:
    """Service responsible for discovering candidate repositories"""

    def __init__(self, db: Session, github_service: Optional[GitHubService] = None,
                 max_workers: Optional[int] = None):
        self.db = db
        self.github = github_service or GitHubService()
        self.max_workers = max_workers or config.discovery.max_workers
        self.metrics = get_metrics()

    # === STAGE 1: CONTRIBUTORS ===

    def discover_contributors(self, seed_repositories: Optional[List[str]] = None,
                              max_per_repo: Optional[int] = None) -> ContributorDiscoveryResult:
        """
        Upsert the contributors of the seed repositories as Developers.

        Contribution counts are summed across seed repositories; the stored
        priority never decreases on a later run.
        """
        seeds = list(seed_repositories or config.discovery.seed_repositories)
        limit = max_per_repo or config.discovery.max_contributors_per_repo
        result = ContributorDiscoveryResult()
        log_stage_start('contributor discovery', f"{len(seeds)} seed repositories")

        totals: Dict[str, Dict] = {}
        fetched = run_in_pool(seeds, lambda repo: self.github.list_contributors(repo, limit), self.max_workers)
        for repo, contributors, error in fetched:
            if error is not None:
                self.metrics.record_error('discovery')
                result.errors.append(f"Failed to fetch contributors from {repo}: {describe_error(error)}")
                continue
            result.repositories_queried += 1
            for contributor in contributors:
                entry = totals.setdefault(contributor.login, {'contributions': 0, 'sources': []})
                entry['contributions'] += contributor.contributions
                entry['sources'].append(repo)

        ranked = sorted(totals.items(), key=lambda item: item[1]['contributions'], reverse=True)
        for username, entry in ranked:
            try:
                created = self._save_developer(username, entry['contributions'], entry['sources'])
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                result.errors.append(f"Failed to save developer {username}: {describe_error(e)}")
                continue
            result.developers_found += 1
            if created:
                result.developers_created += 1

        logger.info(f"Found {result.developers_found} contributors ({result.developers_created} new)")
        log_stage_complete('contributor discovery', f"{len(seeds)} seed repositories", len(result.errors))
        return result

    def _save_developer(self, username: str, contributions: int, sources: List[str]) -> bool:
        priority = int(priority_for_contributions(contributions))
        existing = self.db.query(Developer).filter_by(username=username).first()
        if existing is not None:
            priority = max(priority, existing.priority or 0)
        _developer, created = upsert(
            self.db, Developer,
            keys={'username': username},
            values={
                'priority': priority,
                'contributions': contributions,
                'source_repositories': sources,
            }
        )
        return created

    # === STAGE 2: DEVELOPERS AND ORGANIZATIONS ===

    def developers_to_scan(self, limit: int) -> List[Developer]:
        """Highest priority first, never-scanned before least recently scanned"""
        return (
            self.db.query(Developer)
            .order_by(
                Developer.priority.desc(),
                Developer.last_scanned_at.is_(None).desc(),
                Developer.last_scanned_at.asc(),
                Developer.contributions.desc(),
            )
            .limit(limit)
            .all()
        )

    def _scan_developer(self, username: str) -> DeveloperScan:
        """Runs on a pool thread: GitHub calls only, no database access"""
        scan = DeveloperScan(username=username)
        scan.repos = self.github.list_user_repositories(username)

        orgs = self.github.list_user_organizations(username, config.discovery.max_orgs_per_developer)
        for org in orgs:
            try:
                scan.orgs.append(OrganizationScan(name=org, repos=self.github.list_organization_repositories(org)))
            except BlockCollectorError as e:
                scan.orgs.append(OrganizationScan(name=org, error=describe_error(e)))

        try:
            starred = self.github.list_starred_repositories(username, config.discovery.max_starred_pages)
            scan.starred = [r for r in starred if matches_starred_keywords(r.full_name)]
        except BlockCollectorError as e:
            scan.errors.append(f"Failed to list starred repositories of {username}: {describe_error(e)}")
        return scan

    def scan_developers(self, max_developers: Optional[int] = None) -> DiscoveryResult:
        """
        Scan the top developers, then the seed organizations.

        A failure for one developer or organization is recorded and the scan
        continues with the next one.
        """
        limit = max_developers or config.discovery.max_developers
        result = DiscoveryResult()
        developers = self.developers_to_scan(limit)
        log_stage_start('developer scan', f"{len(developers)} developers")

        usernames = [d.username for d in developers]
        for username, scan, error in run_in_pool(usernames, self._scan_developer, self.max_workers):
            if error is not None:
                self.metrics.record_error('discovery')
                result.errors.append(f"Failed to scan developer {username}: {describe_error(error)}")
                continue
            try:
                self._save_developer_scan(scan, result)
                self.db.commit()
                result.developers_scanned += 1
            except SQLAlchemyError as e:
                self.db.rollback()
                result.errors.append(f"Failed to save scan of {username}: {describe_error(e)}")

        self.scan_seed_organizations(result)

        log_stage_complete('developer scan', f"{len(developers)} developers", len(result.errors))
        return result

    def _save_developer_scan(self, scan: DeveloperScan, result: DiscoveryResult):
        developer = self.db.query(Developer).filter_by(username=scan.username).one()
        result.errors.extend(scan.errors)

        for repo in scan.repos:
            self._save_repository(repo, f"developer:{scan.username}", result)

        for org_scan in scan.orgs:
            if org_scan.error:
                result.errors.append(f"Failed to scan org {org_scan.name}: {org_scan.error}")
                self._save_organization(org_scan.name, developer.id, None)
                result.orgs_discovered += 1
                continue
            self._save_organization(org_scan.name, developer.id, len(org_scan.repos))
            result.orgs_discovered += 1
            for repo in org_scan.repos:
                self._save_repository(repo, f"org:{org_scan.name}", result)

        for repo in scan.starred:
            self._save_repository(repo, f"starred:{scan.username}", result)

        developer.repos_discovered = len(scan.repos)
        developer.orgs_discovered = len(scan.orgs)
        developer.last_scanned_at = _utcnow()

    def scan_seed_organizations(self, result: Optional[DiscoveryResult] = None,
                                organizations: Optional[List[str]] = None) -> DiscoveryResult:
        """Scan the well-known organizations directly"""
        result = result if result is not None else DiscoveryResult()
        orgs = list(organizations or config.discovery.seed_organizations)

        fetched = run_in_pool(orgs, self.github.list_organization_repositories, self.max_workers)
        for org, repos, error in fetched:
            if error is not None:
                self.metrics.record_error('discovery')
                result.errors.append(f"Failed to scan {org} org: {describe_error(error)}")
                continue
            logger.info(f"Found {len(repos)} repos in {org}")
            try:
                self._save_organization(org, None, len(repos))
                for repo in repos:
                    self._save_repository(repo, f"org:{org}", result)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                result.errors.append(f"Failed to save {org} repositories: {describe_error(e)}")
        return result

    def _save_organization(self, name: str, developer_id: Optional[str], repo_count: Optional[int]):
        values = {}
        if developer_id is not None:
            values['discovered_via_id'] = developer_id
        if repo_count is not None:
            values['repo_count'] = repo_count
            values['last_scanned_at'] = _utcnow()
        upsert(self.db, Organization, keys={'name': name}, values=values)

    def _save_repository(self, repo: RepoInfo, provenance: str, result: DiscoveryResult):
        _repository, created = upsert(
            self.db, Repository,
            keys={'full_name': repo.full_name},
            values={
                'owner': repo.owner,
                'name': repo.name,
                'default_branch': repo.default_branch,
                'discovered_via': provenance,
            }
        )
        result.repos_discovered += 1
        if created:
            result.repos_created += 1
            self.metrics.record_repository_discovered(provenance.split(':', 1)[0])

    # === FULL RUN ===

    def run_discovery(self, max_developers: Optional[int] = None) -> DiscoveryResult:
        """Contributor discovery followed by the developer and organization scan"""
        contributors = self.discover_contributors()
        result = self.scan_developers(max_developers)
        result.errors = contributors.errors + result.errors
        logger.info(
            f"Discovery finished: {result.developers_scanned} developers, "
            f"{result.orgs_discovered} organizations, {result.repos_discovered} repositories"
        )
        return result
