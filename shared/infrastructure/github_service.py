"""
GitHubService - thin PyGithub wrapper for the discovery pipeline

Returns plain dataclasses so callers never hold lazy PyGithub objects across
threads, and turns API failures into GitHubError.
"""
import threading
import time
from dataclasses import dataclass
from itertools import islice
from typing import Callable, List, Optional, TypeVar

from github import Auth, Github, GithubException, UnknownObjectException

from shared.config import config
from shared.exceptions import GitHubError
from shared.utils.logging import get_logger
from shared.utils.metrics import get_metrics

logger = get_logger(__name__)

T = TypeVar('T')


@dataclass
class RepoInfo:
    full_name: str
    owner: str
    name: str
    default_branch: str = 'main'


@dataclass
class ContributorInfo:
    login: str
    contributions: int
    is_bot: bool = False


def _repo_info(repo) -> RepoInfo:
    return RepoInfo(
        full_name=repo.full_name,
        owner=repo.owner.login,
        name=repo.name,
        default_branch=repo.default_branch or 'main'
    )


class GitHubService:
    """Service responsible for GitHub API access during discovery"""

    def __init__(self, github_token: Optional[str] = None, client: Optional[Github] = None):
        self.github_token = github_token or config.github.token
        if client is not None:
            self.github_client = client
        elif self.github_token:
            self.github_client = Github(auth=Auth.Token(self.github_token), per_page=config.github.api_per_page)
        else:
            logger.warning("GITHUB_TOKEN not set, using unauthenticated GitHub API (60 requests/hour)")
            self.github_client = Github(per_page=config.github.api_per_page)
        self.rate_limit_buffer = config.github.rate_limit_buffer
        self._rate_lock = threading.Lock()
        self.metrics = get_metrics()

    def wait_if_rate_limited(self):
        """
        Block while the remaining API budget is below the configured buffer.

        Shared by every discovery worker thread.
        """
        with self._rate_lock:
            remaining, _limit = self.github_client.rate_limiting
            self.metrics.update_api_rate_limit('github', remaining)
            if remaining >= self.rate_limit_buffer:
                return
            reset_at = self.github_client.rate_limiting_resettime
            wait = max(0, reset_at - time.time()) + 1
            logger.warning(f"GitHub rate limit low ({remaining} left), sleeping {wait:.0f}s until reset")
            time.sleep(wait)

    def _call(self, description: str, func: Callable[[], T]) -> T:
        self.wait_if_rate_limited()
        try:
            result = func()
            self.metrics.record_api_request('github', 'success')
            return result
        except GithubException as e:
            self.metrics.record_api_request('github', str(e.status))
            raise GitHubError(f"GitHub API error while {description}: {e.status}",
                              {'status': e.status, 'operation': description}) from e

    def list_contributors(self, repo_full_name: str, limit: int) -> List[ContributorInfo]:
        """Contributors of a repository, bot accounts excluded"""
        def fetch():
            contributors = []
            for user in islice(self.github_client.get_repo(repo_full_name, lazy=True).get_contributors(), limit):
                is_bot = user.type == 'Bot' or '[bot]' in user.login
                if is_bot:
                    continue
                contributors.append(ContributorInfo(login=user.login, contributions=user.contributions or 0))
            return contributors

        return self._call(f"listing contributors of {repo_full_name}", fetch)

    def list_user_repositories(self, login: str, limit: Optional[int] = None) -> List[RepoInfo]:
        def fetch():
            return [_repo_info(r) for r in islice(self.github_client.get_user(login).get_repos(), limit)]

        return self._call(f"listing repositories of {login}", fetch)

    def list_user_organizations(self, login: str, limit: int) -> List[str]:
        def fetch():
            return [org.login for org in islice(self.github_client.get_user(login).get_orgs(), limit)]

        return self._call(f"listing organizations of {login}", fetch)

    def list_starred_repositories(self, login: str, max_pages: int) -> List[RepoInfo]:
        limit = max_pages * config.github.api_per_page

        def fetch():
            return [_repo_info(r) for r in islice(self.github_client.get_user(login).get_starred(), limit)]

        return self._call(f"listing starred repositories of {login}", fetch)

    def list_organization_repositories(self, org: str, limit: Optional[int] = None) -> List[RepoInfo]:
        def fetch():
            return [_repo_info(r) for r in islice(self.github_client.get_organization(org).get_repos(), limit)]

        return self._call(f"listing repositories of organization {org}", fetch)

    def path_exists(self, repo_full_name: str, path: str, ref: Optional[str] = None) -> bool:
        """
        Check whether a file or directory exists at ``path`` on ``ref``.

        A 404 means absent; any other API failure raises GitHubError.
        """
        def fetch():
            repo = self.github_client.get_repo(repo_full_name, lazy=True)
            try:
                if ref:
                    repo.get_contents(path, ref=ref)
                else:
                    repo.get_contents(path)
                return True
            except UnknownObjectException:
                return False

        return self._call(f"checking {path} in {repo_full_name}", fetch)
