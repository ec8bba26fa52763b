"""
Polite HTTP fetching with aiohttp: per-domain pacing, robots.txt rules and
sitemap discovery.

Fetch failures are reported on the returned FetchResult and never raised, so
callers decide whether a failed page is skipped or aborts their run.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from xml.etree import ElementTree as ET

import aiohttp
import async_timeout

from shared.config import config
from shared.infrastructure.rate_limiter import DomainRateLimiter
from shared.utils.logging import get_logger
from shared.utils.metrics import get_metrics
from shared.utils.url_utils import extract_domain

logger = get_logger(__name__)


@dataclass
class FetchResult:
    url: str
    status: int = 0
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300


@dataclass
class RobotsRules:
    """Rules that apply to this crawler, taken from one robots.txt"""
    disallowed: List[str] = field(default_factory=list)
    allowed: List[str] = field(default_factory=list)
    crawl_delay: Optional[float] = None  # seconds
    sitemaps: List[str] = field(default_factory=list)


@dataclass
class SitemapEntry:
    url: str
    lastmod: Optional[str] = None
    priority: Optional[float] = None


def parse_robots_text(text: str) -> RobotsRules:
    """
    Parse robots.txt content.

    Allow/Disallow/Crawl-delay are collected from groups addressed to ``*``
    or to any agent whose name contains "bot". Sitemap lines are collected
    from anywhere in the file.
    """
    rules = RobotsRules()
    relevant = False

    for raw_line in (text or "").splitlines():
        line = raw_line.split('#', 1)[0].strip()
        if not line or ':' not in line:
            continue

        directive, value = line.split(':', 1)
        directive = directive.strip().lower()
        value = value.strip()

        if directive == 'user-agent':
            agent = value.lower()
            relevant = agent == '*' or 'bot' in agent
        elif directive == 'sitemap':
            if value and value not in rules.sitemaps:
                rules.sitemaps.append(value)
        elif not relevant:
            continue
        elif directive == 'disallow':
            # An empty Disallow permits everything
            if value and value not in rules.disallowed:
                rules.disallowed.append(value)
        elif directive == 'allow':
            if value and value not in rules.allowed:
                rules.allowed.append(value)
        elif directive == 'crawl-delay':
            try:
                delay = float(value)
            except ValueError:
                logger.debug(f"Ignoring malformed Crawl-delay: {value!r}")
                continue
            if delay >= 0 and (rules.crawl_delay is None or delay > rules.crawl_delay):
                rules.crawl_delay = delay

    return rules


def is_path_allowed(path: str, rules: RobotsRules) -> bool:
    """
    A path is blocked by the longest matching Disallow prefix unless an
    Allow prefix at least as specific also matches.
    """
    path = path or '/'
    disallow = max((p for p in rules.disallowed if path.startswith(p)), key=len, default=None)
    if disallow is None:
        return True
    allow = max((p for p in rules.allowed if path.startswith(p)), key=len, default=None)
    return allow is not None and len(allow) >= len(disallow)


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1] if '}' in tag else tag


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _local_name(child.tag) == name and child.text:
            return child.text.strip()
    return None


def parse_sitemap_document(xml_text: str):
    """
    Parse one sitemap document.

    Returns:
        Tuple of (child sitemap URLs, url entries). A sitemap index yields
        only children; a urlset yields only entries.

    Raises:
        ET.ParseError for malformed XML
    """
    root = ET.fromstring(xml_text.strip())
    children: List[str] = []
    entries: List[SitemapEntry] = []

    if _local_name(root.tag) == 'sitemapindex':
        for sitemap in root:
            if _local_name(sitemap.tag) == 'sitemap':
                loc = _child_text(sitemap, 'loc')
                if loc:
                    children.append(loc)
        return children, entries

    for url_element in root:
        if _local_name(url_element.tag) != 'url':
            continue
        loc = _child_text(url_element, 'loc')
        if not loc:
            continue
        priority = _child_text(url_element, 'priority')
        try:
            priority_value = float(priority) if priority is not None else None
        except ValueError:
            priority_value = None
        entries.append(SitemapEntry(
            url=loc,
            lastmod=_child_text(url_element, 'lastmod'),
            priority=priority_value
        ))
    return children, entries


class PoliteFetcher:
    """Rate-limited GET client shared by one crawl invocation"""

    MAX_SITEMAP_DEPTH = 2

    def __init__(
        self,
        rate_limiter: Optional[DomainRateLimiter] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[int] = None,
        max_child_sitemaps: Optional[int] = None,
    ):
        self.rate_limiter = rate_limiter or DomainRateLimiter()
        self.user_agent = user_agent or config.crawler.user_agent
        self.timeout = timeout or config.crawler.request_timeout
        self.max_child_sitemaps = (
            config.crawler.max_child_sitemaps if max_child_sitemaps is None else max_child_sitemaps
        )
        self._session: Optional[aiohttp.ClientSession] = None
        self.metrics = get_metrics()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={'User-Agent': self.user_agent})
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch_polite(self, url: str, min_delay: Optional[float] = None, kind: str = 'page') -> FetchResult:
        """
        GET a URL once its domain's fetch slot is reached.

        Args:
            url: Absolute URL to fetch
            min_delay: Per-domain interval requested by robots.txt, in seconds
            kind: Metrics label (page, robots, sitemap)

        Returns:
            FetchResult; ``error`` is set for transport failures and non-2xx responses
        """
        domain = extract_domain(url)
        if not domain:
            return FetchResult(url=url, error=f"Invalid URL: {url}")

        waited_from = time.monotonic()
        await self.rate_limiter.acquire(domain, min_delay)
        self.metrics.record_rate_limit_wait(time.monotonic() - waited_from)

        started = time.monotonic()
        with self.metrics.time_fetch(kind) as outcome:
            try:
                async with async_timeout.timeout(self.timeout):
                    async with self._get_session().get(url, allow_redirects=True) as resp:
                        body = await resp.text(errors='replace')
                        result = FetchResult(
                            url=str(resp.url),
                            status=resp.status,
                            body=body,
                            headers={k.lower(): v for k, v in resp.headers.items()},
                            elapsed_ms=int((time.monotonic() - started) * 1000)
                        )
            except asyncio.TimeoutError:
                logger.warning(f"Timed out fetching {url} after {self.timeout}s")
                return FetchResult(url=url, error=f"Timeout after {self.timeout}s")
            except aiohttp.ClientError as e:
                logger.warning(f"Fetch error for {url}: {e}")
                return FetchResult(url=url, error=f"{type(e).__name__}: {e}")

            if not 200 <= result.status < 300:
                outcome['outcome'] = 'http_error'
                result.error = f"HTTP {result.status}"
                logger.info(f"Non-success response ({result.status}) for {url}")
            else:
                outcome['outcome'] = 'success'
            return result

    async def parse_robots(self, domain: str) -> RobotsRules:
        """Fetch and parse robots.txt; any failure yields empty rules"""
        result = await self.fetch_polite(f"https://{domain}/robots.txt", kind='robots')
        if not result.ok:
            logger.info(f"No usable robots.txt for {domain} ({result.error}), allowing all paths")
            return RobotsRules()
        return parse_robots_text(result.body)

    async def parse_sitemap(self, url: str, min_delay: Optional[float] = None, _depth: int = 0) -> List[SitemapEntry]:
        """
        Fetch a sitemap and return its URL entries.

        Sitemap indexes are followed into at most ``max_child_sitemaps``
        children. Unreachable or malformed documents yield an empty list.
        """
        result = await self.fetch_polite(url, min_delay=min_delay, kind='sitemap')
        if not result.ok:
            logger.info(f"Sitemap {url} unavailable: {result.error}")
            return []

        try:
            children, entries = parse_sitemap_document(result.body)
        except ET.ParseError as e:
            logger.warning(f"Malformed sitemap {url}: {e}")
            return []

        if children:
            if _depth >= self.MAX_SITEMAP_DEPTH:
                logger.info(f"Not following nested sitemap index {url}")
                return []
            if len(children) > self.max_child_sitemaps:
                logger.info(
                    f"Sitemap index {url} lists {len(children)} sitemaps, "
                    f"reading the first {self.max_child_sitemaps}"
                )
            for child_url in children[:self.max_child_sitemaps]:
                entries.extend(await self.parse_sitemap(child_url, min_delay=min_delay, _depth=_depth + 1))

        return entries
