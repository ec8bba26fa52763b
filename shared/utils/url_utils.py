"""URL utility functions shared by the crawler and discovery stages."""

from urllib.parse import urlparse, urljoin
from typing import Optional, Iterable
import re

from shared.config import config

SKIPPED_SCHEMES = ('mailto:', 'tel:', 'javascript:')
SKIPPED_PATH_PREFIXES = ('/api/', '/_', '/static/')
DOWNLOAD_EXTENSION_PATTERN = re.compile(
    r'\.(pdf|zip|doc|docx|xls|xlsx|ppt|pptx|png|jpg|jpeg|gif|svg|mp4|webm)$',
    re.IGNORECASE
)


def extract_domain(url: Optional[str]) -> Optional[str]:
    """
    Return the lower-cased host of a URL, or None for unparseable input.

    A bare hostname ("example.com") is accepted as well.
    """
    if not url:
        return None

    candidate = url if '://' in url else f"https://{url}"
    try:
        host = urlparse(candidate).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def is_preview_domain(domain: Optional[str], suffixes: Optional[Iterable[str]] = None) -> bool:
    """True for hosts on the platform's preview/live hosting suffixes"""
    if not domain:
        return False
    domain = domain.lower()
    suffixes = tuple(suffixes) if suffixes is not None else config.crawler.preview_domain_suffixes
    return any(domain.endswith(suffix) for suffix in suffixes)


def normalize_path(path: str) -> str:
    """Path component used as the per-site page key"""
    if not path:
        return '/'
    return path if path.startswith('/') else f"/{path}"


def construct_live_url(owner: str, repo: str, branch: str = 'main') -> str:
    """Canonical preview URL for a repository branch"""
    return f"https://{branch}--{repo}--{owner}.aem.live/".lower()


def resolve_internal_link(href: Optional[str], base_url: str, domain: str) -> Optional[str]:
    """
    Resolve an href found on a page to a crawlable same-domain path.

    Returns the path (without query or fragment) or None when the link should
    not be followed: mail/tel/javascript links, file downloads, other hosts,
    API and static asset prefixes.

    Args:
        href: Raw href attribute value
        base_url: URL of the page the link was found on
        domain: Domain being crawled

    Returns:
        Path beginning with "/" or None
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith('#') or href.lower().startswith(SKIPPED_SCHEMES):
        return None

    # Only root-relative links and absolute links are considered
    if not href.startswith('/') and '://' not in href:
        return None
    if href.startswith('//'):
        href = f"https:{href}"

    try:
        parsed = urlparse(urljoin(base_url, href))
    except ValueError:
        return None

    if parsed.scheme not in ('http', 'https'):
        return None
    if (parsed.hostname or '').lower() != domain.lower():
        return None

    path = normalize_path(parsed.path)
    if DOWNLOAD_EXTENSION_PATTERN.search(path):
        return None
    if path.startswith(SKIPPED_PATH_PREFIXES):
        return None
    return path
