"""
Shared HTTP client for one-off synchronous checks (live site detection)
Page crawling goes through the rate-limited aiohttp fetcher instead
"""
import httpx
from typing import Dict, Optional
from shared.config import config


class HTTPClient:
    """Synchronous HTTP client with consistent configuration"""

    def __init__(self, timeout: Optional[int] = None, headers: Optional[Dict[str, str]] = None,
                 follow_redirects: bool = True):
        self.timeout = timeout or config.crawler.request_timeout
        self.headers = headers or {}

        # Add user agent from config
        if 'User-Agent' not in self.headers:
            self.headers['User-Agent'] = config.crawler.user_agent

        self.client = httpx.Client(
            timeout=self.timeout,
            headers=self.headers,
            follow_redirects=follow_redirects
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def get(self, url: str, **kwargs) -> httpx.Response:
        """Make a GET request"""
        return self.client.get(url, **kwargs)

    def head(self, url: str, **kwargs) -> httpx.Response:
        """Make a HEAD request"""
        return self.client.head(url, **kwargs)

    def close(self):
        """Close the client"""
        self.client.close()
