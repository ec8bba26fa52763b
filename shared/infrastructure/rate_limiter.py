"""
Per-domain fetch pacing.

The limiter hands out fetch slots: each domain's next slot is at least
``delay`` seconds after the previously reserved one, so callers queued
concurrently are spaced out rather than released together.
"""
import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional

import redis.asyncio as redis_asyncio

from shared.config import config
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class DomainRateLimiter:
    """In-process slot reservation keyed by domain"""

    def __init__(
        self,
        default_delay: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.default_delay = config.crawler.crawl_delay_seconds if default_delay is None else default_delay
        self._clock = clock
        self._sleep = sleep
        self._next_slot: Dict[str, float] = {}
        # Created on first use, inside the running loop
        self._lock: Optional[asyncio.Lock] = None

    def effective_delay(self, delay: Optional[float] = None) -> float:
        """Robots crawl-delay only ever lengthens the default interval"""
        if delay is None:
            return self.default_delay
        return max(self.default_delay, delay)

    async def _reserve(self, domain: str, delay: float) -> float:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot.get(domain, now))
            self._next_slot[domain] = slot + delay
            return slot

    async def acquire(self, domain: str, delay: Optional[float] = None) -> float:
        """
        Wait until this caller may fetch from ``domain``.

        Args:
            domain: Host being fetched
            delay: Minimum interval for this domain (e.g. robots Crawl-delay)

        Returns:
            The clock time of the reserved slot
        """
        interval = self.effective_delay(delay)
        slot = await self._reserve(domain.lower(), interval)
        wait = slot - self._clock()
        if wait > 0:
            logger.debug(f"Rate limiting {domain}: waiting {wait:.2f}s")
            await self._sleep(wait)
        return slot

    async def close(self):
        pass


# Atomically reserve the next slot for a domain. Times are in milliseconds.
_RESERVE_SLOT_SCRIPT = """
local now = tonumber(ARGV[1])
local interval = tonumber(ARGV[2])
local next_slot = tonumber(redis.call('GET', KEYS[1]) or '0')
local slot = math.max(now, next_slot)
redis.call('SET', KEYS[1], slot + interval, 'PX', (slot - now) + interval + 60000)
return slot
"""


class RedisDomainRateLimiter(DomainRateLimiter):
    """
    Slot reservation shared by every process pointed at the same Redis.

    Uses wall-clock time because slots are compared across hosts.
    """

    KEY_PATTERN = "{prefix}:ratelimit:{domain}"

    def __init__(self, redis_client, key_prefix: Optional[str] = None, default_delay: Optional[float] = None,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep):
        super().__init__(default_delay=default_delay, clock=time.time, sleep=sleep)
        self._redis = redis_client
        self.key_prefix = key_prefix or config.redis.key_prefix
        self._script = self._redis.register_script(_RESERVE_SLOT_SCRIPT)

    async def _reserve(self, domain: str, delay: float) -> float:
        key = self.KEY_PATTERN.format(prefix=self.key_prefix, domain=domain)
        now_ms = int(self._clock() * 1000)
        slot_ms = await self._script(keys=[key], args=[now_ms, int(delay * 1000)])
        return int(slot_ms) / 1000.0

    async def close(self):
        await self._redis.aclose()


def create_rate_limiter() -> DomainRateLimiter:
    """Redis-backed limiter when REDIS_URL is configured, in-process otherwise"""
    if config.redis.is_available:
        client = redis_asyncio.from_url(config.redis.url, decode_responses=True)
        logger.info("Using Redis-backed domain rate limiter")
        return RedisDomainRateLimiter(client)

    logger.info("Using in-process domain rate limiter")
    return DomainRateLimiter()
