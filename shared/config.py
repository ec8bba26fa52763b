"""
Centralized configuration management for the Block Collector project.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Optional
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (compatible; EDS-Block-Collector/1.0; "
    "+https://github.com/adobe/aem-boilerplate)"
)


@dataclass
class DatabaseConfig:
    """Database configuration settings"""
    url: str
    echo: bool = False

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        url = os.environ.get("DATABASE_URL", "sqlite:///block_collector.db")

        # Heroku-style URLs are not accepted by SQLAlchemy 2.x
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+psycopg2://", 1)

        return cls(
            url=url,
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true"
        )


@dataclass
class RedisConfig:
    """Redis configuration, used for the shared per-domain rate limiter"""
    url: Optional[str] = None
    key_prefix: str = "block-collector"

    @classmethod
    def from_env(cls) -> 'RedisConfig':
        return cls(
            url=os.getenv("REDIS_URL") or None,
            key_prefix=os.getenv("REDIS_KEY_PREFIX", "block-collector")
        )

    @property
    def is_available(self) -> bool:
        return bool(self.url)


@dataclass
class GitHubConfig:
    """GitHub API configuration settings"""
    token: Optional[str] = None
    api_per_page: int = 100
    rate_limit_buffer: int = 50

    @classmethod
    def from_env(cls) -> 'GitHubConfig':
        return cls(
            token=os.getenv("GITHUB_TOKEN") or None,
            api_per_page=int(os.getenv("GITHUB_PER_PAGE", "100")),
            rate_limit_buffer=int(os.getenv("GITHUB_RATE_LIMIT_BUFFER", "50"))
        )


@dataclass
class CrawlerConfig:
    """Politeness and budget settings for site crawls"""
    user_agent: str = DEFAULT_USER_AGENT
    crawl_delay_seconds: float = 3.0
    max_pages: int = 25
    request_timeout: int = 30
    max_child_sitemaps: int = 5
    preview_domain_suffixes: tuple = (".aem.live", ".aem.page", ".hlx.live", ".hlx.page")

    @classmethod
    def from_env(cls) -> 'CrawlerConfig':
        return cls(
            user_agent=os.getenv("CRAWLER_USER_AGENT", DEFAULT_USER_AGENT),
            crawl_delay_seconds=float(os.getenv("CRAWL_DELAY_SECONDS", "3.0")),
            max_pages=int(os.getenv("CRAWL_MAX_PAGES", "25")),
            request_timeout=int(os.getenv("CRAWL_REQUEST_TIMEOUT", "30")),
            max_child_sitemaps=int(os.getenv("CRAWL_MAX_CHILD_SITEMAPS", "5"))
        )


@dataclass
class StorageConfig:
    """Blob storage settings"""
    backend: str = "filesystem"  # filesystem, memory
    root: str = "./blob-data"

    @classmethod
    def from_env(cls) -> 'StorageConfig':
        return cls(
            backend=os.getenv("BLOB_BACKEND", "filesystem"),
            root=os.getenv("BLOB_ROOT", "./blob-data")
        )


@dataclass
class DiscoveryConfig:
    """Limits and seeds for repository discovery"""
    max_developers: int = 50
    max_orgs_per_developer: int = 10
    max_contributors_per_repo: int = 100
    max_starred_pages: int = 5
    max_repos_per_verification: int = 100
    max_workers: int = 4
    seed_repositories: list = field(default_factory=list)
    seed_organizations: list = field(default_factory=list)
    starred_keywords: list = field(default_factory=list)

    @classmethod
    def from_env(cls) -> 'DiscoveryConfig':
        seeds = _load_discovery_seeds()
        return cls(
            max_developers=int(os.getenv("DISCOVERY_MAX_DEVELOPERS", "50")),
            max_orgs_per_developer=int(os.getenv("DISCOVERY_MAX_ORGS_PER_DEVELOPER", "10")),
            max_contributors_per_repo=int(os.getenv("DISCOVERY_MAX_CONTRIBUTORS", "100")),
            max_starred_pages=int(os.getenv("DISCOVERY_MAX_STARRED_PAGES", "5")),
            max_repos_per_verification=int(os.getenv("DISCOVERY_MAX_VERIFY", "100")),
            max_workers=int(os.getenv("DISCOVERY_MAX_WORKERS", "4")),
            seed_repositories=seeds["repositories"],
            seed_organizations=seeds["organizations"],
            starred_keywords=seeds["starred_keywords"]
        )


@dataclass
class ApplicationConfig:
    """General application configuration"""
    environment: str = "development"
    debug: bool = False
    metrics_port: int = 9100

    # Retry mechanism configuration
    max_retries: int = 3
    retry_delay_seconds: int = 60

    @classmethod
    def from_env(cls) -> 'ApplicationConfig':
        return cls(
            environment=os.getenv("ENVIRONMENT", "development"),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            metrics_port=int(os.getenv("METRICS_PORT", "9100")),
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            retry_delay_seconds=int(os.getenv("RETRY_DELAY_SECONDS", "60"))
        )


@dataclass
class Config:
    """Main configuration class that combines all configuration sections"""
    database: DatabaseConfig
    redis: RedisConfig
    github: GitHubConfig
    crawler: CrawlerConfig
    storage: StorageConfig
    discovery: DiscoveryConfig
    application: ApplicationConfig

    @classmethod
    def from_env(cls) -> 'Config':
        """Create configuration from environment variables"""
        return cls(
            database=DatabaseConfig.from_env(),
            redis=RedisConfig.from_env(),
            github=GitHubConfig.from_env(),
            crawler=CrawlerConfig.from_env(),
            storage=StorageConfig.from_env(),
            discovery=DiscoveryConfig.from_env(),
            application=ApplicationConfig.from_env()
        )


# =============================================================================
# Discovery seeds
# =============================================================================

def _get_default_seeds() -> dict:
    """Return the built-in discovery seeds"""
    return {
        "repositories": [
            "adobe/aem-boilerplate",
            "adobe/helix-website",
            "adobe/helix-project-boilerplate",
            "adobe/aem-lib",
            "adobe/helix-shared",
            "adobe/helix-sidekick",
            "adobe/helix-sidekick-extension",
        ],
        "organizations": ["aemsites", "hlxsites"],
        "starred_keywords": ["hlx", "helix", "eds", "franklin"],
    }


def _load_discovery_seeds() -> dict:
    """Load discovery seeds from YAML file"""
    config_path = os.getenv(
        "DISCOVERY_CONFIG_PATH",
        str(Path(__file__).parent.parent / "config" / "discovery.yaml")
    )
    defaults = _get_default_seeds()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        seeds = {}
        for key, default in defaults.items():
            value = data.get(key)
            if value is None:
                seeds[key] = default
            elif not isinstance(value, list):
                logger.warning("Expected a list for %s in discovery config, using defaults", key)
                seeds[key] = default
            else:
                seeds[key] = [str(item) for item in value]
        return seeds
    except FileNotFoundError:
        logger.warning("discovery.yaml not found at %s, using defaults", config_path)
        return defaults
    except yaml.YAMLError as e:
        logger.error("Failed to parse YAML at %s: %s, using defaults", config_path, e)
        return defaults


# Global configuration instance
config = Config.from_env()
