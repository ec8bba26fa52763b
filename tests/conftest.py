"""
Shared pytest fixtures for all tests.
"""
import os

os.environ.setdefault("BLOB_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from shared.infrastructure.blob_store import InMemoryBlobStore, page_html_key
from shared.models import Base, Site, Page, Block, CrawlStatus


SAMPLE_PAGE_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>Acme Home</title>
  <meta name="description" content="Acme builds things">
  <meta property="og:image" content="https://acme.example/og.png">
  <script src="/scripts/aem.js" type="module"></script>
</head>
<body>
<main>
  <div class="section hero-container">
    <div class="hero-wrapper">
      <div class="hero hero-dark block" data-block-name="hero" style="color: #ff0000">
        <div>
          <div>
            <h1>Welcome</h1>
            <p>Build with blocks</p>
            <picture><source srcset="/hero.webp"><img src="/hero.png" alt="Hero" loading="lazy" width="800" height="400"></picture>
          </div>
        </div>
      </div>
    </div>
  </div>
  <div class="section cards-container">
    <div class="cards-wrapper">
      <div class="cards block">
        <ul>
          <li><div class="cards-card-body"><p><a href="/products">Products</a></p></div></li>
          <li><div class="cards-card-body"><p><a href="/about">About</a></p></div></li>
        </ul>
      </div>
    </div>
  </div>
  <div class="section-metadata"><div><div>style</div><div>dark</div></div></div>
</main>
</body>
</html>
"""


@pytest.fixture
def db_engine():
    """Create an in-memory SQLite database engine for tests."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine):
    """Create a database session for tests."""
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def blob_store():
    """Fresh in-memory blob store."""
    return InMemoryBlobStore()


@pytest.fixture
def sample_page_html():
    return SAMPLE_PAGE_HTML


@pytest.fixture
def sample_site(db_session):
    """Create a sample site for testing."""
    site = Site(domain="acme.example", crawl_status=CrawlStatus.PENDING)
    db_session.add(site)
    db_session.commit()
    db_session.refresh(site)
    return site


@pytest.fixture
def sample_page(db_session, blob_store, sample_site):
    """Create a crawled page whose HTML is in the blob store."""
    page = Page(
        site_id=sample_site.id,
        url="https://acme.example/",
        path="/",
        template_type="homepage",
    )
    db_session.add(page)
    db_session.flush()
    page.html_key = page_html_key(sample_site.id, page.id)
    blob_store.put_text(page.html_key, SAMPLE_PAGE_HTML)
    db_session.commit()
    db_session.refresh(page)
    return page


@pytest.fixture
def make_block(db_session, sample_site, sample_page):
    """Factory for Block rows on the sample page."""
    def factory(name, **values):
        block = Block(
            page_id=sample_page.id,
            site_id=sample_site.id,
            block_name=name,
            bbox_x=values.pop('bbox_x', 0),
            bbox_y=values.pop('bbox_y', 0),
            **values
        )
        db_session.add(block)
        db_session.commit()
        db_session.refresh(block)
        return block
    return factory


@pytest.fixture
def mock_github():
    """GitHubService stand-in with empty answers."""
    github = MagicMock()
    github.github_token = "test-token"
    github.list_contributors.return_value = []
    github.list_user_repositories.return_value = []
    github.list_user_organizations.return_value = []
    github.list_starred_repositories.return_value = []
    github.list_organization_repositories.return_value = []
    github.path_exists.return_value = False
    return github
