"""
Unit tests for shared/application/stats_service.py
"""
import datetime

from shared.application.stats_service import StatsService
from shared.infrastructure.queue_service import CrawlQueueService
from shared.models import CrawlStatus, Developer, Organization, Repository, Site


class TestStatsService:
    """Tests for StatsService."""

    def test_discovery_stats(self, db_session):
        """Only scanned developers and confirmed repositories are counted as such."""
        db_session.add_all([
            Developer(username="a", last_scanned_at=datetime.datetime(2024, 1, 1)),
            Developer(username="b"),
            Organization(name="acme"),
            Repository(full_name="acme/one", owner="acme", name="one", is_eds_confirmed=True),
            Repository(full_name="acme/two", owner="acme", name="two"),
            Site(domain="one.example"),
        ])
        db_session.commit()

        assert StatsService(db_session).get_discovery_stats() == {
            'developers_scanned': 1,
            'organizations_found': 1,
            'repositories_found': 2,
            'eds_confirmed': 1,
            'sites_discovered': 1,
        }

    def test_crawl_stats(self, db_session, sample_site, sample_page):
        """Site states, pages and blocks are counted."""
        db_session.add(Site(domain="done.example", crawl_status=CrawlStatus.COMPLETE))
        db_session.add(Site(domain="broken.example", crawl_status=CrawlStatus.FAILED))
        db_session.commit()

        stats = StatsService(db_session).get_crawl_stats()

        assert stats == {
            'sites_total': 3,
            'sites_pending': 1,
            'sites_complete': 1,
            'sites_failed': 1,
            'pages_crawled': 1,
            'blocks_extracted': 0,
        }

    def test_block_stats(self, db_session, make_block):
        """Unscored blocks count as unrated and the average ignores them."""
        make_block("hero", quality_score=99, quality_tier="gold")
        make_block("cards", quality_score=85, quality_tier="bronze")
        make_block("cards", bbox_x=10, quality_score=None)

        stats = StatsService(db_session).get_block_stats()

        assert stats['total'] == 3
        assert stats['by_tier'] == {'gold': 1, 'silver': 0, 'bronze': 1, 'unrated': 1}
        assert stats['by_name'] == {'cards': 2, 'hero': 1}
        assert stats['average_quality'] == 92.0

    def test_empty_block_stats(self, db_session):
        """An empty corpus reports zeros."""
        stats = StatsService(db_session).get_block_stats()
        assert stats['total'] == 0
        assert stats['average_quality'] == 0.0
        assert stats['by_name'] == {}

    def test_queue_stats(self, db_session, sample_site):
        """Queue stats come from the crawl queue."""
        CrawlQueueService(db_session).queue_site_for_crawl(sample_site.id)
        assert StatsService(db_session).get_queue_stats()[CrawlStatus.PENDING] == 1
