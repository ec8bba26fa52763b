"""
StatsService - aggregate counts across the discovery, crawl and block tables
"""
from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from packages.scorer.quality import TIERS, UNRATED
from shared.infrastructure.queue_service import CrawlQueueService
from shared.models import Block, CrawlStatus, Developer, Organization, Page, Repository, Site

TOP_BLOCK_NAMES = 20


class StatsService:
    """Read-only statistics for operators"""

    def __init__(self, db: Session):
        self.db = db

    def _count(self, model, *criteria) -> int:
        return self.db.query(func.count(model.id)).filter(*criteria).scalar() or 0

    def get_discovery_stats(self) -> Dict[str, int]:
        return {
            'developers_scanned': self._count(Developer, Developer.last_scanned_at.isnot(None)),
            'organizations_found': self._count(Organization),
            'repositories_found': self._count(Repository),
            'eds_confirmed': self._count(Repository, Repository.is_eds_confirmed.is_(True)),
            'sites_discovered': self._count(Site),
        }

    def get_crawl_stats(self) -> Dict[str, int]:
        return {
            'sites_total': self._count(Site),
            'sites_pending': self._count(Site, Site.crawl_status == CrawlStatus.PENDING),
            'sites_complete': self._count(Site, Site.crawl_status == CrawlStatus.COMPLETE),
            'sites_failed': self._count(Site, Site.crawl_status == CrawlStatus.FAILED),
            'pages_crawled': self._count(Page),
            'blocks_extracted': self._count(Block),
        }

    def get_block_stats(self) -> Dict[str, Any]:
        """
        Block totals, counts per tier (unscored blocks are unrated), the most
        common block names and the mean score of scored blocks
        """
        by_tier = {tier: 0 for tier in TIERS}
        tier_rows = self.db.query(Block.quality_tier, func.count(Block.id)).group_by(Block.quality_tier).all()
        for tier, count in tier_rows:
            by_tier[tier or UNRATED] = by_tier.get(tier or UNRATED, 0) + count

        name_rows = (
            self.db.query(Block.block_name, func.count(Block.id).label('total'))
            .group_by(Block.block_name)
            .order_by(func.count(Block.id).desc(), Block.block_name.asc())
            .limit(TOP_BLOCK_NAMES)
            .all()
        )
        average = self.db.query(func.avg(Block.quality_score)).filter(Block.quality_score.isnot(None)).scalar()

        return {
            'total': self._count(Block),
            'by_tier': by_tier,
            'by_name': {name: count for name, count in name_rows},
            'average_quality': float(average) if average is not None else 0.0,
        }

    def get_queue_stats(self) -> Dict[str, int]:
        return CrawlQueueService(self.db).get_stats()
