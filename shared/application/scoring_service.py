"""
QualityScoringService - batch quality scoring, pruning and reporting for a site's blocks
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from packages.scorer.quality import TIERS, UNRATED, round_half_up, score_block
from shared.exceptions import StorageError
from shared.infrastructure.blob_store import BlobStore, block_html_key, block_metadata_key, get_blob_store
from shared.models import Block, Site
from shared.utils.error_handling import describe_error
from shared.utils.logging import get_logger, log_stage_complete, log_stage_start
from shared.utils.metrics import get_metrics

logger = get_logger(__name__)

PRUNE_FLOOR = 50
LOW_AXIS_THRESHOLD = 70
TOP_ISSUE_LIMIT = 10


def _empty_tiers() -> Dict[str, int]:
    return {tier: 0 for tier in TIERS}


@dataclass
class ScoreBlocksResult:
    site_id: str
    scored: int = 0
    skipped: int = 0
    deleted: int = 0
    by_tier: Dict[str, int] = field(default_factory=_empty_tiers)
    average_score: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class QualityReport:
    site_id: str
    total_blocks: int = 0
    scored_blocks: int = 0
    tier_distribution: Dict[str, int] = field(default_factory=_empty_tiers)
    average_score: int = 0
    top_issues: List[Dict] = field(default_factory=list)
    block_name_quality: List[Dict] = field(default_factory=list)


class QualityScoringService:
    """Service responsible for scoring blocks and maintaining site quality aggregates"""

    def __init__(self, db: Session, blob_store: Optional[BlobStore] = None):
        self.db = db
        self.blob_store = blob_store or get_blob_store()
        self.metrics = get_metrics()

    def _block_html(self, block: Block) -> Optional[str]:
        if block.html_key:
            html = self.blob_store.get_text(block.html_key)
            if html:
                return html
        return block.cleaned_html

    def score_blocks_for_site(self, site_id: str, delete_unrated: bool = False) -> ScoreBlocksResult:
        """
        Score every block of a site and persist score, tier, breakdown and issues.

        Args:
            site_id: Site whose blocks are scored
            delete_unrated: Afterwards delete blocks below the floor or without a score

        Returns:
            ScoreBlocksResult with tier counts and the rounded average score
        """
        result = ScoreBlocksResult(site_id=site_id)
        log_stage_start('quality scoring', site_id)
        blocks = self.db.query(Block).filter(Block.site_id == site_id).order_by(Block.created_at.asc()).all()

        total = 0
        for block in blocks:
            try:
                html = self._block_html(block)
            except StorageError as e:
                result.errors.append(f"Failed to load block {block.id}: {describe_error(e)}")
                continue
            if not html:
                result.skipped += 1
                continue

            score = score_block(html, block.has_javascript, block.has_interactivity)
            block.quality_score = score['overall']
            block.quality_tier = score['tier']
            block.quality_breakdown = score['breakdown']
            block.quality_issues = score['issues']
            try:
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                self.metrics.record_error('scoring')
                result.errors.append(f"Failed to score block {block.id}: {describe_error(e)}")
                continue

            result.scored += 1
            result.by_tier[score['tier']] += 1
            total += score['overall']
            self.metrics.record_block_scored(score['tier'])

        if result.scored:
            result.average_score = round_half_up(total / result.scored)

        if delete_unrated:
            result.deleted = self.prune_low_quality_blocks(site_id)

        self.refresh_site_quality(site_id)
        log_stage_complete('quality scoring', site_id, len(result.errors))
        return result

    def prune_low_quality_blocks(self, site_id: str, floor: int = PRUNE_FLOOR) -> int:
        """Delete the site's blocks scoring below ``floor`` or never scored, with their blobs"""
        doomed = (
            self.db.query(Block)
            .filter(
                Block.site_id == site_id,
                or_(Block.quality_score.is_(None), Block.quality_score < floor)
            )
            .all()
        )
        for block in doomed:
            for key in (block.html_key or block_html_key(site_id, block.id), block_metadata_key(site_id, block.id)):
                try:
                    self.blob_store.delete(key)
                except StorageError as e:
                    logger.warning(f"Could not delete blob {key}: {e}")
            self.db.delete(block)
        self.db.commit()

        if doomed:
            logger.info(f"Pruned {len(doomed)} block(s) below {floor} from site {site_id}")
            self.metrics.record_blocks_pruned(len(doomed))
        return len(doomed)

    def refresh_site_quality(self, site_id: str):
        """Recompute the site's block count and average score from its remaining blocks"""
        site = self.db.get(Site, site_id)
        if site is None:
            return
        count, average = (
            self.db.query(func.count(Block.id), func.avg(Block.quality_score))
            .filter(Block.site_id == site_id)
            .one()
        )
        site.block_count = count or 0
        site.average_quality_score = float(average) if average is not None else None
        self.db.commit()

    def generate_quality_report(self, site_id: str) -> QualityReport:
        """Tier distribution, low-scoring axes and per-block-name averages for a site"""
        report = QualityReport(site_id=site_id)
        blocks = self.db.query(Block).filter(Block.site_id == site_id).all()
        report.total_blocks = len(blocks)

        total = 0
        issue_counts: Dict[str, int] = {}
        name_scores: Dict[str, Dict[str, int]] = {}
        for block in blocks:
            if block.quality_score is None:
                report.tier_distribution[UNRATED] += 1
                continue

            report.scored_blocks += 1
            total += block.quality_score
            if block.quality_tier:
                report.tier_distribution[block.quality_tier] += 1

            entry = name_scores.setdefault(block.block_name, {'total': 0, 'count': 0})
            entry['total'] += block.quality_score
            entry['count'] += 1

            for axis, value in (block.quality_breakdown or {}).items():
                if value < LOW_AXIS_THRESHOLD:
                    issue = f"Low {axis} score"
                    issue_counts[issue] = issue_counts.get(issue, 0) + 1

        if report.scored_blocks:
            report.average_score = round_half_up(total / report.scored_blocks)

        report.top_issues = [
            {'issue': issue, 'count': count}
            for issue, count in sorted(issue_counts.items(), key=lambda item: item[1], reverse=True)
        ][:TOP_ISSUE_LIMIT]

        report.block_name_quality = sorted(
            (
                {'name': name, 'avg_score': round_half_up(e['total'] / e['count']), 'count': e['count']}
                for name, e in name_scores.items()
            ),
            key=lambda item: item['avg_score'],
            reverse=True
        )
        return report
