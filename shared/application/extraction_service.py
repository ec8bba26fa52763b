"""
BlockExtractionService - turns stored page HTML into Block rows and a site design system
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from packages.extractor.block_parser import ExtractedBlock, extract_blocks
from packages.extractor.design_system import build_design_system
from shared.exceptions import ExtractionError, StorageError
from shared.infrastructure.blob_store import (
    BlobStore, block_html_key, block_metadata_key, design_tokens_key, get_blob_store, page_html_key
)
from shared.models import Block, DesignSystem, Page, Site
from shared.utils.database import upsert
from shared.utils.error_handling import ErrorHandler, describe_error
from shared.utils.logging import get_logger, log_stage_complete, log_stage_start
from shared.utils.metrics import get_metrics

logger = get_logger(__name__)

DETECTOR = 'dom-extractor'


@dataclass
class PageExtractionResult:
    page_id: str
    blocks_extracted: int = 0
    blocks_stored: int = 0
    block_names: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class SiteExtractionResult:
    site_id: str
    pages_processed: int = 0
    blocks_extracted: int = 0
    blocks_stored: int = 0
    unique_block_types: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class DesignSystemResult:
    site_id: str
    design_system: Dict = field(default_factory=dict)
    blocks_used: int = 0
    errors: List[str] = field(default_factory=list)


class BlockExtractionService:
    """Service responsible for block extraction and design system roll-up"""

    def __init__(self, db: Session, blob_store: Optional[BlobStore] = None):
        self.db = db
        self.blob_store = blob_store or get_blob_store()
        self.metrics = get_metrics()

    def _load_page_html(self, page: Page) -> str:
        key = page.html_key or page_html_key(page.site_id, page.id)
        html = self.blob_store.get_text(key)
        if html is None:
            raise ExtractionError("Page HTML not found in storage", {'page_id': page.id, 'key': key})
        return html

    def extract_blocks_from_page(self, site_id: str, page_id: str) -> PageExtractionResult:
        """
        Extract and persist the blocks of one stored page.

        Re-running on the same HTML updates the existing Block rows. A block
        whose markup changed loses its score until the next scoring pass. Blocks
        that are no longer in the markup are deleted.
        """
        result = PageExtractionResult(page_id=page_id)
        page = self.db.get(Page, page_id)
        if page is None or page.site_id != site_id:
            result.errors.append(f"Page {page_id} not found for site {site_id}")
            return result

        try:
            html = self._load_page_html(page)
        except (ExtractionError, StorageError) as e:
            result.errors.append(describe_error(e))
            return result

        extracted = extract_blocks(html)
        result.blocks_extracted = len(extracted)

        # Blocks share a zero origin, so the first block of each name is the one kept
        seen = set()
        for block in extracted:
            if block.name in seen:
                logger.debug(f"Skipping repeated block {block.name} on page {page_id}")
                continue
            seen.add(block.name)
            try:
                self._store_block(page, block)
                self.db.commit()
            except (SQLAlchemyError, StorageError) as e:
                self.db.rollback()
                self.metrics.record_error('extraction')
                result.errors.append(f"Failed to store block {block.name}: {describe_error(e)}")
                continue
            result.blocks_stored += 1
            result.block_names.append(block.name)

        self._remove_stale_blocks(page, seen, result)
        page.block_count = result.blocks_stored
        self.db.commit()
        self.metrics.record_blocks_extracted(result.blocks_stored)
        return result

    def _remove_stale_blocks(self, page: Page, current_names, result: PageExtractionResult):
        """Drop this page's blocks that no longer appear in its markup, with their blobs"""
        stale = [row for row in self.db.query(Block).filter(Block.page_id == page.id).all()
                 if row.block_name not in current_names]
        if not stale:
            return

        stale_ids = [row.id for row in stale]
        try:
            for row in stale:
                self.db.delete(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.metrics.record_error('extraction')
            result.errors.append(f"Failed to remove stale blocks: {describe_error(e)}")
            return

        for block_id in stale_ids:
            self.blob_store.delete(block_html_key(page.site_id, block_id))
            self.blob_store.delete(block_metadata_key(page.site_id, block_id))
        logger.info(f"Removed {len(stale_ids)} stale blocks from page {page.id}")

    def _store_block(self, page: Page, block: ExtractedBlock) -> Block:
        bbox = block.bounding_box
        existing = self.db.query(Block).filter_by(
            page_id=page.id, block_name=block.name, bbox_x=bbox['x'], bbox_y=bbox['y']
        ).first()
        changed = existing is None or existing.cleaned_html != block.cleaned_html

        values = {
            'site_id': page.site_id,
            'block_variant': block.variant,
            'section_index': block.section_index,
            'cleaned_html': block.cleaned_html,
            'bbox_width': bbox['width'],
            'bbox_height': bbox['height'],
            'design_tokens': block.design_tokens,
            'content_model': block.content_model,
            'css_variables': block.css_variables,
            'has_javascript': block.has_javascript,
            'has_interactivity': block.has_interactivity,
            'detected_by': DETECTOR,
        }
        if changed:
            values.update({'quality_score': None, 'quality_tier': None,
                           'quality_breakdown': None, 'quality_issues': None})

        row, _created = upsert(
            self.db, Block,
            keys={'page_id': page.id, 'block_name': block.name, 'bbox_x': bbox['x'], 'bbox_y': bbox['y']},
            values=values
        )

        html_key = block_html_key(page.site_id, row.id)
        self.blob_store.put_text(html_key, block.html)
        self.blob_store.put_json(block_metadata_key(page.site_id, row.id), {
            'block_name': block.name,
            'block_variant': block.variant,
            'page_id': page.id,
            'page_url': page.url,
            'section_index': block.section_index,
            'has_javascript': block.has_javascript,
            'has_interactivity': block.has_interactivity,
        })
        row.html_key = html_key
        return row

    def extract_blocks_from_site(self, site_id: str) -> SiteExtractionResult:
        """Run page extraction over every crawled page of a site"""
        result = SiteExtractionResult(site_id=site_id)
        site = self.db.get(Site, site_id)
        if site is None:
            result.errors.append(f"Site not found: {site_id}")
            return result

        log_stage_start('block extraction', site.domain)
        page_ids = [page_id for (page_id,) in self.db.query(Page.id).filter(Page.site_id == site_id).all()]
        block_types = []
        for page_id in page_ids:
            page_result = self.extract_blocks_from_page(site_id, page_id)
            result.pages_processed += 1
            result.blocks_extracted += page_result.blocks_extracted
            result.blocks_stored += page_result.blocks_stored
            result.errors.extend(page_result.errors)
            for name in page_result.block_names:
                if name not in block_types:
                    block_types.append(name)

        result.unique_block_types = block_types
        site.block_count = self.db.query(Block).filter(Block.site_id == site_id).count()
        self.db.commit()
        log_stage_complete('block extraction', site.domain, len(result.errors))
        return result

    def extract_design_system(self, site_id: str) -> DesignSystemResult:
        """Roll the site's block tokens and CSS variables up into its DesignSystem"""
        result = DesignSystemResult(site_id=site_id)
        rows = (
            self.db.query(Block.design_tokens, Block.css_variables)
            .filter(Block.site_id == site_id)
            .order_by(Block.created_at.asc())
            .all()
        )
        result.blocks_used = len(rows)
        system = build_design_system([r.design_tokens for r in rows], [r.css_variables for r in rows])
        result.design_system = system

        with ErrorHandler(f"design system roll-up for {site_id}", suppress_errors=True,
                          stage='extraction') as handler:
            tokens_key = design_tokens_key(site_id)
            self.blob_store.put_json(tokens_key, system)
            upsert(
                self.db, DesignSystem,
                keys={'site_id': site_id},
                values={
                    'colors': system['colors'],
                    'typography': system['typography'],
                    'spacing': system['spacing'],
                    'breakpoints': system['breakpoints'],
                    'css_variables': system['css_variables'],
                    'tokens_key': tokens_key,
                }
            )
            self.db.commit()
        if handler.error is not None:
            self.db.rollback()
            result.errors.append(f"Failed to store design system: {describe_error(handler.error)}")
        return result
