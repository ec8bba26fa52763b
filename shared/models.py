from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey, DateTime, JSON, Float
import sqlalchemy as sa
from sqlalchemy.orm import declarative_base, relationship
import datetime
import enum
import uuid

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class DeveloperPriority(enum.IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class CrawlStatus:
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


class Developer(Base):
    __tablename__ = 'developers'
    id = Column(String(36), primary_key=True, default=_new_id)
    username = Column(String(255), nullable=False, unique=True)
    priority = Column(Integer, default=int(DeveloperPriority.LOW))  # DeveloperPriority value
    contributions = Column(Integer, default=0)
    source_repositories = Column(JSON, nullable=True)  # seed repos the developer contributed to
    repos_discovered = Column(Integer, default=0)
    orgs_discovered = Column(Integer, default=0)
    last_scanned_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    organizations = relationship("Organization", back_populates="discovered_by")

    __table_args__ = (
        sa.Index('ix_developers_priority', 'priority'),
    )


class Organization(Base):
    __tablename__ = 'organizations'
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False, unique=True)
    discovered_via_id = Column(String(36), ForeignKey('developers.id'), nullable=True)
    repo_count = Column(Integer, default=0)
    last_scanned_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    discovered_by = relationship("Developer", back_populates="organizations")


class Repository(Base):
    __tablename__ = 'repositories'
    id = Column(String(36), primary_key=True, default=_new_id)
    full_name = Column(String(255), nullable=False, unique=True)  # owner/name
    owner = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    default_branch = Column(String(255), default='main')
    eds_confidence = Column(Integer, default=0)  # 0-100
    is_eds_confirmed = Column(Boolean, default=False)
    markers = Column(JSON, nullable=True)  # marker name -> present
    discovered_via = Column(String(255), nullable=True)  # developer:<login>, org:<name>, starred:<login>
    live_url = Column(String, nullable=True)
    last_scanned_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    sites = relationship("Site", back_populates="repository")

    __table_args__ = (
        sa.Index('ix_repositories_confirmed', 'is_eds_confirmed'),
    )


class Site(Base):
    __tablename__ = 'sites'
    id = Column(String(36), primary_key=True, default=_new_id)
    domain = Column(String(255), nullable=False, unique=True)
    repository_id = Column(String(36), ForeignKey('repositories.id'), nullable=True)
    crawl_status = Column(String(20), default=CrawlStatus.PENDING)
    page_count = Column(Integer, default=0)
    block_count = Column(Integer, default=0)
    average_quality_score = Column(Float, nullable=True)
    site_metadata = Column('metadata', JSON, nullable=True)
    last_crawled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    repository = relationship("Repository", back_populates="sites")
    pages = relationship("Page", back_populates="site", cascade="all, delete-orphan")
    design_system = relationship("DesignSystem", back_populates="site", uselist=False, cascade="all, delete-orphan")


class Page(Base):
    __tablename__ = 'pages'
    id = Column(String(36), primary_key=True, default=_new_id)
    site_id = Column(String(36), ForeignKey('sites.id'), nullable=False)
    url = Column(String, nullable=False)
    path = Column(String, nullable=False)
    template_type = Column(String(50), default='generic')
    content_hash = Column(String(64), nullable=True)  # SHA256 of the fetched HTML
    load_time_ms = Column(Integer, nullable=True)
    screenshot_key = Column(String, nullable=True)
    html_key = Column(String, nullable=True)
    page_metadata = Column('metadata', JSON, nullable=True)  # title, description, og_image
    block_count = Column(Integer, default=0)
    crawled_at = Column(DateTime, default=_utcnow)

    site = relationship("Site", back_populates="pages")
    blocks = relationship("Block", back_populates="page", cascade="all, delete-orphan")

    __table_args__ = (
        sa.UniqueConstraint('site_id', 'path', name='uq_pages_site_path'),
    )


class Block(Base):
    __tablename__ = 'blocks'
    id = Column(String(36), primary_key=True, default=_new_id)
    page_id = Column(String(36), ForeignKey('pages.id'), nullable=False)
    site_id = Column(String(36), ForeignKey('sites.id'), nullable=False)
    block_name = Column(String(255), nullable=False)
    block_variant = Column(String(255), nullable=True)
    section_index = Column(Integer, default=0)
    html_key = Column(String, nullable=True)
    cleaned_html = Column(Text, nullable=True)
    bbox_x = Column(Integer, default=0)
    bbox_y = Column(Integer, default=0)
    bbox_width = Column(Integer, default=0)
    bbox_height = Column(Integer, default=0)
    design_tokens = Column(JSON, nullable=True)
    content_model = Column(JSON, nullable=True)
    css_variables = Column(JSON, nullable=True)
    quality_score = Column(Integer, nullable=True)
    quality_tier = Column(String(20), nullable=True)  # gold, silver, bronze, unrated
    quality_breakdown = Column(JSON, nullable=True)
    quality_issues = Column(JSON, nullable=True)
    has_javascript = Column(Boolean, default=False)
    has_interactivity = Column(Boolean, default=False)
    detected_by = Column(String(50), default='dom-extractor')
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    page = relationship("Page", back_populates="blocks")

    __table_args__ = (
        sa.UniqueConstraint('page_id', 'block_name', 'bbox_x', 'bbox_y', name='uq_blocks_page_name_origin'),
        sa.Index('ix_blocks_site', 'site_id'),
        sa.Index('ix_blocks_tier', 'quality_tier'),
    )


class DesignSystem(Base):
    __tablename__ = 'design_systems'
    id = Column(String(36), primary_key=True, default=_new_id)
    site_id = Column(String(36), ForeignKey('sites.id'), nullable=False, unique=True)
    colors = Column(JSON, nullable=True)
    typography = Column(JSON, nullable=True)
    spacing = Column(JSON, nullable=True)
    breakpoints = Column(JSON, nullable=True)
    css_variables = Column(JSON, nullable=True)
    tokens_key = Column(String, nullable=True)
    extracted_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    site = relationship("Site", back_populates="design_system")


class CrawlJob(Base):
    __tablename__ = 'crawl_queue'
    id = Column(String(36), primary_key=True, default=_new_id)
    url = Column(String, nullable=False)
    site_id = Column(String(36), ForeignKey('sites.id'), nullable=True)
    priority = Column(Integer, default=5)  # 1 = highest
    status = Column(String(20), default=CrawlStatus.PENDING)
    attempts = Column(Integer, default=0)
    max_attempts = Column(Integer, default=3)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        sa.Index('ix_crawl_queue_claim', 'status', 'priority', 'created_at'),
    )
