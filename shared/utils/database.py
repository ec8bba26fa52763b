"""
Shared database utilities for consistent database operations
"""
from contextlib import contextmanager
from typing import Generator, Tuple
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from shared.config import config
from shared.models import Base
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# Create database engine and session factory using shared config
engine = create_engine(config.database.url, echo=config.database.echo)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Create all tables that do not exist yet"""
    Base.metadata.create_all(bind or engine)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions

    Yields:
        Database session that is automatically closed
    """
    session = SessionLocal()
    try:
        yield session
    except Exception as e:
        logger.error(f"Database error: {e}")
        session.rollback()
        raise
    finally:
        session.close()


def upsert(session: Session, model, keys: dict, values: dict) -> Tuple[object, bool]:
    """
    Insert a row or update the existing one matching the natural key

    Callers are the single writer for their batch; a conflicting insert from
    another process surfaces as IntegrityError on flush.

    Args:
        session: Database session
        model: SQLAlchemy model class
        keys: Natural-key columns identifying the row
        values: Columns to set on insert or update

    Returns:
        Tuple of (instance, created)
    """
    instance = session.query(model).filter_by(**keys).first()
    created = instance is None
    if created:
        instance = model(**keys)
        session.add(instance)
    for column, value in values.items():
        setattr(instance, column, value)
    session.flush()
    return instance, created
