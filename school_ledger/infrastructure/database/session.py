"""Database session management with connection pooling and unit-of-work boundaries"""

import logging
from contextlib import contextmanager
from typing import Iterator
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from school_ledger.config import settings
from school_ledger.domain.exceptions import TransactionFailure
from school_ledger.infrastructure.observability.metrics import transaction_failure_counter

logger = logging.getLogger(__name__)

# Connection pool: recycle after 1 hour to avoid stale connections
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_recycle=3600,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session, operation: str) -> Iterator[Session]:
    """
    Run a multi-entity write as one transaction.

    Commits when the block finishes, rolls back on any exception. Storage
    errors are logged and surfaced as TransactionFailure so callers never see
    driver details; domain errors propagate unchanged.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        transaction_failure_counter.labels(operation=operation).inc()
        logger.exception("Transaction rolled back", extra={"operation": operation})
        raise TransactionFailure("The operation could not be completed; no changes were saved") from e
    except Exception:
        db.rollback()
        raise
