"""Atomic transaction utilities for order and payment operations"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.exc import SQLAlchemyError
from database import get_session_factory
from utils.exceptions import InternalError, OrderServiceError

logger = logging.getLogger(__name__)


@contextmanager
def atomic_transaction(session_factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Run a unit of work in one database transaction.

    Commits on success. Any exception rolls back before propagating; domain
    errors pass through unchanged, store errors are wrapped as InternalError
    with the detail kept in the log.
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
        logger.debug("Atomic transaction committed successfully")
    except OrderServiceError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"❌ TRANSACTION_ROLLBACK: Store error: {e}", exc_info=True)
        raise InternalError(f"Ledger store failure: {type(e).__name__}") from e
    except Exception as e:
        session.rollback()
        logger.error(f"❌ TRANSACTION_ROLLBACK: {type(e).__name__}: {e}")
        raise
    finally:
        session.close()


@contextmanager
def read_only_session(session_factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """Session for queries; always rolled back"""
    session = (session_factory or get_session_factory())()
    try:
        yield session
    except SQLAlchemyError as e:
        logger.error(f"❌ READ_FAILED: Store error: {e}", exc_info=True)
        raise InternalError(f"Ledger store failure: {type(e).__name__}") from e
    finally:
        session.rollback()
        session.close()
