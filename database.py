"""
Database Configuration and Session Management
============================================

Engine construction, session factory and table creation for the order ledger.
The engine is built lazily so that importing this module never requires
DATABASE_URL; entry points build a session factory once and pass it to each
service explicitly.
"""

import logging
from typing import Optional
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from config import Config
from models import Base

logger = logging.getLogger(__name__)

_default_session_factory: Optional[sessionmaker] = None


def _enable_sqlite_transactions(engine: Engine):
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT and rollback behave on pysqlite"""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine for the given URL (defaults to Config.DATABASE_URL)"""
    url = database_url or Config.DATABASE_URL
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        _enable_sqlite_transactions(engine)
        return engine

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=Config.DB_POOL_SIZE,
        max_overflow=Config.DB_MAX_OVERFLOW,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        pool_timeout=30,
        echo=False,
        connect_args={
            "connect_timeout": 10,
            "application_name": "marketplace_orders",
        },
    )


def create_session_factory(engine_or_url=None) -> sessionmaker:
    """Session factory bound to an engine (or to a new engine for a URL)"""
    engine = engine_or_url if isinstance(engine_or_url, Engine) else build_engine(engine_or_url)
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def get_session_factory() -> sessionmaker:
    """Process-wide session factory, created on first use"""
    global _default_session_factory
    if _default_session_factory is None:
        _default_session_factory = create_session_factory()
        logger.info("✅ DATABASE: Session factory initialised")
    return _default_session_factory


def create_tables(engine: Engine) -> bool:
    """Create all database tables if they don't exist"""
    logger.info("🏗️ Creating database tables (if they don't exist)...")
    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.info(f"✅ Database schema verified: {len(Base.metadata.tables)} tables available")
    return True


def test_connection(engine: Engine) -> bool:
    """Test database connection"""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            logger.info("✅ Database connection test successful")
            return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False
