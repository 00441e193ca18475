"""
Database Configuration and Session Management
============================================

This module provides the database engine, session factory, and table creation
functionality for the relational escrow store (STORAGE_BACKEND=sql).
"""

import logging
from contextlib import contextmanager
from typing import Optional
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from config import Config
from models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create an engine with settings appropriate to the backend"""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            # One shared connection so every session sees the same in-memory database
            return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(database_url, connect_args=connect_args)

    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        pool_timeout=30,
        echo=False,
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


# Engine is created lazily; connections are only opened on first use
engine = build_engine(Config.DATABASE_URL)

# Session factory
SessionLocal = build_session_factory(engine)


def create_tables(bind: Optional[Engine] = None) -> bool:
    """Create all database tables if they don't exist"""
    target = bind or engine
    logger.info(f"🏗️ Creating database tables (if they don't exist)... {len(Base.metadata.tables)} models")
    Base.metadata.create_all(bind=target, checkfirst=True)

    existing_tables = inspect(target).get_table_names()
    logger.info(f"✅ Database schema verified: {len(existing_tables)} tables available")
    logger.debug(f"📋 Tables: {', '.join(sorted(existing_tables))}")
    return True


@contextmanager
def managed_session(session_factory: Optional[sessionmaker] = None):
    """Sync context manager: commit on success, roll back and re-raise on error"""
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        session.close()


def check_connection(bind: Optional[Engine] = None) -> bool:
    """Test database connection"""
    try:
        with (bind or engine).connect() as connection:
            connection.execute(text("SELECT 1"))
            logger.info("✅ Database connection test successful")
            return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False
