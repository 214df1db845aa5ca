"""
Database engine factory supporting PostgreSQL and SQLite.
Handles connection pooling and retry logic.
"""

import time
import urllib.parse
import logging
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from .config import DatabaseConfig, DatabaseType


logger = logging.getLogger(__name__)


def create_engine_from_config(
    db_config: DatabaseConfig,
    retries: int = 3,
    retry_delay: int = 5
) -> Engine:
    """
    Create SQLAlchemy engine from database configuration with retry logic.

    Supports:
    - PostgreSQL (postgresql+psycopg2)
    - SQLite (tests and local runs; in-memory databases share one connection)

    Args:
        db_config: Database configuration
        retries: Number of connection retry attempts (default: 3)
        retry_delay: Delay between retries in seconds (default: 5)

    Returns:
        Engine: SQLAlchemy engine

    Raises:
        OperationalError: If connection fails after retries
    """
    connection_url = _build_connection_string(db_config)
    backend = db_config.db_type.value

    for attempt in range(1, retries + 1):
        try:
            engine = _create(connection_url, db_config)
            with engine.connect():
                pass
        except OperationalError as oe:
            logger.error(f"Cannot reach {backend} database (attempt {attempt}/{retries}): {oe}")
            if attempt == retries:
                logger.critical(f"Giving up on {backend} database after {retries} attempts")
                raise
            time.sleep(retry_delay)
        else:
            logger.info(f"Database engine ready: {backend}")
            return engine


def _create(connection_url: str, db_config: DatabaseConfig) -> Engine:
    if db_config.db_type == DatabaseType.SQLITE:
        kwargs = {'connect_args': {'check_same_thread': False}}
        if connection_url in ('sqlite://', 'sqlite:///:memory:'):
            kwargs['poolclass'] = StaticPool
        return create_engine(connection_url, **kwargs)

    return create_engine(
        connection_url,
        pool_size=db_config.pool_size,
        max_overflow=db_config.max_overflow,
        pool_timeout=db_config.pool_timeout,
        pool_recycle=db_config.pool_recycle,
        pool_pre_ping=db_config.pool_pre_ping
    )


def _build_connection_string(db_config: DatabaseConfig) -> str:
    """
    Build database-specific connection string.

    Args:
        db_config: Database configuration

    Returns:
        str: Connection string for SQLAlchemy
    """
    if db_config.url:
        return db_config.url

    if db_config.db_type == DatabaseType.SQLITE:
        return f"sqlite:///{db_config.database}"

    # URL-encode credentials for special characters
    username = urllib.parse.quote_plus(db_config.username)
    password = urllib.parse.quote_plus(db_config.password)
    connection_url = (
        f"postgresql+psycopg2://{username}:{password}"
        f"@{db_config.host}:{db_config.port}/{db_config.database}"
        f"?sslmode={db_config.sslmode}"
    )
    logger.debug("PostgreSQL connection string built")
    return connection_url


def get_pool_stats(engine: Engine) -> dict:
    """
    Get connection pool statistics for monitoring.

    Args:
        engine: SQLAlchemy engine

    Returns:
        dict: Pool statistics including size, checked in/out, overflow
    """
    pool = engine.pool
    if not hasattr(pool, 'checkedout'):
        return {'pool': type(pool).__name__}

    stats = {
        'pool_size': pool.size(),
        'checked_in': pool.checkedin(),
        'checked_out': pool.checkedout(),
        'overflow': pool.overflow(),
    }
    if pool.size() > 0:
        stats['utilization'] = f"{(pool.checkedout() / pool.size()) * 100:.1f}%"
    else:
        stats['utilization'] = "0%"
    return stats
