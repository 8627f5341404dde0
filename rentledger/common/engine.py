"""
Database engine factory for PostgreSQL (production) and SQLite (local, tests).
Handles connection pooling and retry logic on startup.
"""

import time
import logging
from sqlalchemy import create_engine, exc, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.engine import Engine

from .config import DatabaseConfig, DatabaseType


logger = logging.getLogger(__name__)


def create_engine_from_config(db_config: DatabaseConfig, **engine_kwargs) -> Engine:
    """
    Create SQLAlchemy engine from database configuration with retry logic.

    Args:
        db_config: Database configuration
        **engine_kwargs: Extra arguments passed to create_engine (e.g. poolclass)

    Returns:
        Engine: SQLAlchemy engine

    Raises:
        OperationalError: If connection fails after retries
    """
    connection_url = db_config.connection_url
    retries = max(db_config.connect_retries, 1)

    if db_config.db_type == DatabaseType.POSTGRESQL:
        kwargs = {
            'pool_size': db_config.pool_size,
            'max_overflow': db_config.max_overflow,
            'pool_timeout': db_config.pool_timeout,
            'pool_recycle': db_config.pool_recycle,
            'pool_pre_ping': db_config.pool_pre_ping,
        }
    else:
        # Lock waits instead of immediate "database is locked" under concurrent writers
        kwargs = {'connect_args': {'check_same_thread': False, 'timeout': 30}}
    kwargs.update(engine_kwargs)

    attempt = 0
    while attempt < retries:
        try:
            engine = create_engine(connection_url, **kwargs)

            if db_config.db_type == DatabaseType.SQLITE:
                _configure_sqlite(engine)

            with engine.connect():
                logger.debug(f"Connection test successful for {db_config.db_type.value}")

            logger.info(f"SQLAlchemy engine created: {db_config!r}")
            return engine

        except OperationalError as oe:
            attempt += 1
            logger.error(
                f"Connection attempt {attempt}/{retries} failed for {db_config.db_type.value}: {oe}"
            )

            if attempt >= retries:
                logger.critical(f"Max retries ({retries}) reached. Could not create SQLAlchemy engine.")
                raise

            logger.info(f"Retrying in {db_config.connect_retry_delay} seconds...")
            time.sleep(db_config.connect_retry_delay)

        except exc.SQLAlchemyError as e:
            logger.error(f"SQLAlchemy error occurred for {db_config.db_type.value}: {e}")
            raise

    raise OperationalError("Failed to create database engine", None, None)


def _configure_sqlite(engine: Engine) -> None:
    """
    Foreign keys on (ON DELETE CASCADE) and write-locking transactions.

    SQLite ignores SELECT ... FOR UPDATE, so every transaction starts with
    BEGIN IMMEDIATE instead: concurrent writers queue on the database lock
    before their idempotency check rather than after it.
    """

    @event.listens_for(engine, 'connect')
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

    @event.listens_for(engine, 'begin')
    def _on_begin(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')

