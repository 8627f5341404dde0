"""
Session management for ledger operations with context managers.
Every ledger write happens inside one session_scope: commit together or not at all.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Generator, Optional
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.engine import Engine


logger = logging.getLogger(__name__)

ErrorTranslator = Callable[[Exception], Optional[Exception]]


class SessionManager:
    """
    Manages database sessions with automatic transaction handling.

    Features:
    - Context manager for session lifecycle
    - Automatic commit on success, rollback on error
    - Optional translation of driver errors into domain errors
    """

    def __init__(self, engine: Engine, error_translator: Optional[ErrorTranslator] = None):
        """
        Initialize session manager.

        Args:
            engine: SQLAlchemy engine
            error_translator: Called with any exception raised inside a scope;
                a returned exception is raised in its place (chained)
        """
        self.engine = engine
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)
        self.error_translator = error_translator

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        Example:
            with session_manager.session_scope() as session:
                lease = session.get(Lease, lease_id)
                # Auto-commit on success, auto-rollback on exception
        """
        session = self.Session()
        try:
            yield session
            session.commit()

        except Exception as e:
            session.rollback()
            logger.debug(f"Session rolled back due to error: {e}")
            translated = self.error_translator(e) if self.error_translator else None
            if translated is not None and translated is not e:
                raise translated from e
            raise

        finally:
            session.close()
