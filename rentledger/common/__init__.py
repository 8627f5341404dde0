"""
Common building blocks for the ledger engine.

Example Usage:
    from rentledger.common import LedgerConfig, create_engine_from_config
    from rentledger.common import SessionManager, create_tables

    config = LedgerConfig.from_env()
    engine = create_engine_from_config(config.database)
    create_tables(engine)
    session_manager = SessionManager(engine)
"""

# Configuration
from .config import (
    LedgerConfig,
    DatabaseConfig,
    DatabaseType,
    BillingPolicy,
)

# Database engine and session management
from .engine import create_engine_from_config

from .session import SessionManager

# Models
from .models import Base, BaseModel, TimestampMixin
from .models import Lease, Transaction, PaymentAttempt
from .models import create_tables, drop_tables

__all__ = [
    # Configuration
    'LedgerConfig',
    'DatabaseConfig',
    'DatabaseType',
    'BillingPolicy',
    # Engine
    'create_engine_from_config',
    # Session
    'SessionManager',
    # Models
    'Base',
    'BaseModel',
    'TimestampMixin',
    'Lease',
    'Transaction',
    'PaymentAttempt',
    'create_tables',
    'drop_tables',
]
