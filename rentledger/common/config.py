"""
Configuration management for the ledger engine.
Reads environment variables and .env through python-decouple.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Any, Dict
import urllib.parse

from decouple import config as env_config


DEFAULT_SQLITE_URL = 'sqlite:///rentledger.db'


class DatabaseType(Enum):
    """Supported database types"""
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


@dataclass
class DatabaseConfig:
    """
    Database connection configuration.
    Either a full SQLAlchemy URL or PostgreSQL connection parts.
    """
    db_type: DatabaseType = DatabaseType.SQLITE
    url: Optional[str] = None
    host: str = ''
    port: int = 5432
    database: str = ''
    username: str = ''
    password: str = ''
    sslmode: str = 'prefer'

    # Connection pool settings (ignored for SQLite)
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True

    # Engine creation retries
    connect_retries: int = 3
    connect_retry_delay: int = 5

    @property
    def connection_url(self) -> str:
        """SQLAlchemy URL for this configuration."""
        if self.url:
            return self.url

        if self.db_type == DatabaseType.POSTGRESQL:
            username = urllib.parse.quote_plus(self.username)
            password = urllib.parse.quote_plus(self.password)
            return (
                f"postgresql+psycopg2://{username}:{password}"
                f"@{self.host}:{self.port}/{self.database}?sslmode={self.sslmode}"
            )

        return DEFAULT_SQLITE_URL

    def __repr__(self) -> str:
        """Safe representation without password"""
        if self.url:
            return f"DatabaseConfig(url={self.url.split('@')[-1]})"
        return (f"DatabaseConfig(db_type={self.db_type.value}, host={self.host}, "
                f"database={self.database}, username={self.username})")


@dataclass
class BillingPolicy:
    """Billing rules shared by the jobs and the proration engine."""
    grace_period_days: int = 5
    currency: str = 'UGX'
    timezone: str = 'Africa/Kampala'
    gateway_timeout_seconds: int = 30


@dataclass
class LedgerConfig:
    """
    Main configuration class for the ledger engine.
    """
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    billing: BillingPolicy = field(default_factory=BillingPolicy)

    @classmethod
    def from_env(cls) -> 'LedgerConfig':
        """
        Load configuration from environment variables (and .env).

        LEDGER_DATABASE_URL wins over the individual LEDGER_DB_* settings;
        with neither present a local SQLite file is used.
        """
        url = env_config('LEDGER_DATABASE_URL', default='')
        host = env_config('LEDGER_DB_HOST', default='')

        if url:
            db_type = DatabaseType.SQLITE if url.startswith('sqlite') else DatabaseType.POSTGRESQL
            database = DatabaseConfig(db_type=db_type, url=url)
        elif host:
            database = DatabaseConfig(
                db_type=DatabaseType.POSTGRESQL,
                host=host,
                port=env_config('LEDGER_DB_PORT', default=5432, cast=int),
                database=env_config('LEDGER_DB_NAME', default='rentledger'),
                username=env_config('LEDGER_DB_USER', default=''),
                password=env_config('LEDGER_DB_PASSWORD', default=''),
                sslmode=env_config('LEDGER_DB_SSL_MODE', default='prefer'),
            )
        else:
            database = DatabaseConfig(db_type=DatabaseType.SQLITE, url=DEFAULT_SQLITE_URL)

        database.pool_size = env_config('LEDGER_DB_POOL_SIZE', default=database.pool_size, cast=int)
        database.max_overflow = env_config('LEDGER_DB_MAX_OVERFLOW', default=database.max_overflow, cast=int)

        billing = BillingPolicy(
            grace_period_days=env_config('BILLING_GRACE_PERIOD_DAYS', default=5, cast=int),
            currency=env_config('BILLING_CURRENCY', default='UGX'),
            timezone=env_config('BILLING_TIMEZONE', default='Africa/Kampala'),
            gateway_timeout_seconds=env_config('GATEWAY_TIMEOUT_SECONDS', default=30, cast=int),
        )

        return cls(database=database, billing=billing)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'LedgerConfig':
        """
        Load configuration from dictionary.

        Args:
            config_dict: {'database': {...}, 'billing': {...}}

        Returns:
            LedgerConfig: Configuration loaded from dictionary
        """
        db_conf = dict(config_dict.get('database', {}))
        db_type_str = db_conf.pop('db_type', None)
        if db_type_str:
            db_type = DatabaseType(db_type_str.lower())
        elif str(db_conf.get('url', '')).startswith('postgresql'):
            db_type = DatabaseType.POSTGRESQL
        else:
            db_type = DatabaseType.SQLITE

        billing_conf = config_dict.get('billing', {})

        return cls(
            database=DatabaseConfig(db_type=db_type, **db_conf),
            billing=BillingPolicy(**billing_conf),
        )
