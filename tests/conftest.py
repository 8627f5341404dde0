"""
Shared fixtures: an in-memory SQLite ledger per test.
"""

import pytest
from sqlalchemy.pool import StaticPool

from rentledger.billing.leases import LeaseService
from rentledger.billing.store import LedgerStore
from rentledger.common.config import BillingPolicy, DatabaseConfig, DatabaseType
from rentledger.common.engine import create_engine_from_config
from rentledger.common.models import create_tables, drop_tables


@pytest.fixture
def engine():
    db_engine = create_engine_from_config(
        DatabaseConfig(db_type=DatabaseType.SQLITE, url='sqlite://'),
        poolclass=StaticPool,
    )
    create_tables(db_engine)
    yield db_engine
    drop_tables(db_engine)
    db_engine.dispose()


@pytest.fixture
def store(engine):
    return LedgerStore(engine)


@pytest.fixture
def service(store):
    return LeaseService(store)


@pytest.fixture
def policy():
    return BillingPolicy()


@pytest.fixture
def make_lease(service):
    """Create a lease with the given terms, optionally signed on a date."""

    def _make(monthly_rent=500000, late_fee_amount=50000, due_day=15,
              opening_balance=0, signed_on=None):
        lease = service.create_lease(
            monthly_rent=monthly_rent,
            late_fee_amount=late_fee_amount,
            opening_balance=opening_balance,
            rent_due_date=due_day,
        )
        if signed_on is not None:
            service.sign_lease(lease.id, signed_on)
        return lease

    return _make
