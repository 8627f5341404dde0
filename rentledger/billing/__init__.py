"""
Billing and ledger engine.

Example Usage:
    from rentledger.billing import LedgerStore, LeaseService

    store = LedgerStore(engine)
    leases = LeaseService(store)
    lease = leases.create_lease(monthly_rent=500000, late_fee_amount=50000, rent_due_date=15)
    leases.sign_lease(lease.id, date(2026, 5, 10))
    leases.get_balance(lease.id)
"""

from .errors import (
    BillingError,
    NotFound,
    InvalidState,
    DuplicateCycleCharge,
    StoreUnavailable,
    MalformedCallback,
    ValidationError,
)
from .balance import (
    AgingResult,
    PortfolioSummary,
    StatementLine,
    aging_bucket,
    build_statement,
    compute_aging,
    compute_balance,
    summarize_portfolio,
)
from .store import LedgerStore, LeaseLedger
from .proration import (
    ProrationEngine,
    ProrationResult,
    compute_first_billing_date,
    compute_prorated_amount,
)
from .leases import LeaseService

__all__ = [
    # Errors
    'BillingError',
    'NotFound',
    'InvalidState',
    'DuplicateCycleCharge',
    'StoreUnavailable',
    'MalformedCallback',
    'ValidationError',
    # Balance
    'AgingResult',
    'PortfolioSummary',
    'StatementLine',
    'aging_bucket',
    'build_statement',
    'compute_aging',
    'compute_balance',
    'summarize_portfolio',
    # Store
    'LedgerStore',
    'LeaseLedger',
    # Proration
    'ProrationEngine',
    'ProrationResult',
    'compute_first_billing_date',
    'compute_prorated_amount',
    # Leases
    'LeaseService',
]
