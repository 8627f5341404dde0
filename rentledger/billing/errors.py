"""
Error taxonomy for the billing and ledger engine.

Batch jobs treat DuplicateCycleCharge as a skip and isolate every other
per-lease error. Interactive callers receive the specific error kind.
"""


class BillingError(Exception):
    """Base class for ledger engine errors."""


class NotFound(BillingError):
    """Referenced lease, attempt or transaction does not exist."""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InvalidState(BillingError):
    """Operation is incompatible with the current lifecycle state."""


class DuplicateCycleCharge(BillingError):
    """A charge for this lease, type and billing cycle already exists."""

    def __init__(self, lease_id: str, txn_type: str, cycle_key: str):
        self.lease_id = lease_id
        self.txn_type = txn_type
        self.cycle_key = cycle_key
        super().__init__(f"{txn_type} already posted for lease {lease_id} cycle {cycle_key}")


class StoreUnavailable(BillingError):
    """Transient storage failure; the next scheduled run retries."""


class MalformedCallback(BillingError):
    """Gateway result is missing its correlation fields."""


class ValidationError(BillingError):
    """Rejected input (amounts, due day, description)."""
