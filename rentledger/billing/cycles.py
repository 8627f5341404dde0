"""
Billing cycle identity and the rent charge shared by signing and the daily job.

A cycle is identified by its due date, rendered as an ISO string in the
ledger's cycle_key column. Rent posted on run date D belongs to the cycle
starting D + 1.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from rentledger.common.date_utils import next_due_date
from .store import LeaseLedger


logger = logging.getLogger(__name__)


def cycle_key(cycle_due_date: date) -> str:
    return cycle_due_date.isoformat()


def cycle_end(cycle_due_date: date, due_day: int) -> date:
    """Last day of the cycle starting on cycle_due_date."""
    return next_due_date(cycle_due_date, due_day) - timedelta(days=1)


def rent_description(cycle_due_date: date, due_day: int) -> str:
    end = cycle_end(cycle_due_date, due_day)
    return f"Monthly rent for {cycle_due_date.isoformat()} to {end.isoformat()}"


def post_rent_charge(ledger: LeaseLedger, run_date: date) -> Optional[int]:
    """
    Post the rent charge for the cycle starting run_date + 1.

    Returns the new transaction id, or None if that cycle is already billed.
    Raises DuplicateCycleCharge if a concurrent writer billed it first.
    """
    lease = ledger.lease
    cycle_due = run_date + timedelta(days=1)
    key = cycle_key(cycle_due)

    if ledger.has_charge('rent', key):
        logger.info(f"Lease {lease.id} already charged rent for cycle {key}")
        return None

    txn = ledger.append(
        'rent',
        lease.monthly_rent,
        rent_description(cycle_due, lease.rent_due_date),
        run_date,
        cycle_key=key,
    )
    return txn.id
