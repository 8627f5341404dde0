"""
Daily late fee assessment.

Five days (the grace period) after a lease's due date, a lease still owing
money is charged a late fee proportional to what it owes:

    fee = round(balance / monthly_rent * late_fee_amount)

No cap is applied.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from rentledger.billing.cycles import cycle_key
from rentledger.billing.store import LeaseLedger
from rentledger.common.date_utils import is_due_date
from rentledger.common.models import Lease
from rentledger.common.money import scale_amount
from .base import LeaseJob

logger = logging.getLogger(__name__)


LATE_FEE_DESCRIPTION = 'Late payment fee'


def compute_late_fee(balance: int, monthly_rent: int, late_fee_amount: int) -> int:
    """
    Proportional late fee, rounded half up at the minor unit.

    Example:
        >>> compute_late_fee(250000, 500000, 50000)
        25000
    """
    if balance <= 0:
        return 0
    return scale_amount(late_fee_amount, balance, monthly_rent)


class LateFeeJob(LeaseJob):
    """Posts at most one late fee per lease per billing cycle."""

    name = 'late_fees'
    display_name = 'Late Fee Assessment'

    def penalised_cycle(self, run_date: date) -> date:
        """Due date whose grace period ends on run_date."""
        return run_date - timedelta(days=self.policy.grace_period_days)

    def is_eligible(self, lease: Lease, run_date: date) -> bool:
        if lease.status != 'active' or lease.rent_due_date is None:
            return False
        return is_due_date(self.penalised_cycle(run_date), lease.rent_due_date)

    def process(self, ledger: LeaseLedger, run_date: date) -> Optional[int]:
        lease = ledger.lease
        key = cycle_key(self.penalised_cycle(run_date))

        balance = ledger.balance()
        if balance <= 0:
            logger.info(f"[{self.name}] Lease {lease.id} balance {balance}; no fee")
            return None

        if ledger.has_charge('late_fee', key):
            logger.info(f"[{self.name}] Lease {lease.id} already charged a late fee for cycle {key}")
            return None

        last_rent = ledger.latest('rent')
        last_fee = ledger.latest('late_fee')
        if last_rent and last_fee and last_fee.transaction_date >= last_rent.transaction_date:
            logger.info(
                f"[{self.name}] Lease {lease.id} late fee on {last_fee.transaction_date} "
                f"already covers rent of {last_rent.transaction_date}"
            )
            return None

        fee = compute_late_fee(balance, lease.monthly_rent, lease.late_fee_amount)
        if fee <= 0:
            logger.info(f"[{self.name}] Lease {lease.id} has no late fee configured")
            return None

        txn = ledger.append('late_fee', fee, LATE_FEE_DESCRIPTION, run_date, cycle_key=key)
        logger.info(
            f"[{self.name}] Charged late fee {fee} to lease {lease.id} "
            f"(balance {balance}, txn {txn.id})"
        )
        return txn.id
