"""
Daily recurring rent billing.

Runs once per day (00:01 in the billing timezone) and charges rent to every
active lease whose due date is tomorrow, so funds are expected to clear by
the due date.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from rentledger.billing.cycles import post_rent_charge
from rentledger.billing.store import LeaseLedger
from rentledger.common.date_utils import is_due_date
from rentledger.common.models import Lease
from .base import LeaseJob

logger = logging.getLogger(__name__)


class RecurringBillingJob(LeaseJob):
    """Posts one monthly rent charge per eligible lease per cycle."""

    name = 'recurring_billing'
    display_name = 'Recurring Rent Billing'

    def is_eligible(self, lease: Lease, run_date: date) -> bool:
        """
        Active, prorated, past its first billing date, and due tomorrow.
        """
        if lease.status != 'active' or not lease.prorated_rent_charged:
            return False
        if lease.rent_due_date is None:
            return False
        if lease.first_billing_date is not None and run_date < lease.first_billing_date:
            return False
        return is_due_date(run_date + timedelta(days=1), lease.rent_due_date)

    def process(self, ledger: LeaseLedger, run_date: date) -> Optional[int]:
        txn_id = post_rent_charge(ledger, run_date)
        if txn_id is not None:
            logger.info(
                f"[{self.name}] Charged rent {ledger.lease.monthly_rent} to lease "
                f"{ledger.lease_id} (txn {txn_id})"
            )
        return txn_id
