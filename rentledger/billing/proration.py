"""
ProrationEngine: the one-time charge covering signing date up to the first
regular due date, and the billing anchor that keeps recurring billing from
charging that stretch again.

Proration covers [signing_date, next_due - 1] where next_due is the first
due date strictly after signing. The first recurring charge posts on
next_due - 1 for the cycle starting at next_due, so no day is billed twice
or skipped.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Optional

from rentledger.common.date_utils import billing_cycle, next_due_date
from rentledger.common.models import PRORATED_CYCLE_KEY
from rentledger.common.money import scale_amount
from .cycles import post_rent_charge
from .errors import InvalidState, ValidationError
from .store import LeaseLedger


logger = logging.getLogger(__name__)

PRORATED_DESCRIPTION = 'Prorated rent for initial period'


def _check_due_day(due_day: int) -> None:
    if not isinstance(due_day, int) or not 1 <= due_day <= 31:
        raise ValidationError(f"Due day must be between 1 and 31, got {due_day!r}")


def compute_prorated_amount(monthly_rent: int, due_day: int, signing_date: date) -> int:
    """
    Rent for the days between signing and the next due date.

    amount = monthly_rent * days_covered / days_in_cycle, rounded half up,
    where the cycle is the one containing the signing date. Signing on the
    due day itself covers a full cycle.

    Example:
        >>> compute_prorated_amount(500000, 15, date(2026, 5, 10))
        83333
    """
    _check_due_day(due_day)
    cycle_start, next_due = billing_cycle(signing_date, due_day)
    days_covered = (next_due - signing_date).days
    days_in_cycle = (next_due - cycle_start).days
    return scale_amount(monthly_rent, days_covered, days_in_cycle)


def compute_first_billing_date(due_day: int, signing_date: date) -> date:
    """
    First date recurring billing may post for a lease signed on signing_date.

    That is the day before the first due date not covered by proration.
    """
    _check_due_day(due_day)
    return next_due_date(signing_date, due_day) - timedelta(days=1)


@dataclass
class ProrationResult:
    """Outcome of prorating a newly signed lease."""
    lease_id: str
    signing_date: date
    amount: int
    first_billing_date: date
    transaction_id: Optional[int] = None
    rent_transaction_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lease_id': self.lease_id,
            'signing_date': self.signing_date.isoformat(),
            'amount': self.amount,
            'first_billing_date': self.first_billing_date.isoformat(),
            'transaction_id': self.transaction_id,
            'rent_transaction_id': self.rent_transaction_id,
        }


class ProrationEngine:
    """Applies proration inside an open lease scope."""

    def apply(self, ledger: LeaseLedger, signing_date: date) -> ProrationResult:
        """
        Post the prorated charge and set the billing anchor, once per lease.

        Runs inside the caller's transaction: the flag, the charge and the
        anchor commit together or not at all. A zero amount posts nothing but
        still marks the lease prorated so recurring billing can start.

        Raises:
            InvalidState: Lease not active, already prorated, or no due day chosen
            DuplicateCycleCharge: A concurrent writer already posted the prorated charge
        """
        lease = ledger.lease
        if lease.status != 'active':
            raise InvalidState(f"Lease {lease.id} is {lease.status}; only active leases are prorated")
        if lease.prorated_rent_charged:
            raise InvalidState(f"Lease {lease.id} has already been prorated")
        if lease.rent_due_date is None:
            raise InvalidState(f"Lease {lease.id} has no rent due date")

        due_day = lease.rent_due_date
        amount = compute_prorated_amount(lease.monthly_rent, due_day, signing_date)
        first_billing = compute_first_billing_date(due_day, signing_date)

        result = ProrationResult(
            lease_id=lease.id,
            signing_date=signing_date,
            amount=amount,
            first_billing_date=first_billing,
        )

        if amount > 0:
            txn = ledger.append(
                'prorated_rent',
                amount,
                PRORATED_DESCRIPTION,
                signing_date,
                cycle_key=PRORATED_CYCLE_KEY,
            )
            result.transaction_id = txn.id

        lease.prorated_rent_charged = True
        ledger.set_billing_anchor(first_billing)

        # Signed the day before the due date: today's billing run has already happened
        if signing_date == first_billing:
            result.rent_transaction_id = post_rent_charge(ledger, signing_date)

        logger.info(
            f"Prorated lease {lease.id}: {amount} for {signing_date} to "
            f"{first_billing}, first billing date {first_billing}"
        )
        return result
