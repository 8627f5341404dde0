"""
LeaseService: lease lifecycle and manual ledger entries.

pending -> (due day chosen) -> active (signed, prorated) -> terminated -> deleted
"""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from rentledger.common.config import BillingPolicy
from rentledger.common.date_utils import today_in_timezone
from rentledger.common.models import Lease
from .balance import AgingResult, StatementLine, build_statement, compute_aging, compute_balance
from .errors import InvalidState, ValidationError
from .proration import ProrationEngine, ProrationResult
from .store import LedgerStore


logger = logging.getLogger(__name__)


def _require_int(name: str, value) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer in minor units, got {value!r}")


class LeaseService:
    """Interactive lease operations. Errors propagate to the caller."""

    def __init__(
        self,
        store: LedgerStore,
        proration: Optional[ProrationEngine] = None,
        policy: Optional[BillingPolicy] = None,
    ):
        self.store = store
        self.policy = policy or BillingPolicy()
        self.proration = proration or ProrationEngine()

    def create_lease(
        self,
        monthly_rent: int,
        late_fee_amount: int = 0,
        opening_balance: int = 0,
        rent_due_date: Optional[int] = None,
        unit_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        tenant_email: Optional[str] = None,
    ) -> Lease:
        """
        Create a pending lease.

        Raises:
            ValidationError: Non-positive rent, negative late fee, due day outside 1-31
        """
        _require_int('monthly_rent', monthly_rent)
        _require_int('late_fee_amount', late_fee_amount)
        _require_int('opening_balance', opening_balance)
        if monthly_rent <= 0:
            raise ValidationError("Monthly rent must be greater than 0")
        if late_fee_amount < 0:
            raise ValidationError("Late fee amount cannot be negative")
        if rent_due_date is not None:
            self._check_due_day(rent_due_date)

        lease = Lease(
            monthly_rent=monthly_rent,
            late_fee_amount=late_fee_amount,
            opening_balance=opening_balance,
            rent_due_date=rent_due_date,
            unit_id=unit_id,
            tenant_id=tenant_id,
            tenant_email=tenant_email.lower() if tenant_email else None,
            status='pending',
            prorated_rent_charged=False,
        )
        with self.store.session_scope() as session:
            session.add(lease)
            session.flush()

        logger.info(f"Created pending lease {lease.id} (rent {monthly_rent}, due day {rent_due_date})")
        return lease

    def set_due_date(self, lease_id: str, due_day: int) -> Lease:
        """
        Choose the rent due day before signing.

        Raises:
            NotFound: No lease with this id
            InvalidState: Lease already signed or terminated
            ValidationError: Due day outside 1-31
        """
        self._check_due_day(due_day)
        with self.store.lease_scope(lease_id) as ledger:
            lease = ledger.lease
            if lease.status != 'pending':
                raise InvalidState(f"Lease {lease_id} is {lease.status}; the due date is frozen once signed")
            lease.rent_due_date = due_day
            ledger.session.flush()

        logger.info(f"Lease {lease_id} rent due day set to {due_day}")
        return lease

    def sign_lease(self, lease_id: str, signing_date: date) -> ProrationResult:
        """
        Activate a pending lease and prorate it, in one transaction.

        Raises:
            NotFound: No lease with this id
            InvalidState: Lease not pending, or no due day chosen
        """
        with self.store.lease_scope(lease_id) as ledger:
            lease = ledger.lease
            if lease.status != 'pending':
                raise InvalidState(f"Lease {lease_id} is {lease.status}; only pending leases can be signed")
            if lease.rent_due_date is None:
                raise InvalidState(f"Lease {lease_id} has no rent due date; choose one before signing")

            lease.status = 'active'
            lease.start_date = signing_date
            lease.signed_at = datetime.now(timezone.utc)
            ledger.session.flush()

            result = self.proration.apply(ledger, signing_date)

        logger.info(f"Lease {lease_id} signed on {signing_date}")
        return result

    def terminate_lease(self, lease_id: str) -> Lease:
        """
        Stop all further billing for a lease. The ledger is kept.

        Raises:
            NotFound: No lease with this id
            InvalidState: Lease already terminated
        """
        with self.store.lease_scope(lease_id) as ledger:
            lease = ledger.lease
            if lease.status == 'terminated':
                raise InvalidState(f"Lease {lease_id} is already terminated")
            lease.status = 'terminated'
            lease.terminated_at = datetime.now(timezone.utc)
            ledger.session.flush()

        logger.info(f"Lease {lease_id} terminated")
        return lease

    def delete_lease(self, lease_id: str) -> None:
        """
        Permanently delete a terminated lease with its ledger and payment attempts.

        Raises:
            NotFound: No lease with this id
            InvalidState: Lease not terminated
        """
        with self.store.lease_scope(lease_id) as ledger:
            lease = ledger.lease
            if lease.status != 'terminated':
                raise InvalidState(f"Lease {lease_id} must be terminated before it can be deleted")
            ledger.session.delete(lease)

        logger.warning(f"Lease {lease_id} permanently deleted with its ledger")

    def post_adjustment(
        self,
        lease_id: str,
        amount: int,
        description: str,
        is_credit: bool = False,
        on_date: Optional[date] = None,
    ) -> int:
        """
        Manual landlord charge (positive) or credit (negative).

        Args:
            amount: Magnitude in minor units, > 0; the sign comes from is_credit
            on_date: Transaction date, defaults to today in the billing timezone

        Returns:
            int: New transaction id

        Raises:
            ValidationError: Non-positive amount or empty description
            InvalidState: Lease is terminated
        """
        _require_int('amount', amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        if not description or not description.strip():
            raise ValidationError("Description is required")

        signed_amount = -amount if is_credit else amount
        with self.store.lease_scope(lease_id) as ledger:
            if ledger.lease.status == 'terminated':
                raise InvalidState(f"Cannot add transactions to terminated lease {lease_id}")
            txn = ledger.append(
                'adjustment',
                signed_amount,
                description.strip(),
                on_date or today_in_timezone(self.policy.timezone),
            )
            txn_id = txn.id

        logger.info(f"Posted adjustment {signed_amount} to lease {lease_id} (txn {txn_id})")
        return txn_id

    def get_balance(self, lease_id: str) -> int:
        lease = self.store.get_lease(lease_id)
        return compute_balance(lease.opening_balance, self.store.list_transactions(lease_id))

    def get_statement(self, lease_id: str) -> List[StatementLine]:
        lease = self.store.get_lease(lease_id)
        return build_statement(lease.opening_balance, self.store.list_transactions(lease_id))

    def get_aging(self, lease_id: str, as_of: date) -> AgingResult:
        lease = self.store.get_lease(lease_id)
        return compute_aging(as_of, lease.opening_balance, self.store.list_transactions(lease_id))

    @staticmethod
    def _check_due_day(due_day: int) -> None:
        if not isinstance(due_day, int) or isinstance(due_day, bool) or not 1 <= due_day <= 31:
            raise ValidationError(f"Rent due date must be between 1 and 31, got {due_day!r}")
