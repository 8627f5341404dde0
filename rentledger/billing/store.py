"""
LedgerStore: durable, ordered, append-only transaction log per lease.

Every check-then-write happens inside lease_scope(), one database transaction
holding a row lock on the lease. The (lease_id, type, cycle_key) unique
constraint is the final guard: whichever concurrent writer inserts second
gets DuplicateCycleCharge, even on engines that ignore FOR UPDATE.
"""

import logging
from contextlib import contextmanager
from datetime import date
from typing import Generator, List, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from rentledger.common.models import Lease, Transaction, PaymentAttempt, TRANSACTION_TYPES
from rentledger.common.session import SessionManager
from .balance import compute_balance
from .errors import DuplicateCycleCharge, InvalidState, NotFound, StoreUnavailable, ValidationError


logger = logging.getLogger(__name__)


def translate_store_error(error: Exception) -> Optional[Exception]:
    """Map driver failures onto the ledger error taxonomy."""
    if isinstance(error, IntegrityError):
        return None
    if isinstance(error, (OperationalError, DBAPIError)):
        return StoreUnavailable(str(error.orig) if getattr(error, 'orig', None) else str(error))
    return None


class LeaseLedger:
    """
    Handle on one lease's ledger inside an open, locked database transaction.

    Obtained from LedgerStore.lease_scope(); invalid once the scope exits.
    """

    def __init__(self, session: Session, lease: Lease):
        self.session = session
        self.lease = lease

    @property
    def lease_id(self) -> str:
        return self.lease.id

    def transactions(self) -> List[Transaction]:
        """Transactions in creation order, ties broken by insertion sequence."""
        return (
            self.session.query(Transaction)
            .filter(Transaction.lease_id == self.lease.id)
            .order_by(Transaction.created_at, Transaction.id)
            .all()
        )

    def balance(self) -> int:
        return compute_balance(self.lease.opening_balance, self.transactions())

    def has_charge(self, txn_type: str, cycle_key: str) -> bool:
        """True if a transaction of this type already exists for the cycle."""
        existing = (
            self.session.query(Transaction.id)
            .filter(
                Transaction.lease_id == self.lease.id,
                Transaction.type == txn_type,
                Transaction.cycle_key == cycle_key,
            )
            .first()
        )
        return existing is not None

    def latest(self, txn_type: str) -> Optional[Transaction]:
        """Most recently created transaction of a type, if any."""
        return (
            self.session.query(Transaction)
            .filter(Transaction.lease_id == self.lease.id, Transaction.type == txn_type)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .first()
        )

    def append(
        self,
        txn_type: str,
        amount: int,
        description: str,
        transaction_date: date,
        cycle_key: Optional[str] = None,
    ) -> Transaction:
        """
        Append one immutable transaction.

        Raises:
            ValidationError: Unknown type or non-integer amount
            DuplicateCycleCharge: A transaction for (type, cycle_key) already exists
        """
        if txn_type not in TRANSACTION_TYPES:
            raise ValidationError(f"Unknown transaction type: {txn_type}")
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise ValidationError(f"Amount must be an integer in minor units, got {amount!r}")

        lease_id = self.lease.id
        txn = Transaction(
            lease_id=lease_id,
            type=txn_type,
            amount=amount,
            description=description,
            transaction_date=transaction_date,
            cycle_key=cycle_key,
        )
        # Savepoint: a collision rolls back this insert only, the lease lock stays held
        try:
            with self.session.begin_nested():
                self.session.add(txn)
        except IntegrityError as e:
            # Only the cycle-key constraint can fail here; the lease row is locked and present
            raise DuplicateCycleCharge(lease_id, txn_type, cycle_key) from e

        logger.debug(
            f"Appended {txn_type} {amount} to lease {lease_id} "
            f"(txn {txn.id}, cycle {cycle_key})"
        )
        return txn

    def set_billing_anchor(self, first_billing_date: date) -> None:
        """
        Set the first date recurring billing may post. One-way.

        Raises:
            InvalidState: Lease not active, or the new anchor is earlier than the current one
        """
        lease = self.lease
        if lease.status != 'active':
            raise InvalidState(f"Lease {lease.id} is {lease.status}; billing anchor requires an active lease")
        if lease.first_billing_date is not None and first_billing_date < lease.first_billing_date:
            raise InvalidState(
                f"Lease {lease.id} anchor cannot move back from "
                f"{lease.first_billing_date} to {first_billing_date}"
            )
        lease.first_billing_date = first_billing_date
        self.session.flush()


class LedgerStore:
    """
    Owner of the ledger: leases, their transactions and payment attempts.

    Example:
        store = LedgerStore(engine)
        with store.lease_scope(lease_id) as ledger:
            if not ledger.has_charge('rent', '2026-06-15'):
                ledger.append('rent', 500000, 'Monthly rent', date(2026, 6, 14), '2026-06-15')
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_manager = SessionManager(engine, error_translator=translate_store_error)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        with self.session_manager.session_scope() as session:
            yield session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_lease(self, lease_id: str) -> Lease:
        """
        Raises:
            NotFound: No lease with this id
        """
        with self.session_scope() as session:
            lease = session.get(Lease, lease_id)
            if lease is None:
                raise NotFound('Lease', lease_id)
            return lease

    def list_leases(self, status: Optional[str] = None) -> List[Lease]:
        with self.session_scope() as session:
            query = session.query(Lease)
            if status:
                query = query.filter(Lease.status == status)
            return query.order_by(Lease.created_at, Lease.id).all()

    def list_transactions(self, lease_id: str) -> List[Transaction]:
        """
        Ordered ledger for a lease: creation time, then insertion sequence.

        Raises:
            NotFound: No lease with this id
        """
        with self.session_scope() as session:
            if session.get(Lease, lease_id) is None:
                raise NotFound('Lease', lease_id)
            return (
                session.query(Transaction)
                .filter(Transaction.lease_id == lease_id)
                .order_by(Transaction.created_at, Transaction.id)
                .all()
            )

    def list_ledgers(self, status: Optional[str] = None) -> List[Tuple[Lease, List[Transaction]]]:
        """Every lease (optionally filtered by status) with its ordered transactions."""
        with self.session_scope() as session:
            query = session.query(Lease)
            if status:
                query = query.filter(Lease.status == status)
            leases = query.order_by(Lease.created_at, Lease.id).all()

            ledgers = []
            for lease in leases:
                transactions = (
                    session.query(Transaction)
                    .filter(Transaction.lease_id == lease.id)
                    .order_by(Transaction.created_at, Transaction.id)
                    .all()
                )
                ledgers.append((lease, transactions))
            return ledgers

    def get_attempt(self, attempt_id: str) -> PaymentAttempt:
        with self.session_scope() as session:
            attempt = session.get(PaymentAttempt, attempt_id)
            if attempt is None:
                raise NotFound('PaymentAttempt', attempt_id)
            return attempt

    def find_attempt(self, gateway: str, gateway_reference: str) -> PaymentAttempt:
        """
        Raises:
            NotFound: No attempt carries this gateway reference
        """
        with self.session_scope() as session:
            attempt = (
                session.query(PaymentAttempt)
                .filter(
                    PaymentAttempt.gateway == gateway,
                    PaymentAttempt.gateway_reference == gateway_reference,
                )
                .one_or_none()
            )
            if attempt is None:
                raise NotFound('PaymentAttempt', f"{gateway}:{gateway_reference}")
            return attempt

    def list_attempts(self, status: Optional[str] = None) -> List[PaymentAttempt]:
        with self.session_scope() as session:
            query = session.query(PaymentAttempt)
            if status:
                query = query.filter(PaymentAttempt.status == status)
            return query.order_by(PaymentAttempt.created_at).all()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @contextmanager
    def lease_scope(self, lease_id: str) -> Generator[LeaseLedger, None, None]:
        """
        Open a transaction holding a row lock on the lease.

        Everything done through the yielded LeaseLedger commits together
        or not at all.

        Raises:
            NotFound: No lease with this id
        """
        with self.session_scope() as session:
            lease = (
                session.query(Lease)
                .filter(Lease.id == lease_id)
                .with_for_update()
                .one_or_none()
            )
            if lease is None:
                raise NotFound('Lease', lease_id)
            yield LeaseLedger(session, lease)

    @contextmanager
    def attempt_scope(self, attempt_id: str) -> Generator[Tuple[PaymentAttempt, LeaseLedger], None, None]:
        """
        Open a transaction holding row locks on a payment attempt and its lease.

        Raises:
            NotFound: No attempt with this id
        """
        with self.session_scope() as session:
            attempt = (
                session.query(PaymentAttempt)
                .filter(PaymentAttempt.id == attempt_id)
                .with_for_update()
                .one_or_none()
            )
            if attempt is None:
                raise NotFound('PaymentAttempt', attempt_id)

            lease = (
                session.query(Lease)
                .filter(Lease.id == attempt.lease_id)
                .with_for_update()
                .one()
            )
            yield attempt, LeaseLedger(session, lease)

    def append(
        self,
        lease_id: str,
        txn_type: str,
        amount: int,
        description: str,
        transaction_date: date,
        cycle_key: Optional[str] = None,
    ) -> int:
        """
        Append a single transaction in its own database transaction.

        Returns:
            int: New transaction id (insertion sequence number)

        Raises:
            NotFound: No lease with this id
            DuplicateCycleCharge: (type, cycle_key) already used for this lease
        """
        with self.lease_scope(lease_id) as ledger:
            txn = ledger.append(txn_type, amount, description, transaction_date, cycle_key)
            return txn.id

    def update_billing_anchor(self, lease_id: str, first_billing_date: date) -> None:
        """
        Raises:
            NotFound: No lease with this id
            InvalidState: Lease not active, or the anchor would move backwards
        """
        with self.lease_scope(lease_id) as ledger:
            ledger.set_billing_anchor(first_billing_date)
        logger.info(f"Billing anchor for lease {lease_id} set to {first_billing_date}")
