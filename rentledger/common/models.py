"""
SQLAlchemy ORM models with base classes and mixins.

All money columns hold signed integers in the currency's minor unit.
Charges are positive, payments and credits negative.
"""

from datetime import datetime, date, timezone
from typing import Dict, Any
from uuid import uuid4
from sqlalchemy import (
    Column, String, Integer, BigInteger, DateTime, Date, Boolean, Text, JSON,
    ForeignKey, Index, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship


# Declarative base for all models
Base = declarative_base()


LEASE_STATUSES = ('pending', 'active', 'terminated')
TRANSACTION_TYPES = ('rent', 'prorated_rent', 'late_fee', 'payment', 'adjustment')
ATTEMPT_STATUSES = ('pending', 'completed', 'failed')
GATEWAYS = ('mtn', 'airtel')

# Cycle key for the one-time prorated charge
PRORATED_CYCLE_KEY = 'prorated'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class TimestampMixin:
    """Mixin for automatic timestamp tracking"""
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class BaseModel:
    """Base model with common functionality"""

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model instance to dictionary.

        Returns:
            dict: Dictionary representation of the model
        """
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            # Convert datetime and date to ISO format string
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            result[column.name] = value
        return result

    def __repr__(self) -> str:
        """String representation of model"""
        return f"<{self.__class__.__name__}({self.to_dict()})>"


# ============================================================================
# Domain Models
# ============================================================================


class Lease(Base, BaseModel, TimestampMixin):
    """
    One tenancy and its billing anchors.

    Lifecycle: pending -> (due day chosen) -> active on signing -> terminated.
    Once signed, rent_due_date and opening_balance are frozen and
    first_billing_date pins the first day recurring billing may post.
    """
    __tablename__ = 'leases'

    id = Column(String(36), primary_key=True, default=new_id)
    unit_id = Column(String(64), index=True)
    tenant_id = Column(String(64), index=True)
    tenant_email = Column(String(255))

    # Rent terms (minor currency units)
    monthly_rent = Column(BigInteger, nullable=False)
    late_fee_amount = Column(BigInteger, nullable=False, default=0)
    rent_due_date = Column(Integer, comment="Due day-of-month, 1-31")
    opening_balance = Column(BigInteger, nullable=False, default=0)

    # Lifecycle
    status = Column(String(20), nullable=False, default='pending', index=True)
    prorated_rent_charged = Column(Boolean, nullable=False, default=False)
    first_billing_date = Column(Date)
    start_date = Column(Date)
    signed_at = Column(DateTime(timezone=True))
    terminated_at = Column(DateTime(timezone=True))

    transactions = relationship(
        'Transaction',
        back_populates='lease',
        cascade='all, delete-orphan',
        passive_deletes=True,
        order_by='Transaction.id',
    )
    payment_attempts = relationship(
        'PaymentAttempt',
        back_populates='lease',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint('monthly_rent > 0', name='chk_lease_monthly_rent'),
        CheckConstraint('late_fee_amount >= 0', name='chk_lease_late_fee'),
        CheckConstraint(
            'rent_due_date IS NULL OR (rent_due_date >= 1 AND rent_due_date <= 31)',
            name='chk_lease_due_day'
        ),
        CheckConstraint(
            "status IN ('pending', 'active', 'terminated')",
            name='chk_lease_status'
        ),
    )


class Transaction(Base, BaseModel):
    """
    Immutable ledger entry.

    cycle_key identifies the billing cycle a charge belongs to; the unique
    (lease_id, type, cycle_key) constraint makes a second charge for the
    same cycle fail at insert time regardless of what the writer read.
    Adjustments carry no cycle key and never collide.
    """
    __tablename__ = 'transactions'

    # Autoincrement id doubles as the insertion sequence number
    id = Column(Integer, primary_key=True, autoincrement=True)
    lease_id = Column(
        String(36),
        ForeignKey('leases.id', ondelete='CASCADE'),
        nullable=False
    )
    type = Column(String(20), nullable=False)
    amount = Column(BigInteger, nullable=False)
    description = Column(Text, nullable=False, default='')
    transaction_date = Column(Date, nullable=False)
    cycle_key = Column(String(64))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    lease = relationship('Lease', back_populates='transactions')

    __table_args__ = (
        UniqueConstraint('lease_id', 'type', 'cycle_key', name='uq_transaction_cycle'),
        Index('idx_transactions_lease_order', 'lease_id', 'created_at', 'id'),
        CheckConstraint(
            "type IN ('rent', 'prorated_rent', 'late_fee', 'payment', 'adjustment')",
            name='chk_transaction_type'
        ),
    )


class PaymentAttempt(Base, BaseModel, TimestampMixin):
    """
    Correlates a gateway transaction with a lease and, once completed,
    with the single payment Transaction it produced.
    """
    __tablename__ = 'payment_attempts'

    id = Column(String(36), primary_key=True, default=new_id)
    lease_id = Column(
        String(36),
        ForeignKey('leases.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    gateway = Column(String(20), nullable=False)
    gateway_reference = Column(String(100))
    payer_handle = Column(String(50))
    amount = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default='pending', index=True)
    transaction_id = Column(Integer, ForeignKey('transactions.id', ondelete='SET NULL'))
    external_reference = Column(String(100), comment="Gateway-side financial transaction id")
    failure_reason = Column(Text)
    gateway_payload = Column(JSON)
    completed_at = Column(DateTime(timezone=True))

    lease = relationship('Lease', back_populates='payment_attempts')
    transaction = relationship('Transaction')

    __table_args__ = (
        UniqueConstraint('gateway', 'gateway_reference', name='uq_attempt_gateway_reference'),
        CheckConstraint('amount > 0', name='chk_attempt_amount'),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name='chk_attempt_status'
        ),
        CheckConstraint("gateway IN ('mtn', 'airtel')", name='chk_attempt_gateway'),
    )

    @property
    def is_terminal(self) -> bool:
        """Check if the attempt can no longer change state."""
        return self.status in ('completed', 'failed')


def create_tables(engine):
    """Create all ledger and scheduler tables if they don't exist."""
    # Scheduler history shares this metadata
    from rentledger.scheduler import models as _scheduler_models  # noqa: F401
    Base.metadata.create_all(engine)


def drop_tables(engine):
    """Drop all tables (use with caution!)."""
    Base.metadata.drop_all(engine)
