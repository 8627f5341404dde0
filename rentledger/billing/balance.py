"""
BalanceCalculator: pure functions over a lease's ordered transactions.

Nothing here performs I/O. Callers pass the opening balance and the ledger
in creation order (LedgerStore returns it that way). Every dashboard, report
and job eligibility check derives balances through these functions.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple


AGING_BUCKETS = ('current', 'days_31_60', 'days_61_90', 'over_90')


def compute_balance(opening_balance: int, transactions: Iterable) -> int:
    """
    Opening balance plus the sum of every transaction amount.

    Positive means the tenant owes, negative means the tenant is in credit.
    """
    return opening_balance + sum(txn.amount for txn in transactions)


def aging_bucket(days_overdue: int) -> str:
    """Bucket name for a number of days overdue (0-30, 31-60, 61-90, 91+)."""
    if days_overdue <= 30:
        return 'current'
    if days_overdue <= 60:
        return 'days_31_60'
    if days_overdue <= 90:
        return 'days_61_90'
    return 'over_90'


@dataclass
class AgingResult:
    """Aging of one lease's balance as of a date."""
    as_of: date
    balance: int
    oldest_unpaid_date: Optional[date] = None
    days_overdue: int = 0
    bucket: Optional[str] = None

    @property
    def is_prepaid(self) -> bool:
        """Balance is zero or in credit; no aging applies."""
        return self.balance <= 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'as_of': self.as_of.isoformat(),
            'balance': self.balance,
            'oldest_unpaid_date': self.oldest_unpaid_date.isoformat() if self.oldest_unpaid_date else None,
            'days_overdue': self.days_overdue,
            'bucket': self.bucket,
        }


def compute_aging(as_of: date, opening_balance: int, transactions: Sequence) -> AgingResult:
    """
    Age the balance by the date it last went from settled to owing.

    Walks transactions oldest to newest with a running balance. Each time the
    running balance crosses from <= 0 to > 0 the crossing transaction's date
    becomes the oldest unpaid date; returning to <= 0 clears it. A positive
    balance with no crossing (owed from the opening balance onward) is aged
    from as_of, i.e. current.

    Order matters here, unlike compute_balance.
    """
    running = opening_balance
    oldest_unpaid: Optional[date] = None

    for txn in transactions:
        previous = running
        running += txn.amount
        if previous <= 0 < running:
            oldest_unpaid = txn.transaction_date
        elif running <= 0:
            oldest_unpaid = None

    if running <= 0:
        return AgingResult(as_of=as_of, balance=running)

    if oldest_unpaid is None:
        oldest_unpaid = as_of

    days_overdue = max((as_of - oldest_unpaid).days, 0)
    return AgingResult(
        as_of=as_of,
        balance=running,
        oldest_unpaid_date=oldest_unpaid,
        days_overdue=days_overdue,
        bucket=aging_bucket(days_overdue),
    )


@dataclass
class StatementLine:
    """One ledger row with the balance after it."""
    transaction_id: int
    transaction_date: date
    type: str
    description: str
    amount: int
    running_balance: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'transaction_id': self.transaction_id,
            'transaction_date': self.transaction_date.isoformat(),
            'type': self.type,
            'description': self.description,
            'amount': self.amount,
            'running_balance': self.running_balance,
        }


def build_statement(opening_balance: int, transactions: Iterable) -> List[StatementLine]:
    """Ledger rows in order, each carrying the running balance after it."""
    running = opening_balance
    lines = []
    for txn in transactions:
        running += txn.amount
        lines.append(StatementLine(
            transaction_id=txn.id,
            transaction_date=txn.transaction_date,
            type=txn.type,
            description=txn.description,
            amount=txn.amount,
            running_balance=running,
        ))
    return lines


@dataclass
class PortfolioSummary:
    """Finance dashboard totals over a set of leases."""
    as_of: date
    total_received_this_month: int = 0
    total_received_all_time: int = 0
    total_pending: int = 0
    total_prepaid: int = 0
    aging: Dict[str, int] = field(default_factory=lambda: {bucket: 0 for bucket in AGING_BUCKETS})
    lease_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'as_of': self.as_of.isoformat(),
            'total_received_this_month': self.total_received_this_month,
            'total_received_all_time': self.total_received_all_time,
            'total_pending': self.total_pending,
            'total_prepaid': self.total_prepaid,
            'aging': dict(self.aging),
            'lease_count': self.lease_count,
        }


def summarize_portfolio(as_of: date, ledgers: Iterable[Tuple[Any, Sequence]]) -> PortfolioSummary:
    """
    Aggregate balances, receipts and aging over many leases.

    Args:
        as_of: Reporting date; "this month" is as_of's calendar month
        ledgers: (lease, ordered transactions) pairs; lease needs opening_balance

    Payments are stored negative; received totals are reported positive.
    Prepaid is the total credit held (leases with a negative balance).
    """
    summary = PortfolioSummary(as_of=as_of)

    for lease, transactions in ledgers:
        summary.lease_count += 1

        for txn in transactions:
            if txn.type != 'payment':
                continue
            received = -txn.amount
            summary.total_received_all_time += received
            if (txn.transaction_date.year, txn.transaction_date.month) == (as_of.year, as_of.month):
                summary.total_received_this_month += received

        aging = compute_aging(as_of, lease.opening_balance, transactions)
        if aging.is_prepaid:
            summary.total_prepaid += -aging.balance
        else:
            summary.total_pending += aging.balance
            summary.aging[aging.bucket] += aging.balance

    return summary
