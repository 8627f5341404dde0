"""Tests for balance, aging, statements and portfolio totals."""

import random
from dataclasses import dataclass
from datetime import date

from rentledger.billing.balance import (
    aging_bucket,
    build_statement,
    compute_aging,
    compute_balance,
    summarize_portfolio,
)


@dataclass
class Txn:
    amount: int
    transaction_date: date
    type: str = 'rent'
    id: int = 0
    description: str = ''


@dataclass
class LeaseStub:
    opening_balance: int = 0


def ledger(*entries):
    return [Txn(amount, day, txn_type, i + 1) for i, (amount, day, txn_type) in enumerate(entries)]


class TestComputeBalance:

    def test_opening_plus_sum(self):
        txns = ledger(
            (500000, date(2026, 5, 14), 'rent'),
            (-250000, date(2026, 5, 16), 'payment'),
        )
        assert compute_balance(100000, txns) == 350000

    def test_sum_is_order_independent(self):
        txns = ledger(
            (83333, date(2026, 5, 10), 'prorated_rent'),
            (500000, date(2026, 5, 14), 'rent'),
            (-300000, date(2026, 5, 20), 'payment'),
            (25000, date(2026, 5, 20), 'late_fee'),
            (-10000, date(2026, 5, 21), 'adjustment'),
        )
        expected = compute_balance(0, txns)
        shuffled = list(txns)
        random.Random(7).shuffle(shuffled)
        assert compute_balance(0, shuffled) == expected == 298333

    def test_scenario_c_opening_balance_paid_off(self):
        txns = ledger((-100000, date(2026, 5, 1), 'payment'))
        assert compute_balance(100000, txns) == 0


class TestAging:

    def test_buckets(self):
        assert aging_bucket(0) == 'current'
        assert aging_bucket(30) == 'current'
        assert aging_bucket(31) == 'days_31_60'
        assert aging_bucket(60) == 'days_31_60'
        assert aging_bucket(61) == 'days_61_90'
        assert aging_bucket(90) == 'days_61_90'
        assert aging_bucket(91) == 'over_90'

    def test_oldest_unpaid_is_last_crossing_into_debt(self):
        txns = ledger(
            (500000, date(2026, 1, 14), 'rent'),
            (-500000, date(2026, 1, 20), 'payment'),
            (500000, date(2026, 2, 14), 'rent'),
            (500000, date(2026, 3, 14), 'rent'),
        )
        result = compute_aging(date(2026, 4, 1), 0, txns)
        assert result.balance == 1000000
        assert result.oldest_unpaid_date == date(2026, 2, 14)
        assert result.days_overdue == 46
        assert result.bucket == 'days_31_60'

    def test_aging_is_order_dependent(self):
        charge = Txn(500000, date(2026, 1, 14), 'rent', 1)
        payment = Txn(-500000, date(2026, 1, 20), 'payment', 2)
        second_charge = Txn(500000, date(2026, 3, 14), 'rent', 3)

        forward = compute_aging(date(2026, 4, 1), 0, [charge, payment, second_charge])
        reordered = compute_aging(date(2026, 4, 1), 0, [charge, second_charge, payment])

        assert forward.balance == reordered.balance == 500000
        assert forward.oldest_unpaid_date == date(2026, 3, 14)
        assert reordered.oldest_unpaid_date == date(2026, 1, 14)
        assert forward.bucket != reordered.bucket

    def test_prepaid_has_no_bucket(self):
        txns = ledger((-200000, date(2026, 5, 1), 'payment'))
        result = compute_aging(date(2026, 5, 30), 100000, txns)
        assert result.is_prepaid
        assert result.bucket is None
        assert result.oldest_unpaid_date is None

    def test_positive_opening_balance_without_crossing_is_current(self):
        result = compute_aging(date(2026, 5, 30), 100000, [])
        assert result.oldest_unpaid_date == date(2026, 5, 30)
        assert result.days_overdue == 0
        assert result.bucket == 'current'

    def test_balance_returning_to_zero_clears_unpaid_date(self):
        txns = ledger(
            (500000, date(2026, 1, 14), 'rent'),
            (-500000, date(2026, 1, 20), 'payment'),
        )
        result = compute_aging(date(2026, 6, 1), 0, txns)
        assert result.is_prepaid


def test_statement_carries_running_balance():
    txns = ledger(
        (83333, date(2026, 5, 10), 'prorated_rent'),
        (500000, date(2026, 5, 14), 'rent'),
        (-200000, date(2026, 5, 15), 'payment'),
    )
    lines = build_statement(10000, txns)
    assert [line.running_balance for line in lines] == [93333, 593333, 393333]
    assert lines[-1].to_dict()['transaction_date'] == '2026-05-15'


def test_portfolio_summary():
    as_of = date(2026, 5, 31)
    owing = ledger(
        (500000, date(2026, 3, 14), 'rent'),
        (-100000, date(2026, 4, 2), 'payment'),
        (-50000, date(2026, 5, 3), 'payment'),
    )
    prepaid = ledger((-700000, date(2026, 5, 20), 'payment'))
    settled = ledger(
        (500000, date(2026, 5, 14), 'rent'),
        (-500000, date(2026, 5, 15), 'payment'),
    )

    summary = summarize_portfolio(as_of, [
        (LeaseStub(0), owing),
        (LeaseStub(500000), prepaid),
        (LeaseStub(0), settled),
    ])

    assert summary.lease_count == 3
    assert summary.total_received_all_time == 1350000
    assert summary.total_received_this_month == 1250000
    assert summary.total_pending == 350000
    assert summary.total_prepaid == 200000
    assert summary.aging['days_61_90'] == 350000
    assert summary.to_dict()['aging']['current'] == 0
