"""Tests for the daily late fee job."""

from datetime import date

import pytest

from rentledger.common.config import BillingPolicy
from rentledger.jobs import LateFeeJob, RecurringBillingJob, compute_late_fee
from rentledger.jobs.late_fees import LATE_FEE_DESCRIPTION


def fee_rows(store, lease_id):
    return [t for t in store.list_transactions(lease_id) if t.type == 'late_fee']


def pay(store, lease_id, amount, on, key):
    store.append(lease_id, 'payment', -amount, 'Payment', on, cycle_key=f"attempt:{key}")


class TestComputeLateFee:

    @pytest.mark.parametrize('balance, expected', [
        (250000, 25000),     # half the rent, half the fee
        (500000, 50000),
        (1000000, 100000),   # no cap
        (0, 0),
        (-1000, 0),
    ])
    def test_proportional(self, balance, expected):
        assert compute_late_fee(balance, 500000, 50000) == expected

    def test_rounds_half_up(self):
        assert compute_late_fee(1, 2, 1) == 1


class TestLateFeeJob:

    def test_scenario_b(self, store, policy, make_lease):
        # Signed on the due day: full 500,000 prorated charge, half of it paid
        lease = make_lease(due_day=15, signed_on=date(2026, 5, 15))
        pay(store, lease.id, 250000, date(2026, 5, 16), 'a1')

        result = LateFeeJob(store, policy).run(date(2026, 5, 20))

        assert result.successful == 1
        fees = fee_rows(store, lease.id)
        assert [(f.amount, f.description, f.transaction_date) for f in fees] == [
            (25000, LATE_FEE_DESCRIPTION, date(2026, 5, 20)),
        ]
        assert fees[0].cycle_key == '2026-05-15'

    def test_scenario_c_paid_up_lease_skipped(self, store, policy, make_lease):
        lease = make_lease(due_day=15, opening_balance=100000, signed_on=date(2026, 5, 15))
        pay(store, lease.id, 600000, date(2026, 5, 16), 'a1')

        result = LateFeeJob(store, policy).run(date(2026, 5, 20))

        assert (result.total, result.successful, result.skipped) == (1, 0, 1)
        assert fee_rows(store, lease.id) == []

    def test_only_on_last_grace_day(self, store, policy, make_lease):
        make_lease(due_day=15, signed_on=date(2026, 5, 15))
        job = LateFeeJob(store, policy)
        assert job.run(date(2026, 5, 19)).total == 0
        assert job.run(date(2026, 5, 21)).total == 0

    def test_grace_period_is_configurable(self, store, make_lease):
        lease = make_lease(due_day=15, signed_on=date(2026, 5, 15))
        result = LateFeeJob(store, BillingPolicy(grace_period_days=3)).run(date(2026, 5, 18))
        assert result.successful == 1
        assert fee_rows(store, lease.id)[0].amount == 50000

    def test_second_run_same_day_posts_nothing(self, store, policy, make_lease):
        lease = make_lease(due_day=15, signed_on=date(2026, 5, 15))
        job = LateFeeJob(store, policy)
        job.run(date(2026, 5, 20))
        second = job.run(date(2026, 5, 20))

        assert (second.successful, second.skipped) == (0, 1)
        assert len(fee_rows(store, lease.id)) == 1

    def test_fee_already_covering_latest_rent_skips(self, store, policy, make_lease):
        lease = make_lease(due_day=15, signed_on=date(2026, 5, 10))
        RecurringBillingJob(store, policy).run(date(2026, 6, 14))
        store.append(lease.id, 'late_fee', 30000, 'Manual late fee', date(2026, 6, 16))

        result = LateFeeJob(store, policy).run(date(2026, 6, 20))

        assert result.skipped == 1
        assert [f.amount for f in fee_rows(store, lease.id)] == [30000]

    def test_next_cycle_charged_again(self, store, policy, make_lease):
        lease = make_lease(due_day=15, signed_on=date(2026, 5, 15))
        job = LateFeeJob(store, policy)
        job.run(date(2026, 5, 20))
        RecurringBillingJob(store, policy).run(date(2026, 6, 14))
        job.run(date(2026, 6, 20))

        fees = fee_rows(store, lease.id)
        assert [f.cycle_key for f in fees] == ['2026-05-15', '2026-06-15']
        # 500,000 + 50,000 + 500,000 owed when the second fee is assessed
        assert fees[1].amount == 105000

    def test_zero_late_fee_amount_posts_nothing(self, store, policy, make_lease):
        lease = make_lease(due_day=15, late_fee_amount=0, signed_on=date(2026, 5, 15))
        result = LateFeeJob(store, policy).run(date(2026, 5, 20))
        assert result.skipped == 1
        assert fee_rows(store, lease.id) == []
