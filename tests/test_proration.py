"""Tests for prorated first-period rent and the billing anchor."""

from datetime import date, timedelta

import pytest

from rentledger.billing.errors import InvalidState
from rentledger.billing.proration import (
    PRORATED_DESCRIPTION,
    ProrationEngine,
    compute_first_billing_date,
    compute_prorated_amount,
)
from rentledger.jobs import RecurringBillingJob


class TestComputeProratedAmount:

    def test_scenario_a(self):
        # Cycle 15 April - 14 May is 30 days; 10th-14th covers 5 of them
        assert compute_prorated_amount(500000, 15, date(2026, 5, 10)) == 83333

    def test_signing_on_due_day_prorates_full_cycle(self):
        assert compute_prorated_amount(500000, 15, date(2026, 5, 15)) == 500000

    def test_signing_day_before_due_day(self):
        assert compute_prorated_amount(500000, 15, date(2026, 5, 14)) == 16667

    def test_signing_after_due_day_runs_to_next_month(self):
        # Cycle 15 May - 14 June is 31 days; 20 May - 14 June covers 26
        assert compute_prorated_amount(310000, 15, date(2026, 5, 20)) == 260000

    def test_due_day_31_in_short_month(self):
        # Cycle 31 Jan - 27 Feb (due date clamped to 28 Feb) is 28 days
        assert compute_prorated_amount(280000, 31, date(2026, 2, 14)) == 140000


class TestComputeFirstBillingDate:

    def test_day_before_next_due_date(self):
        assert compute_first_billing_date(15, date(2026, 5, 10)) == date(2026, 5, 14)

    def test_signing_on_due_day(self):
        assert compute_first_billing_date(15, date(2026, 5, 15)) == date(2026, 6, 14)

    def test_rolls_over_year_end(self):
        assert compute_first_billing_date(5, date(2026, 12, 20)) == date(2027, 1, 4)


class TestProrationEngine:

    def test_sign_posts_prorated_charge_and_anchor(self, service, store, make_lease):
        lease = make_lease()
        result = service.sign_lease(lease.id, date(2026, 5, 10))

        assert result.amount == 83333
        assert result.first_billing_date == date(2026, 5, 14)
        assert result.rent_transaction_id is None

        signed = store.get_lease(lease.id)
        assert signed.status == 'active'
        assert signed.prorated_rent_charged is True
        assert signed.first_billing_date == date(2026, 5, 14)
        assert signed.start_date == date(2026, 5, 10)

        txns = store.list_transactions(lease.id)
        assert [(t.type, t.amount, t.description) for t in txns] == [
            ('prorated_rent', 83333, PRORATED_DESCRIPTION),
        ]
        assert txns[0].cycle_key == 'prorated'

    def test_signing_on_first_billing_date_also_posts_rent(self, service, store, make_lease):
        lease = make_lease()
        result = service.sign_lease(lease.id, date(2026, 5, 14))

        assert result.rent_transaction_id is not None
        types = [t.type for t in store.list_transactions(lease.id)]
        assert types == ['prorated_rent', 'rent']
        assert service.get_balance(lease.id) == 16667 + 500000

    def test_cannot_prorate_twice(self, store, make_lease):
        lease = make_lease(signed_on=date(2026, 5, 10))
        with pytest.raises(InvalidState):
            with store.lease_scope(lease.id) as ledger:
                ProrationEngine().apply(ledger, date(2026, 5, 11))
        assert len(store.list_transactions(lease.id)) == 1

    def test_requires_active_lease(self, store, make_lease):
        lease = make_lease()
        with pytest.raises(InvalidState):
            with store.lease_scope(lease.id) as ledger:
                ProrationEngine().apply(ledger, date(2026, 5, 10))
        assert store.get_lease(lease.id).prorated_rent_charged is False


def test_proration_plus_a_year_of_rent_bills_every_day_once(store, policy, make_lease):
    """Prorated fragment plus twelve monthly charges, no cycle skipped or repeated."""
    lease = make_lease(due_day=15, signed_on=date(2026, 5, 10))
    job = RecurringBillingJob(store, policy)

    day = date(2026, 5, 10)
    while day <= date(2027, 4, 14):
        job.run(day)
        day += timedelta(days=1)

    txns = store.list_transactions(lease.id)
    rent = [t for t in txns if t.type == 'rent']
    assert len(rent) == 12
    assert len({t.cycle_key for t in rent}) == 12
    assert rent[0].transaction_date == date(2026, 5, 14)
    assert rent[0].cycle_key == '2026-05-15'
    assert rent[-1].cycle_key == '2027-04-15'
    assert sum(t.amount for t in txns) == 12 * 500000 + 83333
