"""Tests for the daily recurring rent billing job."""

import threading
from datetime import date

from rentledger.billing.leases import LeaseService
from rentledger.billing.store import LedgerStore, LeaseLedger
from rentledger.common.config import DatabaseConfig, DatabaseType
from rentledger.common.engine import create_engine_from_config
from rentledger.common.models import create_tables
from rentledger.jobs import RecurringBillingJob, get_job


def rent_rows(store, lease_id):
    return [t for t in store.list_transactions(lease_id) if t.type == 'rent']


class TestEligibility:

    def test_bills_day_before_due_date(self, store, policy, make_lease):
        lease = make_lease(due_day=15, signed_on=date(2026, 5, 10))
        result = RecurringBillingJob(store, policy).run(date(2026, 5, 14))

        assert (result.total, result.successful, result.skipped, result.failed) == (1, 1, 0, 0)
        rows = rent_rows(store, lease.id)
        assert len(rows) == 1
        assert rows[0].amount == 500000
        assert rows[0].transaction_date == date(2026, 5, 14)
        assert rows[0].description == 'Monthly rent for 2026-05-15 to 2026-06-14'
        assert result.posted_transaction_ids == [rows[0].id]

    def test_not_due_tomorrow(self, store, policy, make_lease):
        make_lease(due_day=15, signed_on=date(2026, 5, 10))
        result = RecurringBillingJob(store, policy).run(date(2026, 5, 13))
        assert result.total == 0

    def test_before_first_billing_date(self, store, policy, make_lease):
        # Signed on the due day: this cycle is covered by proration
        lease = make_lease(due_day=15, signed_on=date(2026, 5, 15))
        assert RecurringBillingJob(store, policy).run(date(2026, 5, 14)).total == 0
        assert RecurringBillingJob(store, policy).run(date(2026, 6, 14)).successful == 1
        assert [t.cycle_key for t in rent_rows(store, lease.id)] == ['2026-06-15']

    def test_pending_and_terminated_leases_skipped(self, store, service, policy, make_lease):
        make_lease(due_day=15)
        terminated = make_lease(due_day=15, signed_on=date(2026, 5, 10))
        service.terminate_lease(terminated.id)

        result = RecurringBillingJob(store, policy).run(date(2026, 5, 14))
        assert result.total == 0
        assert rent_rows(store, terminated.id) == []

    def test_due_day_31_bills_on_month_end_eve(self, store, policy, make_lease):
        lease = make_lease(due_day=31, signed_on=date(2026, 4, 10))
        result = RecurringBillingJob(store, policy).run(date(2026, 4, 29))
        assert result.successful == 1
        assert rent_rows(store, lease.id)[0].cycle_key == '2026-04-30'


class TestIdempotence:

    def test_second_run_posts_nothing(self, store, policy, make_lease):
        lease = make_lease(due_day=15, signed_on=date(2026, 5, 10))
        job = RecurringBillingJob(store, policy)

        first = job.run(date(2026, 5, 14))
        before = [(t.id, t.amount) for t in store.list_transactions(lease.id)]
        second = job.run(date(2026, 5, 14))

        assert first.successful == 1
        assert (second.successful, second.skipped, second.failed) == (0, 1, 0)
        assert [(t.id, t.amount) for t in store.list_transactions(lease.id)] == before

    def test_unique_key_collision_counts_as_skip(self, store, policy, make_lease, monkeypatch):
        """A charge that slips past the read check is stopped by the cycle key and skipped."""
        lease = make_lease(due_day=15, signed_on=date(2026, 5, 10))
        job = RecurringBillingJob(store, policy)
        job.run(date(2026, 5, 14))

        monkeypatch.setattr(LeaseLedger, 'has_charge', lambda self, txn_type, cycle_key: False)
        second = job.run(date(2026, 5, 14))

        assert (second.successful, second.skipped, second.failed) == (0, 1, 0)
        assert second.errors == []
        assert len(rent_rows(store, lease.id)) == 1

    def test_one_lease_failure_does_not_stop_others(self, store, policy, make_lease, monkeypatch):
        good = make_lease(due_day=15, signed_on=date(2026, 5, 10))
        bad = make_lease(due_day=15, signed_on=date(2026, 5, 10))

        job = RecurringBillingJob(store, policy)
        original = job.process

        def flaky_process(ledger, run_date):
            if ledger.lease_id == bad.id:
                raise RuntimeError('disk full')
            return original(ledger, run_date)

        monkeypatch.setattr(job, 'process', flaky_process)
        result = job.run(date(2026, 5, 14))

        assert (result.total, result.successful, result.failed) == (2, 1, 1)
        assert result.errors == [f"Lease {bad.id}: disk full"]
        assert not result.success
        assert len(rent_rows(store, good.id)) == 1
        assert rent_rows(store, bad.id) == []

        # Re-running picks up only the lease that failed
        retry = RecurringBillingJob(store, policy).run(date(2026, 5, 14))
        assert (retry.successful, retry.skipped) == (1, 1)


def test_concurrent_runs_post_one_charge(tmp_path):
    """Two job runs racing on the same lease and date produce a single rent row."""
    engine = create_engine_from_config(
        DatabaseConfig(db_type=DatabaseType.SQLITE, url=f"sqlite:///{tmp_path / 'ledger.db'}")
    )
    create_tables(engine)
    store = LedgerStore(engine)
    service = LeaseService(store)
    lease = service.create_lease(monthly_rent=500000, late_fee_amount=50000, rent_due_date=15)
    service.sign_lease(lease.id, date(2026, 5, 10))

    barrier = threading.Barrier(2)
    results = []

    def run():
        job = get_job('recurring_billing', store)
        barrier.wait()
        results.append(job.run(date(2026, 5, 14)))

    threads = [threading.Thread(target=run) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert len(results) == 2
    assert sum(r.successful for r in results) == 1
    assert sum(r.skipped for r in results) == 1
    assert sum(r.failed for r in results) == 0
    assert len(rent_rows(store, lease.id)) == 1
    engine.dispose()
