"""
Shared machinery for the daily per-lease billing jobs.

A job selects candidate leases for a run date and processes each one in its
own lease scope. One lease failing never stops the others; the run reports
totals instead of raising.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from rentledger.billing.errors import DuplicateCycleCharge
from rentledger.billing.store import LedgerStore
from rentledger.common.config import BillingPolicy
from rentledger.common.models import Lease

logger = logging.getLogger(__name__)


POSTED = 'posted'
SKIPPED = 'skipped'


@dataclass
class JobResult:
    """Outcome of one job run."""
    job_name: str
    run_date: date
    total: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    posted_transaction_ids: List[int] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def duration_seconds(self) -> float:
        if not self.completed_at:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_name': self.job_name,
            'run_date': self.run_date.isoformat(),
            'total': self.total,
            'successful': self.successful,
            'skipped': self.skipped,
            'failed': self.failed,
            'errors': list(self.errors),
            'duration_seconds': round(self.duration_seconds, 3),
        }


class LeaseJob(ABC):
    """
    Base class for daily jobs that post at most one charge per lease per cycle.

    Subclasses implement is_eligible() (a cheap pre-filter, re-checked under
    the lease lock) and process() (runs inside the lease scope and returns
    the posted transaction id, or None to skip).
    """

    name: str = ''
    display_name: str = ''

    def __init__(self, store: LedgerStore, policy: Optional[BillingPolicy] = None):
        self.store = store
        self.policy = policy or BillingPolicy()

    @abstractmethod
    def is_eligible(self, lease: Lease, run_date: date) -> bool:
        ...

    @abstractmethod
    def process(self, ledger, run_date: date) -> Optional[int]:
        ...

    def select_leases(self, run_date: date) -> List[Lease]:
        """Active leases eligible on run_date. Store errors propagate."""
        return [
            lease for lease in self.store.list_leases(status='active')
            if self.is_eligible(lease, run_date)
        ]

    def run(self, run_date: date) -> JobResult:
        """
        Process every eligible lease for run_date.

        Safe to re-run: leases already handled for the cycle are skipped.
        """
        result = JobResult(job_name=self.name, run_date=run_date)
        leases = self.select_leases(run_date)
        result.total = len(leases)
        logger.info(f"[{self.name}] Run date {run_date}: {result.total} eligible leases")

        for lease in leases:
            outcome = self._run_lease(lease.id, run_date, result)
            logger.debug(f"[{self.name}] Lease {lease.id}: {outcome}")

        result.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"[{self.name}] Complete for {run_date}: {result.successful} posted, "
            f"{result.skipped} skipped, {result.failed} failed of {result.total}"
        )
        return result

    def _run_lease(self, lease_id: str, run_date: date, result: JobResult) -> str:
        try:
            with self.store.lease_scope(lease_id) as ledger:
                if not self.is_eligible(ledger.lease, run_date):
                    result.skipped += 1
                    return SKIPPED
                txn_id = self.process(ledger, run_date)

        except DuplicateCycleCharge as e:
            logger.info(f"[{self.name}] {e}; skipping")
            result.skipped += 1
            return SKIPPED

        except Exception as e:
            logger.error(f"[{self.name}] Lease {lease_id} failed: {e}")
            result.failed += 1
            result.errors.append(f"Lease {lease_id}: {e}")
            return 'failed'

        if txn_id is None:
            result.skipped += 1
            return SKIPPED

        result.successful += 1
        result.posted_transaction_ids.append(txn_id)
        return POSTED
