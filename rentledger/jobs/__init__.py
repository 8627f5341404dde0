"""
Daily billing jobs, triggered once per day with an explicit run date.
"""

from typing import Dict, Optional, Type

from rentledger.billing.store import LedgerStore
from rentledger.common.config import BillingPolicy
from .base import JobResult, LeaseJob
from .recurring_billing import RecurringBillingJob
from .late_fees import LateFeeJob, compute_late_fee

JOB_REGISTRY: Dict[str, Type[LeaseJob]] = {
    RecurringBillingJob.name: RecurringBillingJob,
    LateFeeJob.name: LateFeeJob,
}


def get_job(name: str, store: LedgerStore, policy: Optional[BillingPolicy] = None) -> LeaseJob:
    """
    Instantiate a registered job by name.

    Raises:
        KeyError: Unknown job name
    """
    if name not in JOB_REGISTRY:
        raise KeyError(f"Unknown job: {name}. Available: {', '.join(sorted(JOB_REGISTRY))}")
    return JOB_REGISTRY[name](store, policy)


__all__ = [
    'JobResult',
    'LeaseJob',
    'RecurringBillingJob',
    'LateFeeJob',
    'compute_late_fee',
    'JOB_REGISTRY',
    'get_job',
]
