"""
Billing job scheduler

Runs the daily billing jobs with:
- Cron triggers evaluated in the billing timezone
- Execution history in the ledger database
- Retry with exponential backoff for whole-job failures
- Slack/email alerts
"""

from rentledger import __version__, get_version
from rentledger.scheduler.config import SchedulerConfig, JobDefinition, RetryConfig
from rentledger.scheduler.models import JobHistory, SchedulerState
from rentledger.scheduler.alert_manager import AlertManager, AlertContext
from rentledger.scheduler.engine import SchedulerEngine

__all__ = [
    '__version__',
    'get_version',
    'SchedulerConfig',
    'JobDefinition',
    'RetryConfig',
    'JobHistory',
    'SchedulerState',
    'AlertManager',
    'AlertContext',
    'SchedulerEngine',
]
