"""
APScheduler Engine - Runs the daily billing jobs on their cron schedules.
Handles job scheduling, history tracking, retries and lifecycle management.
"""

import logging
import os
import socket
import threading
import traceback
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import (
    EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, EVENT_JOB_MISSED,
    EVENT_SCHEDULER_STARTED, EVENT_SCHEDULER_SHUTDOWN
)

from rentledger import __version__
from rentledger.billing.store import LedgerStore
from rentledger.common.config import BillingPolicy
from rentledger.common.date_utils import today_in_timezone
from rentledger.common.models import new_id
from rentledger.jobs import JobResult, get_job
from .alert_manager import AlertManager
from .config import SchedulerConfig, JobDefinition
from .models import JobHistory, SchedulerState

logger = logging.getLogger(__name__)


class SchedulerEngine:
    """
    Main scheduler engine for the daily billing jobs.

    Responsibilities:
    - Initialize and manage APScheduler
    - Register billing jobs from configuration
    - Derive each run date in the billing timezone
    - Track execution history in the database
    - Retry whole-job failures with backoff and raise alerts
    """

    def __init__(
        self,
        config: SchedulerConfig,
        store: LedgerStore,
        policy: Optional[BillingPolicy] = None,
        alert_manager: Optional[AlertManager] = None
    ):
        self.config = config
        self.store = store
        self.policy = policy or BillingPolicy(timezone=config.timezone)
        # Run dates, cron triggers and the ledger share the billing timezone
        self.timezone = self.policy.timezone
        self.alert_manager = alert_manager

        self._scheduler: Optional[BackgroundScheduler] = None

        self._running = False
        self._shutdown_event = threading.Event()
        self._heartbeat_thread: Optional[threading.Thread] = None

    def initialize(self):
        """Configure APScheduler."""
        logger.info("Initializing scheduler engine...")

        # Jobs are re-registered from config on each startup
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': ThreadPoolExecutor(max_workers=self.config.executor_max_workers)
        }

        job_defaults = {
            'coalesce': self.config.coalesce,
            'max_instances': self.config.max_instances,
            'misfire_grace_time': self.config.misfire_grace_time,
        }

        self._scheduler = BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.timezone
        )

        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        self._scheduler.add_listener(self._on_scheduler_event, EVENT_SCHEDULER_STARTED | EVENT_SCHEDULER_SHUTDOWN)

        logger.info("Scheduler engine initialized")

    def start(self):
        """Start the scheduler."""
        if self._running:
            logger.warning("Scheduler is already running")
            return

        logger.info(f"Starting Rent Ledger scheduler v{__version__}...")

        if not self._scheduler:
            self.initialize()

        self._register_jobs()
        self._update_state('running')

        self._scheduler.start()
        self._running = True

        self._heartbeat_thread = threading.Thread(target=self._heartbeat_loop, daemon=True)
        self._heartbeat_thread.start()

        logger.info("Scheduler started successfully")

    def stop(self, wait: bool = True):
        """
        Stop the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete
        """
        if not self._running:
            logger.warning("Scheduler is not running")
            return

        logger.info("Stopping scheduler...")
        self._shutdown_event.set()
        self._update_state('stopping')

        if self._scheduler:
            self._scheduler.shutdown(wait=wait)

        self._running = False
        self._update_state('stopped')

        logger.info("Scheduler stopped")

    def _register_jobs(self):
        """Register all enabled jobs with APScheduler."""
        for name, job_def in self.config.jobs.items():
            if not job_def.enabled:
                logger.debug(f"Skipping disabled job: {name}")
                continue

            try:
                trigger = self._create_trigger(job_def)
                self._scheduler.add_job(
                    func=self._execute_job,
                    trigger=trigger,
                    id=f"job_{name}",
                    name=job_def.display_name,
                    kwargs={'job_name': name},
                    replace_existing=True
                )
                logger.info(f"Registered job: {name} ({job_def.cron})")

            except ValueError as e:
                logger.error(f"Failed to register job {name}: {e}")

    def _create_trigger(self, job_def: JobDefinition) -> CronTrigger:
        """
        Create an APScheduler trigger from a 5-field cron expression.

        Raises:
            ValueError: Malformed cron expression
        """
        parts = job_def.cron.split()
        if len(parts) != 5:
            raise ValueError(f"Cron for {job_def.job_name} must have 5 fields: '{job_def.cron}'")

        return CronTrigger(
            minute=parts[0],
            hour=parts[1],
            day=parts[2],
            month=parts[3],
            day_of_week=parts[4],
            timezone=self.timezone
        )

    def _execute_job(self, job_name: str, run_date: Optional[date] = None, attempt_number: int = 1):
        """
        Entry point called by APScheduler.

        Failures are recorded and retried by run_job(); nothing propagates
        into the executor.
        """
        triggered_by = 'scheduler' if attempt_number == 1 else 'retry'
        try:
            self.run_job(job_name, run_date=run_date, triggered_by=triggered_by, attempt_number=attempt_number)
        except Exception as e:
            logger.debug(f"Scheduled run of {job_name} ended with error: {e}")

    def run_job(
        self,
        job_name: str,
        run_date: Optional[date] = None,
        triggered_by: str = 'cli',
        attempt_number: int = 1
    ) -> JobResult:
        """
        Run one job for one run date and record the execution.

        Per-lease failures are counted in the result. An error that stops the
        whole run (store unreachable) is recorded, alerted, scheduled for
        retry when the daemon is running, and re-raised.

        Args:
            job_name: Registered job name
            run_date: Billing date; defaults to today in the billing timezone
            triggered_by: scheduler, cli or retry
            attempt_number: 1-based attempt for this run date

        Raises:
            KeyError: Unknown job name
        """
        job_def = self.config.get_job(job_name) or JobDefinition(job_name, job_name)
        job = get_job(job_name, self.store, self.policy)
        run_date = run_date or today_in_timezone(self.timezone)

        execution_id = new_id()
        logger.info(f"[{execution_id}] Starting {job_name} for {run_date} (attempt {attempt_number})")

        try:
            self._create_history_record(execution_id, job_def, run_date, triggered_by, attempt_number)
            result = job.run(run_date)

        except Exception as e:
            logger.exception(f"[{execution_id}] Job {job_name} failed: {e}")
            self._update_history_error(execution_id, str(e))
            self._handle_failure(job_def, execution_id, run_date, attempt_number, e)
            raise

        self._update_history_result(execution_id, result)
        if self.alert_manager:
            self.alert_manager.send_result_alert(
                execution_id, result,
                attempt=attempt_number,
                max_retries=job_def.retry.max_attempts
            )
        return result

    def _create_history_record(
        self,
        execution_id: str,
        job_def: JobDefinition,
        run_date: date,
        triggered_by: str,
        attempt_number: int
    ):
        """Create a running history record."""
        now = datetime.now(timezone.utc)
        with self.store.session_scope() as session:
            history = JobHistory(
                job_name=job_def.job_name,
                execution_id=execution_id,
                run_date=run_date,
                status='running',
                scheduled_at=now,
                started_at=now,
                attempt_number=attempt_number,
                max_retries=job_def.retry.max_attempts,
                triggered_by=triggered_by,
                host_name=socket.gethostname()
            )
            session.add(history)

    def _update_history_result(self, execution_id: str, result: JobResult):
        """Update history record with the job result."""
        with self.store.session_scope() as session:
            record = session.query(JobHistory).filter_by(execution_id=execution_id).first()
            if record:
                record.status = 'completed' if result.success else 'partial'
                record.completed_at = result.completed_at or datetime.now(timezone.utc)
                record.duration_seconds = result.duration_seconds
                record.total = result.total
                record.successful = result.successful
                record.skipped = result.skipped
                record.failed = result.failed
                if result.errors:
                    record.error_message = '\n'.join(result.errors)[:10000]

    def _update_history_error(self, execution_id: str, error: str):
        """Update history record with error."""
        try:
            with self.store.session_scope() as session:
                record = session.query(JobHistory).filter_by(execution_id=execution_id).first()
                if record:
                    record.status = 'failed'
                    record.completed_at = datetime.now(timezone.utc)
                    record.error_message = error
        except Exception as e:
            logger.error(f"[{execution_id}] Could not record failure: {e}")

    def _handle_failure(
        self,
        job_def: JobDefinition,
        execution_id: str,
        run_date: date,
        attempt_number: int,
        error: Exception
    ):
        """Whole-job failure: alert, then retry the same run date with backoff."""
        max_attempts = job_def.retry.max_attempts

        if self.alert_manager:
            self.alert_manager.send_failure_alert(
                job_name=job_def.job_name,
                execution_id=execution_id,
                run_date=run_date,
                error_message=str(error),
                attempt=attempt_number,
                max_retries=max_attempts,
                traceback=traceback.format_exc()
            )

        if attempt_number >= max_attempts or not self._running:
            return

        retry_delay = job_def.retry.delay_for(attempt_number)
        retry_time = datetime.now(timezone.utc) + timedelta(seconds=retry_delay)
        logger.info(
            f"[{execution_id}] Scheduling retry {attempt_number + 1} of {job_def.job_name} "
            f"for {run_date} in {retry_delay:.0f}s"
        )

        if self.alert_manager:
            self.alert_manager.send_retry_alert(
                job_name=job_def.job_name,
                execution_id=execution_id,
                run_date=run_date,
                attempt=attempt_number + 1,
                max_retries=max_attempts,
                error_message=str(error),
                retry_delay_seconds=retry_delay
            )

        self._scheduler.add_job(
            func=self._execute_job,
            trigger='date',
            run_date=retry_time,
            id=f"retry_{job_def.job_name}_{execution_id}",
            kwargs={
                'job_name': job_def.job_name,
                'run_date': run_date,
                'attempt_number': attempt_number + 1,
            },
            replace_existing=False
        )

    def _update_state(self, status: str):
        """Update scheduler state in database."""
        try:
            with self.store.session_scope() as session:
                state = session.query(SchedulerState).filter_by(id=1).first()
                now = datetime.now(timezone.utc)

                if not state:
                    state = SchedulerState(id=1)
                    session.add(state)

                state.status = status
                if status == 'running':
                    state.started_at = now
                state.host_name = socket.gethostname()
                state.pid = os.getpid()
                state.version = __version__
                state.last_heartbeat = now
        except Exception as e:
            logger.error(f"Failed to update scheduler state: {e}")

    def _heartbeat_loop(self):
        """Background thread for heartbeat updates."""
        while not self._shutdown_event.wait(timeout=self.config.heartbeat_interval_seconds):
            self._update_heartbeat()

    def _update_heartbeat(self):
        try:
            with self.store.session_scope() as session:
                state = session.query(SchedulerState).filter_by(id=1).first()
                if state:
                    state.last_heartbeat = datetime.now(timezone.utc)
        except Exception as e:
            logger.error(f"Failed to update heartbeat: {e}")

    def _on_job_event(self, event):
        """Handle APScheduler job events."""
        if event.code == EVENT_JOB_ERROR:
            logger.error(f"Job {event.job_id} error: {event.exception}")
        elif event.code == EVENT_JOB_MISSED:
            logger.warning(f"Job {event.job_id} missed its scheduled run time")
        elif event.code == EVENT_JOB_EXECUTED:
            logger.debug(f"Job {event.job_id} executed")

    def _on_scheduler_event(self, event):
        """Handle APScheduler lifecycle events."""
        if event.code == EVENT_SCHEDULER_STARTED:
            logger.info("APScheduler started")
        elif event.code == EVENT_SCHEDULER_SHUTDOWN:
            logger.info("APScheduler shutdown")

    def get_history(self, job_name: Optional[str] = None, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent executions first."""
        with self.store.session_scope() as session:
            query = session.query(JobHistory)
            if job_name:
                query = query.filter(JobHistory.job_name == job_name)
            records = query.order_by(JobHistory.id.desc()).limit(limit).all()
            return [r.to_dict() for r in records]

    def get_jobs(self) -> List[Dict[str, Any]]:
        """Get list of scheduled jobs."""
        if not self._scheduler:
            return []

        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else None,
                'trigger': str(job.trigger),
            })

        return jobs

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status."""
        with self.store.session_scope() as session:
            state = session.query(SchedulerState).filter_by(id=1).first()
            state_dict = state.to_dict() if state else None

        return {
            'running': self._running,
            'timezone': self.timezone,
            'jobs_scheduled': len(self._scheduler.get_jobs()) if self._scheduler else 0,
            'state': state_dict,
        }

    @property
    def is_running(self) -> bool:
        return self._running
