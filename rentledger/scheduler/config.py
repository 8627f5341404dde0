"""
Scheduler configuration management.
Follows the same pattern as common/config.py for consistency.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from decouple import config as env_config

# Repository root (holds the config/ directory)
BASE_DIR = Path(__file__).resolve().parent.parent.parent

DEFAULT_CRON = '1 0 * * *'  # 00:01 daily


def config_dir() -> Path:
    """Directory holding scheduler.yaml, jobs.yaml and alerts.yaml."""
    override = env_config('RENTLEDGER_CONFIG_DIR', default='')
    return Path(override) if override else BASE_DIR / 'config'


@dataclass
class DaemonConfig:
    """Daemon process configuration."""
    pid_file: str = 'rentledger-scheduler.pid'
    log_file: str = ''


@dataclass
class RetryConfig:
    """Retry configuration for failed job runs."""
    max_attempts: int = 3
    delay_seconds: int = 300        # 5 minutes
    backoff_multiplier: float = 2.0
    max_delay_seconds: int = 3600   # 1 hour max

    def delay_for(self, attempt_number: int) -> float:
        """Backoff before retrying after the given (1-based) attempt failed."""
        delay = self.delay_seconds * (self.backoff_multiplier ** (attempt_number - 1))
        return min(delay, self.max_delay_seconds)


@dataclass
class JobDefinition:
    """Definition of a single daily job."""
    job_name: str
    display_name: str
    cron: str = DEFAULT_CRON
    enabled: bool = True
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class SlackConfig:
    """Slack alert configuration."""
    enabled: bool = False
    webhook_url: str = ''
    channel: str = '#billing-alerts'
    username: str = 'Rent Ledger'
    on_failure: bool = True
    on_retry: bool = True
    on_success: bool = False


@dataclass
class EmailConfig:
    """Email alert configuration."""
    enabled: bool = False
    smtp_host: str = ''
    smtp_port: int = 587
    smtp_user: str = ''
    smtp_password: str = ''
    from_address: str = ''
    to_addresses: List[str] = field(default_factory=list)
    min_severity: str = 'error'


@dataclass
class AlertsConfig:
    """Alert channels configuration."""
    slack: SlackConfig = field(default_factory=SlackConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


def default_jobs() -> Dict[str, JobDefinition]:
    return {
        'recurring_billing': JobDefinition('recurring_billing', 'Recurring Rent Billing'),
        'late_fees': JobDefinition('late_fees', 'Late Fee Assessment'),
    }


@dataclass
class SchedulerConfig:
    """
    Main scheduler configuration.
    Can be loaded from YAML files or environment variables.
    """
    daemon: DaemonConfig = field(default_factory=DaemonConfig)

    # APScheduler settings; timezone also pins each job's run date
    timezone: str = 'Africa/Kampala'
    coalesce: bool = True               # Combine missed runs
    max_instances: int = 1              # One instance per job
    misfire_grace_time: int = 3600      # Allow 1 hour late
    executor_max_workers: int = 4       # Thread pool size

    # Health check
    heartbeat_interval_seconds: int = 30

    # Graceful shutdown
    wait_for_jobs: bool = True

    jobs: Dict[str, JobDefinition] = field(default_factory=default_jobs)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    @classmethod
    def from_yaml(cls,
                  scheduler_path: str = None,
                  jobs_path: str = None,
                  alerts_path: str = None) -> 'SchedulerConfig':
        """
        Load configuration from YAML files.
        Environment variables can be referenced as ${VAR_NAME}.
        Missing files keep the defaults.
        """
        config = cls()
        base = config_dir()

        scheduler_file = Path(scheduler_path) if scheduler_path else base / 'scheduler.yaml'
        jobs_file = Path(jobs_path) if jobs_path else base / 'jobs.yaml'
        alerts_file = Path(alerts_path) if alerts_path else base / 'alerts.yaml'

        data = _load_yaml(scheduler_file)
        if data and 'scheduler' in data:
            sched = data['scheduler']

            if 'daemon' in sched:
                d = sched['daemon']
                config.daemon = DaemonConfig(
                    pid_file=_resolve_env(d.get('pid_file', config.daemon.pid_file)),
                    log_file=_resolve_env(d.get('log_file', config.daemon.log_file)),
                )

            if 'engine' in sched:
                e = sched['engine']
                config.timezone = _resolve_env(e.get('timezone', config.timezone))
                if 'job_defaults' in e:
                    jd = e['job_defaults']
                    config.coalesce = jd.get('coalesce', config.coalesce)
                    config.max_instances = jd.get('max_instances', config.max_instances)
                    config.misfire_grace_time = jd.get('misfire_grace_time', config.misfire_grace_time)
                if 'executor' in e:
                    config.executor_max_workers = e['executor'].get('max_workers', config.executor_max_workers)

            config.heartbeat_interval_seconds = sched.get(
                'heartbeat_interval_seconds', config.heartbeat_interval_seconds
            )

        # One billing timezone for run dates and the ledger
        config.timezone = env_config('BILLING_TIMEZONE', default=config.timezone)

        data = _load_yaml(jobs_file)
        if data and 'jobs' in data:
            config.jobs = {}
            for name, jdef in data['jobs'].items():
                retry_conf = RetryConfig()
                if 'retry' in jdef:
                    r = jdef['retry']
                    retry_conf = RetryConfig(
                        max_attempts=r.get('max_attempts', retry_conf.max_attempts),
                        delay_seconds=r.get('delay_seconds', retry_conf.delay_seconds),
                        backoff_multiplier=r.get('backoff_multiplier', retry_conf.backoff_multiplier),
                        max_delay_seconds=r.get('max_delay_seconds', retry_conf.max_delay_seconds),
                    )

                config.jobs[name] = JobDefinition(
                    job_name=name,
                    display_name=jdef.get('display_name', name),
                    cron=jdef.get('schedule', {}).get('cron', DEFAULT_CRON),
                    enabled=jdef.get('enabled', True),
                    retry=retry_conf,
                )

        data = _load_yaml(alerts_file)
        if data and 'alerts' in data:
            a = data['alerts']

            if 'slack' in a:
                s = a['slack']
                config.alerts.slack = SlackConfig(
                    enabled=s.get('enabled', False),
                    webhook_url=_resolve_env(s.get('webhook_url', '')),
                    channel=s.get('channel', '#billing-alerts'),
                    username=s.get('username', 'Rent Ledger'),
                    on_failure=s.get('on_failure', True),
                    on_retry=s.get('on_retry', True),
                    on_success=s.get('on_success', False),
                )

            if 'email' in a:
                e = a['email']
                config.alerts.email = EmailConfig(
                    enabled=e.get('enabled', False),
                    smtp_host=_resolve_env(e.get('smtp_host', '')),
                    smtp_port=int(_resolve_env(e.get('smtp_port', 587)) or 587),
                    smtp_user=_resolve_env(e.get('smtp_user', '')),
                    smtp_password=_resolve_env(e.get('smtp_password', '')),
                    from_address=_resolve_env(e.get('from_address', '')),
                    to_addresses=e.get('to_addresses', []),
                    min_severity=e.get('min_severity', 'error'),
                )

        return config

    @classmethod
    def from_env(cls) -> 'SchedulerConfig':
        """
        Load configuration from environment variables.
        Useful for simple deployments without YAML files.
        """
        config = cls()

        config.daemon.pid_file = env_config('SCHEDULER_PID_FILE', default=config.daemon.pid_file)
        config.daemon.log_file = env_config('SCHEDULER_LOG_FILE', default=config.daemon.log_file)

        config.timezone = env_config('BILLING_TIMEZONE', default=config.timezone)
        config.executor_max_workers = env_config(
            'SCHEDULER_MAX_WORKERS', default=config.executor_max_workers, cast=int
        )
        config.heartbeat_interval_seconds = env_config(
            'SCHEDULER_HEARTBEAT_SECONDS', default=config.heartbeat_interval_seconds, cast=int
        )

        for name, job in config.jobs.items():
            job.cron = env_config(f"{name.upper()}_CRON", default=job.cron)

        slack_url = env_config('SLACK_WEBHOOK_URL', default='')
        if slack_url:
            config.alerts.slack = SlackConfig(
                enabled=True,
                webhook_url=slack_url,
                channel=env_config('SLACK_CHANNEL', default='#billing-alerts'),
            )

        return config

    def get_job(self, name: str) -> Optional[JobDefinition]:
        """Get job definition by name."""
        return self.jobs.get(name)

    def get_enabled_jobs(self) -> List[JobDefinition]:
        """Get all enabled jobs."""
        return [j for j in self.jobs.values() if j.enabled]


def _load_yaml(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    with open(path) as f:
        return yaml.safe_load(f)


def _resolve_env(value: Any) -> Any:
    """Resolve ${VAR_NAME} references in string values."""
    if not isinstance(value, str):
        return value

    pattern = r'\$\{([^}]+)\}'

    def replace(match):
        return env_config(match.group(1), default='')

    return re.sub(pattern, replace, value)
