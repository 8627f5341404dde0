"""
Alert Manager - Notify operators about billing job runs via Slack or email.

Alerts are about job health only. Tenant-facing messages are not sent from
here.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, Any, List, Optional

import requests

from .config import AlertsConfig, SlackConfig, EmailConfig

logger = logging.getLogger(__name__)


@dataclass
class AlertContext:
    """Context for alert messages."""
    job_name: str
    execution_id: str
    run_date: date
    status: str
    attempt: int
    max_retries: int
    error_message: Optional[str] = None
    error_traceback: Optional[str] = None
    duration_seconds: Optional[float] = None
    total: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for template formatting."""
        return {
            'job_name': self.job_name,
            'execution_id': self.execution_id,
            'run_date': self.run_date.isoformat(),
            'status': self.status,
            'attempt': self.attempt,
            'max_retries': self.max_retries,
            'error_message': self.error_message or 'N/A',
            'duration': f"{self.duration_seconds:.1f}" if self.duration_seconds else 'N/A',
            'total': self.total,
            'successful': self.successful,
            'skipped': self.skipped,
            'failed': self.failed,
            'timestamp': self.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
        }


class AlertChannel(ABC):
    """Base class for alert channels."""

    @abstractmethod
    def send(self, context: AlertContext, message: str) -> bool:
        """
        Send alert message.

        Returns:
            True on success
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if channel is properly configured."""
        pass


class SlackAlertChannel(AlertChannel):
    """Slack webhook alert channel."""

    def __init__(self, config: SlackConfig):
        self.config = config
        self.webhook_url = config.webhook_url
        self.channel = config.channel
        self.username = config.username

    def is_configured(self) -> bool:
        """Check if Slack is configured."""
        return bool(self.config.enabled and self.webhook_url)

    def build_payload(self, context: AlertContext, message: str) -> Dict[str, Any]:
        color_map = {
            'failed': 'danger',
            'partial': 'warning',
            'completed': 'good',
            'retrying': 'warning',
        }
        return {
            'username': self.username,
            'channel': self.channel,
            'attachments': [{
                'color': color_map.get(context.status, '#808080'),
                'title': f"Billing Job Alert: {context.job_name} ({context.run_date.isoformat()})",
                'text': message,
                'fields': [
                    {'title': 'Status', 'value': context.status.upper(), 'short': True},
                    {'title': 'Attempt', 'value': f"{context.attempt}/{context.max_retries}", 'short': True},
                    {
                        'title': 'Leases',
                        'value': f"{context.successful} posted / {context.skipped} skipped / "
                                 f"{context.failed} failed of {context.total}",
                        'short': False
                    },
                ],
                'footer': f"Execution ID: {context.execution_id}",
                'ts': int(context.timestamp.timestamp())
            }]
        }

    def send(self, context: AlertContext, message: str) -> bool:
        """Send Slack alert."""
        if not self.is_configured():
            return False

        try:
            response = requests.post(
                self.webhook_url,
                json=self.build_payload(context, message),
                timeout=30
            )

            if response.status_code == 200:
                logger.info(f"Slack alert sent for {context.job_name}")
                return True
            else:
                logger.error(f"Slack alert failed: {response.status_code} - {response.text}")
                return False

        except requests.exceptions.RequestException as e:
            logger.error(f"Slack alert error: {e}")
            return False


class EmailAlertChannel(AlertChannel):
    """Email SMTP alert channel."""

    def __init__(self, config: EmailConfig):
        self.config = config

    def is_configured(self) -> bool:
        """Check if email is configured."""
        return bool(
            self.config.enabled and
            self.config.smtp_host and
            self.config.to_addresses
        )

    def send(self, context: AlertContext, message: str) -> bool:
        """Send email alert."""
        if not self.is_configured():
            return False

        try:
            msg = MIMEMultipart()
            msg['From'] = self.config.from_address
            msg['To'] = ', '.join(self.config.to_addresses)
            msg['Subject'] = f"[{context.status.upper()}] Billing job: {context.job_name} {context.run_date.isoformat()}"

            body = f"""
Billing Job Alert
=================

Job: {context.job_name}
Run date: {context.run_date.isoformat()}
Status: {context.status.upper()}
Execution ID: {context.execution_id}
Attempt: {context.attempt}/{context.max_retries}
Leases: {context.successful} posted, {context.skipped} skipped, {context.failed} failed of {context.total}
Timestamp: {context.timestamp}

{message}
"""

            if context.error_traceback:
                body += f"""
Traceback
---------
{context.error_traceback[:5000]}
"""

            msg.attach(MIMEText(body, 'plain'))

            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as server:
                server.starttls()
                if self.config.smtp_user and self.config.smtp_password:
                    server.login(self.config.smtp_user, self.config.smtp_password)
                server.sendmail(
                    self.config.from_address,
                    self.config.to_addresses,
                    msg.as_string()
                )

            logger.info(f"Email alert sent for {context.job_name}")
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email alert error: {e}")
            return False


class AlertManager:
    """
    Manages alert channels and routing.

    Sends notifications on:
    - Whole-job failures (store unreachable, crash)
    - Retry attempts
    - Runs that finished with per-lease failures
    - Completions (optional)
    """

    TEMPLATES = {
        'failure': (
            "Job '{job_name}' for {run_date} failed on attempt {attempt}/{max_retries}.\n"
            "Error: {error_message}"
        ),
        'retry': (
            "Job '{job_name}' for {run_date} will retry (attempt {attempt}/{max_retries}).\n"
            "Previous error: {error_message}"
        ),
        'partial': (
            "Job '{job_name}' for {run_date} finished with {failed} failed lease(s) "
            "out of {total}.\nFirst error: {error_message}"
        ),
        'success': (
            "Job '{job_name}' for {run_date} completed: {successful} posted, "
            "{skipped} skipped in {duration}s."
        ),
    }

    def __init__(self, config: AlertsConfig):
        self.config = config
        self.channels: List[AlertChannel] = []

        if config.slack.enabled:
            self.channels.append(SlackAlertChannel(config.slack))

        if config.email.enabled:
            self.channels.append(EmailAlertChannel(config.email))

        logger.info(f"AlertManager initialized with {len(self.channels)} channel(s)")

    def send_failure_alert(
        self,
        job_name: str,
        execution_id: str,
        run_date: date,
        error_message: str,
        attempt: int = 1,
        max_retries: int = 3,
        traceback: str = None
    ):
        """Send whole-job failure alert."""
        context = AlertContext(
            job_name=job_name,
            execution_id=execution_id,
            run_date=run_date,
            status='failed',
            attempt=attempt,
            max_retries=max_retries,
            error_message=error_message,
            error_traceback=traceback,
        )

        message = self.TEMPLATES['failure'].format(**context.to_dict())
        self._send_to_all(context, message)

    def send_retry_alert(
        self,
        job_name: str,
        execution_id: str,
        run_date: date,
        attempt: int,
        max_retries: int,
        error_message: str,
        retry_delay_seconds: float
    ):
        """Send retry notification."""
        if not self.config.slack.on_retry:
            return

        context = AlertContext(
            job_name=job_name,
            execution_id=execution_id,
            run_date=run_date,
            status='retrying',
            attempt=attempt,
            max_retries=max_retries,
            error_message=error_message,
        )

        message = self.TEMPLATES['retry'].format(**context.to_dict())
        message += f"\nRetrying in {retry_delay_seconds:.0f} seconds."

        self._send_to_all(context, message)

    def send_result_alert(self, execution_id: str, result, attempt: int = 1, max_retries: int = 1):
        """
        Report a finished run: partial failures always, clean runs if enabled.

        Args:
            result: JobResult from the run
        """
        context = AlertContext(
            job_name=result.job_name,
            execution_id=execution_id,
            run_date=result.run_date,
            status='completed' if result.success else 'partial',
            attempt=attempt,
            max_retries=max_retries,
            error_message=result.errors[0] if result.errors else None,
            duration_seconds=result.duration_seconds,
            total=result.total,
            successful=result.successful,
            skipped=result.skipped,
            failed=result.failed,
        )

        if result.success:
            if not self.config.slack.on_success:
                return
            message = self.TEMPLATES['success'].format(**context.to_dict())
        else:
            message = self.TEMPLATES['partial'].format(**context.to_dict())

        self._send_to_all(context, message)

    def _send_to_all(self, context: AlertContext, message: str):
        """Send alert to all configured channels."""
        for channel in self.channels:
            if channel.is_configured():
                try:
                    channel.send(context, message)
                except Exception as e:
                    logger.error(f"Alert channel error: {e}")

    def test_alerts(self) -> Dict[str, bool]:
        """
        Test all alert channels.

        Returns:
            Dictionary of channel_type -> success
        """
        results = {}
        test_context = AlertContext(
            job_name='test_job',
            execution_id='00000000-0000-0000-0000-000000000000',
            run_date=date.today(),
            status='test',
            attempt=1,
            max_retries=3,
            error_message='This is a test alert',
        )

        for channel in self.channels:
            channel_type = type(channel).__name__
            if channel.is_configured():
                results[channel_type] = channel.send(test_context, "This is a test alert from Rent Ledger")
            else:
                results[channel_type] = False

        return results
