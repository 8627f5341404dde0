"""
SQLAlchemy models for scheduler job tracking.
Shares the declarative Base in common/models.py so create_tables() builds both.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Float, Text,
    Index, CheckConstraint
)

from rentledger.common.models import Base, TimestampMixin, new_id


JOB_STATUSES = ('pending', 'running', 'completed', 'partial', 'failed', 'retrying')


class JobHistory(Base, TimestampMixin):
    """
    Track job execution history.
    Records every execution attempt with status, timing, and lease counts.
    """
    __tablename__ = 'scheduler_job_history'

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_name = Column(String(50), nullable=False, index=True)
    execution_id = Column(String(36), default=new_id, unique=True, nullable=False)
    run_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default='pending')

    # Timing
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    duration_seconds = Column(Float)

    # Lease counts
    total = Column(Integer, nullable=False, default=0)
    successful = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)

    # Retry handling
    attempt_number = Column(Integer, nullable=False, default=1)
    max_retries = Column(Integer, nullable=False, default=3)

    error_message = Column(Text)

    triggered_by = Column(String(50), default='scheduler')  # scheduler, cli, retry
    host_name = Column(String(100))

    __table_args__ = (
        Index('idx_job_history_job_run_date', job_name, run_date),
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'partial', 'failed', 'retrying')",
            name='chk_job_status'
        ),
    )

    def __repr__(self):
        return (f"<JobHistory(id={self.id}, job={self.job_name}, run_date={self.run_date}, "
                f"status={self.status}, execution_id={self.execution_id})>")

    @property
    def is_terminal(self) -> bool:
        return self.status in ('completed', 'partial', 'failed')

    def to_dict(self) -> dict:
        """Convert to dictionary for CLI output."""
        return {
            'id': self.id,
            'job_name': self.job_name,
            'execution_id': self.execution_id,
            'run_date': self.run_date.isoformat() if self.run_date else None,
            'status': self.status,
            'scheduled_at': self.scheduled_at.isoformat() if self.scheduled_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
            'total': self.total,
            'successful': self.successful,
            'skipped': self.skipped,
            'failed': self.failed,
            'attempt_number': self.attempt_number,
            'max_retries': self.max_retries,
            'error_message': self.error_message,
            'triggered_by': self.triggered_by,
        }


class SchedulerState(Base):
    """
    Singleton row for the scheduler daemon state.
    Used by the status command and for health checks.
    """
    __tablename__ = 'scheduler_state'

    id = Column(Integer, primary_key=True, default=1)
    status = Column(String(20), nullable=False, default='stopped')
    started_at = Column(DateTime(timezone=True))
    host_name = Column(String(100))
    pid = Column(Integer)
    last_heartbeat = Column(DateTime(timezone=True))
    version = Column(String(20))

    __table_args__ = (
        CheckConstraint('id = 1', name='chk_singleton'),
        CheckConstraint(
            "status IN ('running', 'stopped', 'starting', 'stopping')",
            name='chk_scheduler_status'
        ),
    )

    def __repr__(self):
        return f"<SchedulerState(status={self.status}, pid={self.pid})>"

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'host_name': self.host_name,
            'pid': self.pid,
            'last_heartbeat': self.last_heartbeat.isoformat() if self.last_heartbeat else None,
            'version': self.version,
        }
