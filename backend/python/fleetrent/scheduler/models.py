"""
SQLAlchemy models for scheduler job tracking.
Follows the patterns established in common/models.py.
"""

from sqlalchemy import Column, Integer, String, DateTime, Numeric, Text, JSON, Index, CheckConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from ..common.date_utils import utcnow
from ..common.models import new_id

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), 'postgresql')

JOB_STATUSES = ('running', 'completed', 'failed')


class JobHistory(Base):
    """
    Track job execution history.
    Records every execution attempt with status, timing, and results.
    """
    __tablename__ = 'scheduler_job_history'

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_name = Column(String(50), nullable=False, index=True)
    execution_id = Column(String(36), default=new_id, unique=True, nullable=False)
    status = Column(String(20), nullable=False, default='running', index=True)

    # Timing (naive UTC)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime)
    duration_seconds = Column(Numeric(10, 2))

    # Outcome
    result = Column(JSONType)
    error_message = Column(Text)

    triggered_by = Column(String(50), default='scheduler')  # scheduler, cli, api, manual
    host_name = Column(String(100))

    __table_args__ = (
        Index('idx_job_history_started_desc', started_at.desc()),
        CheckConstraint(
            "status IN ('running', 'completed', 'failed')",
            name='chk_job_status'
        ),
    )

    def __repr__(self):
        return f"<JobHistory(id={self.id}, job={self.job_name}, status={self.status})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            'id': self.id,
            'job_name': self.job_name,
            'execution_id': self.execution_id,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': float(self.duration_seconds) if self.duration_seconds is not None else None,
            'result': self.result,
            'error_message': self.error_message,
            'triggered_by': self.triggered_by,
            'host_name': self.host_name,
        }


def create_scheduler_tables(engine):
    """Create all scheduler tables if they don't exist."""
    Base.metadata.create_all(engine)
