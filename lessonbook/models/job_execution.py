"""JobExecutionRecord model - append-only audit trail of background job runs"""
from sqlalchemy import Column, String, Boolean, DateTime, JSON, Index, Uuid
from sqlalchemy.sql import func
import uuid

from lessonbook.database import Base


class JobExecutionRecord(Base):
    """One row per background job run"""

    __tablename__ = "job_executions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_name = Column(String(100), nullable=False)
    executed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    success = Column(Boolean, nullable=False)
    counts = Column(JSON, nullable=False, default=dict)  # e.g. {"lessons_generated": 12}
    errors = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("idx_job_executions_name_time", "job_name", "executed_at"),
    )

    def __repr__(self):
        return f"<JobExecutionRecord(job={self.job_name}, executed_at={self.executed_at}, success={self.success})>"
