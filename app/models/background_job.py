"""Job-run ledger mapped to `background_jobs` table."""

from datetime import datetime
import enum

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB

from app.config.database import Base, BigIntegerPK


class JobType(str, enum.Enum):
    REPOSITORY_SYNC = "repository_sync"
    CONTRIBUTORS = "contributors"
    COMMIT_ACTIVITY = "commit_activity"


class JobStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BackgroundJob(Base):
    """Start/complete/fail record for one triggered job."""

    __tablename__ = "background_jobs"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    job_type = Column(String(100), nullable=False)
    repository_id = Column(BigInteger, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=True)
    status = Column(String(50), nullable=False, default=JobStatus.RUNNING.value)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    stats = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_type", "job_type"),
        # At most one running job per type.
        Index(
            "uq_jobs_running_type",
            "job_type",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )

    def __repr__(self):
        return f"<BackgroundJob {self.job_type}#{self.id} {self.status}>"
