"""Weekly commit totals per repository."""

from datetime import datetime

from sqlalchemy import BigInteger, Column, Date, DateTime, ForeignKey, Index, Integer, UniqueConstraint

from app.config.database import Base, BigIntegerPK


class RepositoryCommitActivity(Base):
    """One week of commit activity mapped to `repository_commit_activity` table."""

    __tablename__ = "repository_commit_activity"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    repository_id = Column(BigInteger, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True)
    week_timestamp = Column(BigInteger, nullable=False)
    week_date = Column(Date, nullable=False)
    total_commits = Column(Integer, nullable=False, default=0)
    fetched_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("repository_id", "week_timestamp", name="uq_commit_activity_repo_week"),
        Index("idx_commit_activity_week", "week_date"),
    )

    def __repr__(self):
        return f"<RepositoryCommitActivity {self.repository_id}:{self.week_date}>"
