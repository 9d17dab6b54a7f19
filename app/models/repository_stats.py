"""Derived metrics mapped to `repository_stats` (one row per repository)."""

from datetime import datetime
import enum

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship

from app.config.database import Base, BigIntegerPK


class ContributorsDataType(str, enum.Enum):
    """Whether the stored contributor snapshot is full history or an approximation."""

    ALL_TIME = "all_time"
    RECENT = "recent"


# Columns written by the top-repositories sync. Enrichment never touches these.
SYNC_OWNED_COLUMNS = (
    "commits_last_year",
    "days_since_last_commit",
    "days_since_last_release",
    "latest_release_tag",
    "latest_release_date",
    "total_releases",
    "activity_score",
    "health_score",
    "calculated_at",
)

# Columns written by the contributors refresh. The sync never touches these.
CONTRIBUTORS_OWNED_COLUMNS = (
    "contributors_data_type",
    "contributors_updated_at",
)


class RepositoryStats(Base):
    """Activity/health scores and release facts for a repository."""

    __tablename__ = "repository_stats"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    repository_id = Column(
        BigInteger,
        ForeignKey("repositories.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    commits_last_month = Column(Integer, nullable=False, default=0)
    commits_last_year = Column(Integer, nullable=False, default=0)
    issues_closed_last_month = Column(Integer, nullable=False, default=0)
    pull_requests_merged_last_month = Column(Integer, nullable=False, default=0)

    stars_growth_30d = Column(Integer, nullable=False, default=0)
    forks_growth_30d = Column(Integer, nullable=False, default=0)
    contributors_count = Column(Integer, nullable=False, default=0)

    activity_score = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    health_score = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)

    avg_issue_close_time_days = Column(Numeric(10, 2, asdecimal=False), nullable=True)
    avg_pr_merge_time_days = Column(Numeric(10, 2, asdecimal=False), nullable=True)
    days_since_last_commit = Column(Integer, nullable=True)
    days_since_last_release = Column(Integer, nullable=True)

    latest_release_tag = Column(String(255), nullable=True)
    latest_release_date = Column(DateTime(timezone=True), nullable=True)
    total_releases = Column(Integer, nullable=False, default=0)

    contributors_data_type = Column(String(50), nullable=False, default=ContributorsDataType.ALL_TIME.value)
    contributors_updated_at = Column(DateTime(timezone=True), nullable=True)

    calculated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    repository = relationship("Repository", back_populates="stats")

    __table_args__ = (
        Index("idx_stats_activity_score", "activity_score"),
        Index("idx_stats_health_score", "health_score"),
    )

    def __repr__(self):
        return f"<RepositoryStats repo={self.repository_id} activity={self.activity_score}>"
