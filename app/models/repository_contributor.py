"""Top contributors per repository."""

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from app.config.database import Base, BigIntegerPK


class RepositoryContributor(Base):
    """Contributor entry mapped to `repository_contributors` table."""

    __tablename__ = "repository_contributors"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    repository_id = Column(BigInteger, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True)
    github_id = Column(BigInteger, nullable=False)
    login = Column(String(255), nullable=False)
    avatar_url = Column(Text, nullable=True)
    html_url = Column(Text, nullable=True)
    contributions = Column(Integer, nullable=False, default=0)
    type = Column(String(50), nullable=True)
    fetched_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("repository_id", "github_id", name="uq_repository_contributors_repo_user"),
        Index("idx_contributors_contributions", "contributions"),
    )

    def __repr__(self):
        return f"<RepositoryContributor {self.repository_id}:{self.login}>"
