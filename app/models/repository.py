"""Repository model mapped to the `repositories` table."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.config.database import Base, BigIntegerPK


class Repository(Base):
    """One upstream repository, keyed by its stable GitHub database id."""

    __tablename__ = "repositories"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    github_id = Column(BigInteger, unique=True, nullable=False, index=True)

    name = Column(String(255), nullable=False)
    full_name = Column(String(500), unique=True, nullable=False, index=True)
    owner_login = Column(String(255), nullable=False)
    owner_avatar_url = Column(Text, nullable=True)
    owner_type = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    html_url = Column(Text, nullable=False)
    homepage_url = Column(Text, nullable=True)

    stars_count = Column(Integer, nullable=False, default=0)
    forks_count = Column(Integer, nullable=False, default=0)
    watchers_count = Column(Integer, nullable=False, default=0)
    open_issues_count = Column(Integer, nullable=False, default=0)
    size_kb = Column(Integer, nullable=False, default=0)

    language = Column(String(100), nullable=True)
    topics = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    license_name = Column(String(255), nullable=True)
    license_key = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    pushed_at = Column(DateTime(timezone=True), nullable=True)

    is_fork = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    is_disabled = Column(Boolean, nullable=False, default=False)
    allow_forking = Column(Boolean, nullable=False, default=True)
    is_template = Column(Boolean, nullable=False, default=False)
    visibility = Column(String(50), nullable=False, default="public")
    has_issues = Column(Boolean, nullable=False, default=True)
    has_projects = Column(Boolean, nullable=False, default=True)
    has_downloads = Column(Boolean, nullable=False, default=True)
    has_wiki = Column(Boolean, nullable=False, default=True)
    has_pages = Column(Boolean, nullable=False, default=False)
    has_discussions = Column(Boolean, nullable=False, default=False)

    default_branch = Column(String(255), nullable=False, default="main")
    subscribers_count = Column(Integer, nullable=False, default=0)
    network_count = Column(Integer, nullable=False, default=0)

    last_fetched = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    languages = relationship("RepositoryLanguage", back_populates="repository", cascade="all, delete-orphan")
    stats = relationship("RepositoryStats", back_populates="repository", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("stars_count >= 0", name="positive_stars"),
        CheckConstraint("forks_count >= 0", name="positive_forks"),
        Index("idx_repos_stars_id", "stars_count", "id"),
        Index("idx_repos_pushed_at", "pushed_at"),
        Index("idx_repos_language", "language"),
    )

    def __repr__(self):
        return f"<Repository {self.full_name}>"
