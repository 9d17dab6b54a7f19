"""Per-repository language byte breakdown."""

from sqlalchemy import BigInteger, Column, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from app.config.database import Base, BigIntegerPK


class RepositoryLanguage(Base):
    """Language share mapped to `repository_languages` table."""

    __tablename__ = "repository_languages"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    repository_id = Column(BigInteger, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True)
    language_name = Column(String(100), nullable=False)
    bytes_count = Column(BigInteger, nullable=False, default=0)
    percentage = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)

    repository = relationship("Repository", back_populates="languages")

    __table_args__ = (
        UniqueConstraint("repository_id", "language_name", name="uq_repository_languages_repo_lang"),
    )

    def __repr__(self):
        return f"<RepositoryLanguage {self.repository_id}:{self.language_name}>"
