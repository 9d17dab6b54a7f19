"""Database engine, session factory and declarative base"""

from typing import Generator

from sqlalchemy import BigInteger, Integer, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config.settings import settings

# SQLite only autoincrements INTEGER primary keys.
BigIntegerPK = BigInteger().with_variant(Integer, "sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    pool_pre_ping=True,
    future=True,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a read session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all tables known to the metadata (idempotent)."""
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
