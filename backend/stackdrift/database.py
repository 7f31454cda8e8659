"""Database engine, session factory and declarative base."""

from collections.abc import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from stackdrift.config import get_settings

settings = get_settings()


class Base(DeclarativeBase):
    """Declarative base for all models."""


# The pipeline runs synchronously (Celery workers and threadpooled routes)
engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    """Yield a session for one request."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
