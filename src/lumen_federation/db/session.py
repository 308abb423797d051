"""Database session configuration."""

from __future__ import annotations

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import BigInteger, Integer, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from lumen_federation.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# SQLite only autoincrements columns declared exactly as INTEGER PRIMARY KEY
BigIntegerPK = BigInteger().with_variant(Integer, "sqlite")


# Ensure model modules are imported so that metadata is populated when create_all runs.
import lumen_federation.models  # noqa: E402,F401

engine = create_engine(
    settings.effective_database_url,
    pool_pre_ping=True,
    echo=settings.sql_debug,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(existing: Session | None = None) -> Iterator[Session]:
    """Yield ``existing`` when given, otherwise a short-lived session."""
    if existing is not None:
        yield existing
        return
    with SessionLocal() as db:
        yield db
