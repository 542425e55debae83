from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_settings

settings = get_settings()


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Pooled connections move between request threads; writers wait on the file lock instead of failing fast.
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
Base = declarative_base()


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def insert_for(db: Session, entity):
    """
    Dialect-specific INSERT so callers can use ON CONFLICT.

    Only PostgreSQL and SQLite are supported; both accept
    `on_conflict_do_nothing` / `on_conflict_do_update` with the same arguments.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(entity)
    if dialect == "sqlite":
        return sqlite.insert(entity)
    raise ValueError(f"ON CONFLICT upserts are not supported for dialect {dialect!r}")
