import os
from typing import Callable, Iterator, Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def build_database_url(
    user: Optional[str] = None,
    password: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[str] = None,
    db: Optional[str] = None,
) -> str:
    """PostgreSQL URL from explicit parts, falling back to POSTGRES_* environment variables."""
    user = user or os.getenv("POSTGRES_USER", "postgres")
    password = password or os.getenv("POSTGRES_PASSWORD", "postgres")
    host = host or os.getenv("POSTGRES_HOST", "localhost")
    port = port or os.getenv("POSTGRES_PORT", "5432")
    db = db or os.getenv("POSTGRES_DB", "viraldeals")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def make_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite gets a single shared connection so threads see one database."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, echo=False, pool_pre_ping=True)


def make_session_factory(database_url: str) -> Tuple[Engine, sessionmaker]:
    """Engine plus a session factory bound to it."""
    engine = make_engine(database_url)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


def session_dependency(session_factory: Callable[[], Session]) -> Callable[[], Iterator[Session]]:
    """FastAPI dependency yielding a session from `session_factory` and closing it afterwards."""

    def get_db() -> Iterator[Session]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return get_db
