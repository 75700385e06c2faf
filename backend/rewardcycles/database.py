"""Database connection and session management."""
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from rewardcycles.config import get_settings

settings = get_settings()


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine, making sure a file-backed SQLite directory exists."""
    url = make_url(database_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        # SQLite requires check_same_thread=False for FastAPI and the scheduler thread
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args, echo=echo)


engine = build_engine(settings.database_url, echo=settings.debug)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context(session_factory: sessionmaker = SessionLocal) -> Generator[Session, None, None]:
    """Context manager for database session (for use outside of FastAPI)."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
