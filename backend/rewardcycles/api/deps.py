"""Shared API dependencies."""
from sqlalchemy.orm import sessionmaker

from rewardcycles.database import SessionLocal, get_db  # noqa: F401


def get_session_factory() -> sessionmaker:
    """Session factory for work that opens its own sessions (evaluation passes)."""
    return SessionLocal
