import os
from contextlib import contextmanager
from pathlib import Path

from sqlmodel import Session, SQLModel, create_engine

# Compute default database path relative to project root
_PROJECT_ROOT = Path(__file__).parent.parent.parent
_DEFAULT_DB = f"sqlite:///{_PROJECT_ROOT / 'data' / 'sparkle.sqlite'}"

# Read from environment (set in deployment) or use local default
DATABASE_URL = os.environ.get("DATABASE_URL", _DEFAULT_DB)

# Global singleton engine - create once and reuse
_ENGINE = None


def get_engine():
    """Get or create the SQLAlchemy engine singleton"""
    global _ENGINE
    if _ENGINE is None:
        connect_args = {}
        if DATABASE_URL.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        _ENGINE = create_engine(DATABASE_URL, connect_args=connect_args)
    return _ENGINE


def make_session_factory(engine):
    """
    Return a session factory bound to an explicit engine.

    The assistant components take a factory instead of an engine so tests
    can hand them an in-memory database.
    """
    @contextmanager
    def factory():
        with Session(engine) as session:
            yield session

    return factory


def init_db(engine=None):
    """Initialize the database with tables."""
    # Import table models so they register on the metadata
    from sparkle.models import models  # noqa: F401

    engine = engine or get_engine()
    SQLModel.metadata.create_all(engine)
