"""
Database configuration for SQLAlchemy + SQLite.

The engine is opened explicitly (app startup) and disposed on shutdown
instead of being created at import time, so tests can point it elsewhere.
"""

from fastapi import Request
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


def make_engine(sqlite_path: str) -> Engine:
    # Store reads/writes run in worker threads, so the connection may hop threads.
    return create_engine(
        f"sqlite:///{sqlite_path}",
        connect_args={"check_same_thread": False},
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to `engine`; creates missing tables."""
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request):
    """
    FastAPI dependency that yields a DB session per request,
    then closes it cleanly afterwards.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
