"""Database engine and session management.

Every retention unit of work (one entity's find/backup/delete, one
reinstatement) runs inside its own session obtained from session_scope(), so
concurrently executing entity tasks never share a connection.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from config import get_settings


def build_engine(database_url: Optional[str] = None, **overrides) -> Engine:
    """Create an engine for the store being cleaned up.

    Args:
        database_url: Connection string (defaults to settings.DATABASE_URL)
        **overrides: Extra keyword arguments passed to create_engine

    Returns:
        Engine: Configured SQLAlchemy engine
    """
    settings = get_settings()
    url = database_url or settings.DATABASE_URL

    engine_kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": False,
    }

    # Pool settings only apply to server databases (not SQLite)
    if not url.startswith("sqlite"):
        engine_kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        engine_kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW

    engine_kwargs.update(overrides)
    return create_engine(url, **engine_kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory used by all retention components."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Context manager for one transactional unit of work.

    Usage:
        with session_scope(SessionLocal) as session:
            session.execute(statement)

    Automatically commits on success, rolls back on exception and always
    releases the connection.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
