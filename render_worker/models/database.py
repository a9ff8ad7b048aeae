from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from render_worker.config import get_settings

settings = get_settings()

# Sync engine for Celery tasks; one worker slot holds at most one connection
sync_engine = create_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=2,
    max_overflow=2,
    pool_pre_ping=True,  # Check connection health before use
    pool_recycle=1800,
)

sync_session_maker = sessionmaker(
    sync_engine,
    class_=Session,
    expire_on_commit=False,
)


@contextmanager
def get_sync_db() -> Generator[Session, None, None]:
    """Get a synchronous database session for Celery tasks."""
    session = sync_session_maker()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
