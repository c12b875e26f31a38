"""Engine and sessions for the helpdesk Postgres database."""
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from helpdesk.config import settings


def normalize_database_url(url: str) -> str:
    """Force the psycopg 3 driver for plain postgresql:// URLs."""
    if url.startswith("postgresql://") and "psycopg" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


_db_url = normalize_database_url(settings.DATABASE_URL or "")

if _db_url:
    engine = create_engine(
        _db_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
else:
    engine = None  # type: ignore[assignment]
    SessionLocal = None  # type: ignore[assignment]


def _session_factory() -> sessionmaker:
    if engine is None or SessionLocal is None:
        raise RuntimeError("DATABASE_URL is not set. Set it in .env or environment.")
    return SessionLocal


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """Session that commits whatever is left pending on a clean exit.

    Importers commit chunk by chunk on their own; a rollback here only drops
    the chunk that was in flight when the error happened.
    """
    db = _session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
