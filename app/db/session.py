from __future__ import annotations
import functools
from contextlib import contextmanager
from typing import Callable, Generator, Iterator, TypeVar
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from app.core.config import DATABASE_URL, SQL_ECHO

T = TypeVar("T")

engine = create_engine(
    DATABASE_URL,
    echo=SQL_ECHO,
    future=True,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)

def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Transaction boundary for a mutating operation.

    The outermost block commits on success and rolls back on any exception.
    Nested blocks join the enclosing transaction, so service functions can
    call each other without committing half of the work.
    """
    depth = db.info.get("atomic_depth", 0)
    db.info["atomic_depth"] = depth + 1
    try:
        yield db
        if depth == 0:
            db.commit()
    except BaseException:
        if depth == 0:
            db.rollback()
        raise
    finally:
        db.info["atomic_depth"] = depth

def transactional(fn: Callable[..., T]) -> Callable[..., T]:
    """Run a service function (``db`` first) inside :func:`atomic`."""

    @functools.wraps(fn)
    def wrapper(db: Session, *args, **kwargs):
        with atomic(db):
            return fn(db, *args, **kwargs)

    return wrapper
