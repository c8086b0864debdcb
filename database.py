from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings


def _sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def enable_sqlite_pragmas(eng: Engine) -> None:
    # ON DELETE CASCADE / SET NULL only fire with foreign_keys enabled
    event.listen(eng, "connect", _sqlite_pragmas)


def build_engine(url: str, **connect_args: object) -> Engine:
    """Engine for ``url``; SQLite gets thread sharing and foreign keys.

    ``sqlite://`` (in-memory) is pinned to a single connection so every
    session sees the same database.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    connect_args.setdefault("check_same_thread", False)
    kwargs: dict[str, object] = {"connect_args": connect_args}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    eng = create_engine(url, **kwargs)
    enable_sqlite_pragmas(eng)
    return eng


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def get_db() -> Iterator[Session]:
    """Request-scoped session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
