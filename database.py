from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings

MEMORY_URLS = ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite:///:memory:")


class Base(DeclarativeBase):
    pass


def build_engine(url: str, **kwargs: Any) -> Engine:
    """Engine for ``url`` with the SQLite settings the tracker relies on.

    File databases get WAL journaling and a busy timeout so the API and an
    Alembic run can share the file. In-memory databases are pinned to one
    connection, otherwise every new connection would see an empty store.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, **kwargs)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    in_memory = url in MEMORY_URLS
    if in_memory:
        kwargs.setdefault("poolclass", StaticPool)
    eng = create_engine(url, **kwargs)
    if not in_memory:
        event.listen(eng, "connect", _sqlite_file_pragmas)
    return eng


def _sqlite_file_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.close()


def session_factory(eng: Engine) -> sessionmaker:
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


def create_schema(eng: Optional[Engine] = None) -> Engine:
    """Create missing tables on ``eng`` (the configured engine by default)."""
    import models  # noqa: F401  registers categories, expenses, app_settings

    eng = eng if eng is not None else engine
    Base.metadata.create_all(eng)
    return eng


engine = build_engine(get_settings().database_url)
SessionLocal = session_factory(engine)


def init_db() -> None:
    """Create missing tables; Alembic migrations remain the upgrade path."""
    create_schema(engine)


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
