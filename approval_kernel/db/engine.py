"""
Module: approval_kernel.db.engine
Responsibility: Owns the process-wide SQLAlchemy engine and session factory
    for approval storage, and the commit-or-rollback unit of work callers
    wrap around service calls.
Architecture position: Kernel > DB.  Imports db/base.py; imports the model
    modules only inside create_tables()/drop_tables() so their tables are
    registered on the shared metadata.

Invariants enforced:
    - One engine per process.  init_engine() replaces (and disposes) any
      previous one.
    - Sessions keep attribute state after commit (expire_on_commit=False):
      services return domain objects, so no lazy reload may follow a commit.
    - SQLite connections enforce foreign keys and wait ``timeout`` seconds on
      a locked database instead of failing at once; the SLA monitor and
      request handlers write from different sessions.
    - PostgreSQL runs READ COMMITTED.  Lost updates are caught by the
      version column on approval instances, not by the isolation level.

Failure modes:
    - RuntimeError when a session is requested before init_engine().
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def init_engine(
    database_url: str,
    *,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    timeout: int = 30,
) -> Engine:
    """Create the engine for ``database_url`` and make it current.

    ``pool_size`` and ``max_overflow`` apply to server databases only.
    ``timeout`` is the pool checkout timeout there and the lock wait on SQLite.
    """
    global _engine, _session_factory
    dispose_engine()

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
        event.listen(engine, "connect", _sqlite_pragmas)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=timeout,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    logger.info("database_engine_ready", extra={
        "dialect": engine.dialect.name,
        "database": engine.url.database,
    })
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("No database engine; call init_engine() first")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for independent sessions, one per unit of work.

    The SLA monitor opens a fresh session for every instance it sweeps, so it
    is handed this factory rather than a session.
    """
    if _session_factory is None:
        raise RuntimeError("No database engine; call init_engine() first")
    return _session_factory


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit on success, roll back and re-raise on error, always close.

    ::

        with session_scope() as session:
            ApprovalService(session).approve(instance_id, approver_id)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("unit_of_work_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    from approval_kernel.db.base import Base
    import approval_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    from approval_kernel.db.base import Base
    import approval_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def dispose_engine() -> None:
    """Close pooled connections and forget the current engine."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
