"""
Module: ledger_kernel.db.engine
Responsibility: Builds the ledger's SQLAlchemy engine, holds the process-wide
    engine and session factory, and provides ``session_scope``.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from models/, services/, selectors/, domain/, or outer layers
    (except for create_tables/drop_tables which import the model packages).

Invariants enforced:
    - PostgreSQL sessions run READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) on the account and sequence counter rows.
      Every connection carries ``lock_timeout`` and ``statement_timeout`` so
      no storage call blocks without bound.
    - SQLite (tests and local runs) opens every transaction with
      ``BEGIN IMMEDIATE``, serializing writers the way the row locks do on
      PostgreSQL.  The driver busy timeout bounds the wait.
    - Pool checkout is bounded by ``pool_timeout``.

Failure modes:
    - RuntimeError from the getters until an engine is installed.
    - Timeouts surface as OperationalError / sqlalchemy TimeoutError; callers
      translate them with ledger_kernel.db.errors.translate_storage_error().
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_immediate_begin(engine: Engine) -> None:
    """Make every SQLite transaction start with BEGIN IMMEDIATE."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to SQLAlchemy; pysqlite would otherwise
        # emit its own deferred BEGIN.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    lock_timeout_ms: int = 5000,
    statement_timeout_ms: int = 30000,
    sqlite_busy_timeout_s: float = 30.0,
) -> Engine:
    """
    Engine for a PostgreSQL or SQLite URL where no storage call waits forever.

    PostgreSQL connections get ``lock_timeout`` and ``statement_timeout``;
    SQLite connections get the driver busy timeout and ``BEGIN IMMEDIATE``.
    In-memory SQLite shares one connection (StaticPool) so every session
    sees the same database.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        connect_args: dict[str, Any] = {
            "timeout": sqlite_busy_timeout_s,
            "check_same_thread": False,
        }
        if url.database in (None, "", ":memory:"):
            engine = create_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args=connect_args,
            )
        else:
            engine = create_engine(
                url,
                echo=echo,
                poolclass=QueuePool,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                connect_args=connect_args,
            )
        _install_sqlite_immediate_begin(engine)
        return engine

    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
        connect_args={
            "options": (
                f"-c lock_timeout={lock_timeout_ms} "
                f"-c statement_timeout={statement_timeout_ms}"
            ),
        },
    )


def init_engine_from_url(database_url: str, **engine_options: Any) -> Engine:
    """
    Install the process-wide engine and session factory.

    ``engine_options`` go to ``build_engine``.  Calling again replaces the
    engine without disposing the old one; use ``reset_engine()`` for that.
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, **engine_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "echo": bool(engine_options.get("echo", False)),
        },
    )

    return _engine


def init_engine_from_config(database_config) -> Engine:
    """Initialize the engine from a ``DatabaseConfig`` section."""
    return init_engine_from_url(
        database_config.url,
        echo=database_config.echo,
        pool_size=database_config.pool_size,
        max_overflow=database_config.max_overflow,
        pool_timeout=database_config.pool_timeout_s,
        lock_timeout_ms=database_config.lock_timeout_ms,
        statement_timeout_ms=database_config.statement_timeout_ms,
        sqlite_busy_timeout_s=database_config.sqlite_busy_timeout_s,
    )


_NOT_INITIALIZED = "No ledger database engine; call init_engine_from_url() first."


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for new sessions.  Every thread and batch chunk opens its own."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One unit of work: commit when the block exits cleanly, roll back and
    re-raise when it does not.  The session is closed either way.

        with session_scope() as session:
            PostingEngine(session).post(proposed, account_id)
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
        logger.debug("session_committed")
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _ledger_metadata():
    # Model modules register their tables on Base.metadata when imported
    import ledger_batch.models  # noqa: F401
    import ledger_kernel.models  # noqa: F401
    from ledger_kernel.db.base import Base

    return Base.metadata


def create_tables(engine: Engine | None = None) -> None:
    """Create every ledger and batch table that does not exist yet."""
    _ledger_metadata().create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every ledger and batch table.  Test teardown only."""
    _ledger_metadata().drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the module engine and forget the session factory."""
    global _engine, _SessionFactory

    engine, _engine, _SessionFactory = _engine, None, None
    if engine is not None:
        engine.dispose()


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


atexit.register(reset_engine)
