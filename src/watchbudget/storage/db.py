"""SQLAlchemy engine, session factory and declarative base."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import DateTime, MetaData, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from watchbudget.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)

# Connection execution option marking a transaction that will write.
WRITE_TRANSACTION = "watchbudget_write"

# Consistent constraint naming keeps generated DDL stable across backends.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetimes stored as UTC on every backend.

    SQLite drops tzinfo on the way in; this normalises writes to UTC and
    re-attaches UTC on reads so arithmetic against the server clock works
    the same on SQLite and PostgreSQL.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def create_db_engine(config: DatabaseConfig | None = None) -> Engine:
    """Build an engine for the configured URL.

    In-memory SQLite gets a single shared connection so every session sees
    the same database; file SQLite waits ``busy_timeout`` seconds for locks
    instead of failing immediately under concurrent writers.
    """
    if config is None:
        config = DatabaseConfig()

    url = config.url
    is_sqlite = url.startswith("sqlite")
    engine_kwargs: dict = {"echo": config.echo, "future": True}

    if is_sqlite:
        connect_args = {"check_same_thread": False, "timeout": config.busy_timeout}
        engine_kwargs["connect_args"] = connect_args
        if url in ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite://"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs.update(
            {
                "pool_pre_ping": True,
                "pool_size": config.pool_size,
                "max_overflow": config.max_overflow,
            }
        )

    engine = create_engine(url, **engine_kwargs)
    if is_sqlite:
        _use_immediate_transactions(engine)
    logger.debug("Created database engine for %s", engine.url.render_as_string(hide_password=True))
    return engine


def _use_immediate_transactions(engine: Engine) -> None:
    """Take the SQLite write lock when a write transaction begins.

    pysqlite defers BEGIN until the first write, so two transactions that
    both read before writing can deadlock on the lock upgrade and one gets
    "database is locked" without waiting. BEGIN IMMEDIATE makes the second
    writer wait up to ``busy_timeout`` instead. Only connections opened
    through :func:`write_transaction` ask for it; reads keep a plain BEGIN
    and never queue behind a writer.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn) -> None:
        if conn.get_execution_options().get(WRITE_TRANSACTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        class_=Session,
    )


@contextmanager
def write_transaction(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Open a session in a transaction that commits on exit and will write.

    On SQLite the transaction starts with BEGIN IMMEDIATE; other backends
    ignore the marker.
    """
    with session_factory() as db, db.begin():
        db.connection(execution_options={WRITE_TRANSACTION: True})
        yield db


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    from watchbudget.storage import tables  # noqa: F401  (registers mappers)

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready")


def ping(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.warning("Database ping failed: %s", e)
        return False
