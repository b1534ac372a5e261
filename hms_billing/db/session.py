# hms_billing/db/session.py
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from hms_billing.core.config import settings


def make_engine(db_uri: str) -> Engine:
    """
    Build an engine for the billing store.

    MySQL gets the usual pooled engine; row locks come from
    SELECT ... FOR UPDATE. It runs at READ COMMITTED: the recompute sums
    items with a plain SELECT after taking the account lock, and that read
    must see rows committed while the lock was awaited. READ COMMITTED also
    drops the gap lock a FOR UPDATE on a missing encounter would take, so
    two first charges collide on the unique key instead of deadlocking.

    SQLite (local dev / tests) has no row locks, so every transaction is
    opened with BEGIN IMMEDIATE to serialize writers.
    """
    if db_uri.startswith("sqlite"):
        eng = create_engine(
            db_uri,
            connect_args={"check_same_thread": False, "timeout": 30},
            future=True,
        )

        @event.listens_for(eng, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # take BEGIN away from pysqlite, we emit it ourselves
            dbapi_connection.isolation_level = None

        @event.listens_for(eng, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return eng

    return create_engine(
        db_uri,
        pool_pre_ping=True,
        pool_recycle=280,
        pool_size=10,
        max_overflow=20,
        isolation_level="READ COMMITTED",
        future=True,
    )


engine: Engine = make_engine(settings.SQLALCHEMY_DATABASE_URI)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    One unit of work: commit when the block finishes, roll back everything
    (items, recompute, ledger rows) when it raises.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
