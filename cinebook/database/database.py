from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from cinebook.core.config import DATABASE_URL

# Base model for all ORM classes
Base = declarative_base()


def build_engine(url: str = DATABASE_URL, **kwargs) -> Engine:
    """
    Create the SQLAlchemy engine.
    SQLite connections open every transaction with BEGIN IMMEDIATE so write
    transactions from different worker threads are serialized (SQLite has no
    row locks); PostgreSQL relies on row locks taken by the services.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        engine = create_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # hand transaction control to SQLAlchemy
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, **kwargs)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


# Create SQLAlchemy engine
engine = build_engine(DATABASE_URL)

# Session maker
SessionLocal = build_session_factory(engine)

SessionFactory = Callable[[], Session]


@contextmanager
def session_scope(factory: Optional[SessionFactory] = None) -> Iterator[Session]:
    """One transaction: commit on success, roll back on any error."""
    db = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


