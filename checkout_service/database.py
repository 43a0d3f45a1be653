import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .errors import wrap_store_error

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Narrow gateway over the relational store.

    `begin()` hands out a session with an open transaction, `connection()` a
    plain connection for single-statement reads. Neither sets an isolation
    level; that is the caller's job.
    """

    def __init__(self, engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def inner_ref(self):
        return self.engine

    @contextmanager
    def connection(self):
        try:
            conn = self.engine.connect()
        except SQLAlchemyError as exc:
            raise wrap_store_error(exc, "Could not acquire a connection") from exc
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def begin(self):
        """
        Yield a session inside a transaction.

        The connection is acquired lazily by the first statement, so callers
        can still choose the isolation level. Anything not committed when the
        block exits, including on cancellation, is rolled back.
        """
        session = self.SessionLocal()
        try:
            session.begin()
        except SQLAlchemyError as exc:
            session.close()
            raise wrap_store_error(exc, "Could not begin transaction") from exc

        try:
            yield session
        except BaseException:
            if session.in_transaction():
                logger.debug("Rolling back abandoned transaction")
                try:
                    session.rollback()
                except SQLAlchemyError as exc:
                    raise wrap_store_error(exc, "Could not roll back transaction") from exc
            raise
        finally:
            session.close()

    def dispose(self):
        self.engine.dispose()


def connect_database_with(config):
    """Build a pool from a Config-like object (class or instance)."""
    engine = create_engine(
        config.SQLALCHEMY_DATABASE_URI,
        echo=config.SQLALCHEMY_ECHO,
        pool_pre_ping=config.SQLALCHEMY_POOL_PRE_PING,
        future=True,
    )
    return ConnectionPool(engine)
