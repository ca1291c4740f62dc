"""Local store of record: SQLAlchemy engine, sessions and transactions."""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .utils.exceptions import PersistenceError
from .utils.logger import get_error_logger

Base = declarative_base()


class Store:
    """Wraps an engine and hands out sessions and atomic transactions."""

    def __init__(self, database_url: str, echo: bool = False, lock_timeout: float = 10.0):
        connect_args = {}
        if database_url.startswith("sqlite"):
            # Sessions are used from worker threads; SQLite waits this long on a busy file.
            connect_args = {"check_same_thread": False, "timeout": lock_timeout}

        self.database_url = database_url
        self.engine = create_engine(
            database_url,
            echo=echo,
            future=True,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        self.session_factory = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autoflush=True,
        )
        self.error_logger = get_error_logger()

    def create_all(self) -> None:
        # Import models so they register on Base.metadata.
        from .models import processed_event, product  # noqa: F401

        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only style session; nothing is committed."""
        session = self.session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            raise PersistenceError(f"Store read failed: {str(e)}", details={"error": str(e)}) from e
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Atomic unit: commits when the block exits cleanly, rolls back on
        any exception.

        Raises:
            PersistenceError: If the database rejects a statement or the commit
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            self.error_logger.error(f"Transaction rolled back: {str(e)}")
            raise PersistenceError(f"Transaction failed: {str(e)}", details={"error": str(e)}) from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
