"""Database session management for kasina-breath."""

import os

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from kasina_breath.constants import DEFAULT_DATABASE_PATH
from kasina_breath.database.models import Base

MEMORY_DATABASE = ":memory:"


class Database:
    """
    Owns one SQLite engine and its session factory.

    Example:
        >>> db = Database("/tmp/kasina.db").open()
        >>> with db.session_scope() as session:
        ...     session.add(obj)
        >>> db.close()
    """

    def __init__(self, database_path: str = DEFAULT_DATABASE_PATH):
        if not database_path or not isinstance(database_path, str):
            raise ValueError(f"Invalid database path: {database_path}")
        self.database_path = database_path
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> "Database":
        """
        Create the engine and any missing tables. Idempotent.

        Raises:
            PermissionError: If the database directory cannot be created
        """
        if self._engine is not None:
            return self

        if self.database_path == MEMORY_DATABASE:
            engine = create_engine(
                "sqlite://",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            db_dir = os.path.dirname(self.database_path)
            if db_dir:
                try:
                    os.makedirs(db_dir, exist_ok=True)
                except PermissionError as e:
                    raise PermissionError(
                        f"Cannot create database directory {db_dir}: {e}"
                    ) from e

            engine = create_engine(
                f"sqlite:///{self.database_path}",
                echo=False,
                connect_args={"check_same_thread": False},
                pool_pre_ping=True,
            )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        Base.metadata.create_all(engine)

        self._engine = engine
        self._session_factory = sessionmaker(bind=engine)
        return self

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not open. Call open() first.")
        return self._engine

    def get_session(self) -> Session:
        """
        Get a new database session.

        Raises:
            RuntimeError: If the database has not been opened
        """
        if self._session_factory is None:
            raise RuntimeError("Database not open. Call open() first.")
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session]:
        """
        Provide a transactional scope for database operations.

        Commits on success, rolls back on error.

        Yields:
            A database session.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Dispose of the engine. Safe to call more than once."""
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
