"""Thread-safe connection management for SQLAlchemy + DuckDB.

- SQLAlchemy sessions for the metadata store, optionally scoped to a project
- DuckDB read cursors (one per thread) for the datasource
- WAL mode for SQLite to enable concurrent reads with writes

Usage:
    from schemasense.core.connections import ConnectionManager, ConnectionConfig

    manager = ConnectionManager(ConnectionConfig.in_memory())
    manager.initialize()

    with manager.session_scope(project_id="p-1") as session:
        ...

    with manager.duckdb_cursor() as cursor:
        rows = cursor.execute("SELECT * FROM orders").fetchall()

    manager.close()
"""

from __future__ import annotations

import threading
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import duckdb
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from schemasense.core.config import Settings, get_settings
from schemasense.storage import init_database
from schemasense.storage.tenancy import bind_project


@dataclass
class ConnectionConfig:
    """Connection configuration for SQLAlchemy and DuckDB.

    Attributes:
        database_url: SQLAlchemy URL of the metadata store
        duckdb_path: DuckDB database file, or ":memory:"
        duckdb_read_only: Open the datasource read-only
        sqlite_timeout: SQLite busy timeout in seconds
        duckdb_memory_limit: DuckDB memory limit (e.g., "2GB")
        echo_sql: Whether to echo SQL statements (for debugging)
    """

    database_url: str
    duckdb_path: str = ":memory:"
    duckdb_read_only: bool = False
    sqlite_timeout: float = 30.0
    duckdb_memory_limit: str = "2GB"
    echo_sql: bool = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> ConnectionConfig:
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "database_url": settings.database_url,
            "duckdb_path": settings.duckdb_path,
            "duckdb_memory_limit": settings.duckdb_memory_limit,
        }
        values.update(kwargs)
        return cls(**values)

    @classmethod
    def in_memory(cls, **kwargs: Any) -> ConnectionConfig:
        """Create config for in-memory databases (useful for testing)."""
        return cls(database_url="sqlite:///:memory:", duckdb_path=":memory:", **kwargs)


@dataclass
class ConnectionManager:
    """Thread-safe connection management for SQLAlchemy + DuckDB.

    Thread Safety:
    - SQLAlchemy sessions: one session per thread
    - DuckDB reads: use duckdb_cursor(), one cursor per thread
    """

    config: ConnectionConfig
    _engine: Engine | None = field(default=None, init=False, repr=False)
    _session_factory: sessionmaker[Session] | None = field(default=None, init=False, repr=False)
    _duckdb_conn: duckdb.DuckDBPyConnection | None = field(default=None, init=False, repr=False)
    _init_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _initialized: bool = field(default=False, init=False, repr=False)

    def initialize(self) -> None:
        """Create the engine, the schema and the DuckDB connection.

        Safe to call multiple times (idempotent).

        Raises:
            RuntimeError: If initialization fails
        """
        with self._init_lock:
            if self._initialized:
                return
            try:
                self._init_sqlalchemy()
                self._init_duckdb()
                self._initialized = True
            except Exception as e:
                self.close()
                raise RuntimeError(f"Failed to initialize connections: {e}") from e

    def _init_sqlalchemy(self) -> None:
        url = self.config.database_url
        kwargs: dict[str, Any] = {"echo": self.config.echo_sql}
        is_sqlite = url.startswith("sqlite")
        if is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
                # One shared connection, otherwise every checkout sees an empty database
                kwargs["poolclass"] = StaticPool

        self._engine = create_engine(url, **kwargs)

        if is_sqlite:

            @event.listens_for(self._engine, "connect")
            def configure_sqlite(dbapi_conn: Any, connection_record: Any) -> None:
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute(f"PRAGMA busy_timeout={int(self.config.sqlite_timeout * 1000)}")
                cursor.close()

        init_database(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False)

    def _init_duckdb(self) -> None:
        path = self.config.duckdb_path
        if path == ":memory:":
            self._duckdb_conn = duckdb.connect(":memory:")
        else:
            self._duckdb_conn = duckdb.connect(path, read_only=self.config.duckdb_read_only)
        self._duckdb_conn.execute(f"SET memory_limit='{self.config.duckdb_memory_limit}'")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("ConnectionManager not initialized. Call initialize() first.")

    @contextmanager
    def session_scope(self, project_id: str | None = None) -> Generator[Session]:
        """Get a session with automatic commit/rollback.

        Args:
            project_id: Scope every read and write of the session to this project

        Raises:
            RuntimeError: If manager not initialized
        """
        self._ensure_initialized()
        assert self._session_factory is not None

        session = self._session_factory()
        if project_id is not None:
            bind_project(session, project_id)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def duckdb_cursor(self) -> Generator[duckdb.DuckDBPyConnection]:
        """Get a DuckDB cursor for read operations.

        Cursors from the same connection are thread-safe for reads.
        """
        self._ensure_initialized()
        assert self._duckdb_conn is not None

        cursor = self._duckdb_conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    @property
    def duckdb_conn(self) -> duckdb.DuckDBPyConnection:
        """The underlying DuckDB connection (writes are the caller's business)."""
        self._ensure_initialized()
        assert self._duckdb_conn is not None
        return self._duckdb_conn

    @property
    def engine(self) -> Engine:
        self._ensure_initialized()
        assert self._engine is not None
        return self._engine

    def close(self) -> None:
        """Close all connections and dispose of pools.

        Safe to call multiple times.
        """
        if self._duckdb_conn is not None:
            self._duckdb_conn.close()
            self._duckdb_conn = None

        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

        self._session_factory = None
        self._initialized = False


__all__ = ["ConnectionConfig", "ConnectionManager"]
