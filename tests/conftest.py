"""Shared pytest fixtures for all tests."""

import uuid

import duckdb
import pandas as pd
import pytest

from schemasense.core.config import Settings
from schemasense.core.connections import ConnectionConfig, ConnectionManager
from schemasense.datasource import DuckDBDataSource
from schemasense.storage.models import Ontology, Project


@pytest.fixture
def settings():
    """Settings with fast retries and a small worker pool."""
    return Settings(
        database_url="sqlite:///:memory:",
        max_workers=2,
        retry_max_attempts=3,
        retry_initial_delay=0.0,
        retry_max_delay=0.0,
        retry_jitter=0.0,
    )


@pytest.fixture
def manager():
    """Initialized in-memory connection manager.

    Creates a fresh metadata store and DuckDB database for each test.
    """
    mgr = ConnectionManager(ConnectionConfig.in_memory())
    mgr.initialize()
    yield mgr
    mgr.close()


@pytest.fixture
def project_id(manager):
    with manager.session_scope() as session:
        project = Project(name="acme")
        session.add(project)
        session.flush()
        return project.project_id


@pytest.fixture
def ontology_id(manager, project_id):
    with manager.session_scope(project_id) as session:
        ontology = Ontology(name="sales")
        session.add(ontology)
        session.flush()
        return ontology.ontology_id


@pytest.fixture
def duckdb_conn():
    """Create an in-memory DuckDB connection for testing."""
    conn = duckdb.connect(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def hosts_db(duckdb_conn):
    """Servers referencing users only through data.

    ``servers.host_id`` is text holding UUIDs; 998 of 1000 rows point at an
    existing ``users.user_id`` (50 users), two point at unknown ids.
    """
    user_ids = [str(uuid.uuid5(uuid.NAMESPACE_DNS, f"user-{i}")) for i in range(50)]
    orphans = [str(uuid.uuid5(uuid.NAMESPACE_DNS, f"ghost-{i}")) for i in range(2)]

    users = pd.DataFrame(
        {
            "user_id": user_ids,
            "email": [f"user{i}@example.com" for i in range(50)],
            "created_at": pd.date_range("2024-01-01", periods=50, freq="D"),
        }
    )
    servers = pd.DataFrame(
        {
            "server_id": range(1, 1001),
            "host_id": orphans + [user_ids[i % 50] for i in range(998)],
            "status": ["active" if i % 3 else "inactive" for i in range(1000)],
        }
    )

    duckdb_conn.execute(
        "CREATE TABLE users (user_id VARCHAR PRIMARY KEY, email VARCHAR, created_at TIMESTAMP)"
    )
    duckdb_conn.execute(
        "CREATE TABLE servers (server_id INTEGER PRIMARY KEY, host_id VARCHAR, status VARCHAR)"
    )
    duckdb_conn.register("users_df", users)
    duckdb_conn.register("servers_df", servers)
    duckdb_conn.execute("INSERT INTO users SELECT * FROM users_df")
    duckdb_conn.execute("INSERT INTO servers SELECT * FROM servers_df")
    duckdb_conn.unregister("users_df")
    duckdb_conn.unregister("servers_df")
    return duckdb_conn


@pytest.fixture
def hosts_source(hosts_db):
    return DuckDBDataSource(hosts_db)
