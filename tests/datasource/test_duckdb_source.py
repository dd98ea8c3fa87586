"""Tests for the DuckDB datasource."""

import pytest

from schemasense.core.errors import DataSourceError
from schemasense.datasource import DuckDBDataSource, TableRef

USERS = TableRef(table_name="users")
SERVERS = TableRef(table_name="servers")


class TestGetSchema:
    """Tests for schema enumeration."""

    def test_tables_and_columns(self, hosts_source):
        schema = hosts_source.get_schema()

        assert [t.qualified_name for t in schema.tables] == ["main.servers", "main.users"]
        users = schema.get_table("main.users")
        assert users is not None
        assert users.row_count == 50
        assert [c.name for c in users.columns] == ["user_id", "email", "created_at"]

    def test_primary_keys_and_types(self, hosts_source):
        servers = hosts_source.get_schema().get_table("main.servers")
        assert servers is not None

        server_id = servers.get_column("server_id")
        host_id = servers.get_column("host_id")
        assert server_id is not None and server_id.is_primary_key
        assert host_id is not None and not host_id.is_primary_key
        assert host_id.data_type == "VARCHAR"

    def test_schema_filter(self, hosts_db):
        source = DuckDBDataSource(hosts_db, schemas=["analytics"])
        assert source.get_schema().tables == []


class TestProfileColumn:
    """Tests for per-column statistics."""

    def test_statistics(self, hosts_source):
        stats = hosts_source.profile_column(SERVERS, "host_id", sample_size=100)

        assert stats.row_count == 1000
        assert stats.null_count == 0
        assert stats.distinct_count == 52
        assert stats.min_length == 36
        assert len(stats.sample_values) == 100

    def test_nulls_are_not_sampled(self, duckdb_conn):
        duckdb_conn.execute("CREATE TABLE t (v INTEGER)")
        duckdb_conn.execute("INSERT INTO t VALUES (1), (NULL), (NULL), (2)")
        stats = DuckDBDataSource(duckdb_conn).profile_column(
            TableRef(table_name="t"), "v", sample_size=10
        )

        assert stats.null_count == 2
        assert sorted(stats.sample_values) == ["1", "2"]

    def test_unknown_column_raises(self, hosts_source):
        with pytest.raises(DataSourceError):
            hosts_source.profile_column(SERVERS, "missing", sample_size=10)


class TestOverlap:
    """Tests for sampled overlap and full join analysis."""

    def test_overlap_of_sampled_values(self, hosts_source):
        values = hosts_source.sample_distinct_values(SERVERS, "host_id", limit=500)
        overlap = hosts_source.test_overlap(values, USERS, "user_id")

        assert overlap.sampled == 52
        assert overlap.matched == 50

    def test_empty_values(self, hosts_source):
        overlap = hosts_source.test_overlap([], USERS, "user_id")
        assert overlap.match_rate == 0.0

    def test_analyze_join(self, hosts_source):
        analysis = hosts_source.analyze_join(SERVERS, "host_id", USERS, "user_id")

        assert analysis.source_rows == 1000
        assert analysis.matched_rows == 998
        assert analysis.orphan_rows == 2
        assert analysis.target_distinct == 50
        assert analysis.max_target_repeat == 1
        assert analysis.max_source_repeat > 1
