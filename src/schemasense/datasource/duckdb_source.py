"""DuckDB-backed datasource.

Identifiers are quoted, values are compared as text so that UUID, integer
and string keys can be tested against each other when the type
compatibility matrix allows it.
"""

from __future__ import annotations

import duckdb

from schemasense.core.errors import DataSourceError
from schemasense.core.logging import get_logger, increment_db_query
from schemasense.datasource.base import DataSource
from schemasense.datasource.models import (
    ColumnStats,
    JoinAnalysis,
    ObservedSchema,
    OverlapResult,
    SchemaColumn,
    SchemaTable,
    TableRef,
)

logger = get_logger(__name__)

_SYSTEM_SCHEMAS = ("information_schema", "pg_catalog")


def quote_ident(name: str) -> str:
    """Quote an identifier for DuckDB SQL."""
    return '"' + name.replace('"', '""') + '"'


def qualified(table: TableRef) -> str:
    return f"{quote_ident(table.schema_name)}.{quote_ident(table.table_name)}"


class DuckDBDataSource(DataSource):
    """Read-only datasource over a DuckDB connection.

    Each call runs on its own cursor, so one instance can be shared by the
    worker threads of a step.
    """

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        schemas: list[str] | None = None,
        sample_seed: int = 42,
    ):
        self._conn = conn
        self._schemas = schemas
        self._seed = sample_seed

    def _fetchall(self, sql: str, params: list[object] | None = None) -> list[tuple]:
        increment_db_query()
        cursor = self._conn.cursor()
        try:
            return cursor.execute(sql, params or []).fetchall()
        except duckdb.Error as e:
            raise DataSourceError(str(e)) from e
        finally:
            cursor.close()

    def _fetchone(self, sql: str, params: list[object] | None = None) -> tuple:
        rows = self._fetchall(sql, params)
        if not rows:
            raise DataSourceError(f"Query returned no rows: {sql.strip()[:80]}")
        return rows[0]

    def get_schema(self) -> ObservedSchema:
        tables_sql = """
            SELECT table_schema, table_name
            FROM information_schema.tables
            WHERE table_type = 'BASE TABLE'
              AND table_catalog = current_database()
            ORDER BY table_schema, table_name
        """
        columns_sql = """
            SELECT table_schema, table_name, column_name, data_type, ordinal_position, is_nullable
            FROM information_schema.columns
            WHERE table_catalog = current_database()
            ORDER BY table_schema, table_name, ordinal_position
        """
        pk_sql = """
            SELECT schema_name, table_name, constraint_column_names
            FROM duckdb_constraints()
            WHERE constraint_type = 'PRIMARY KEY'
              AND database_name = current_database()
        """

        primary_keys: set[tuple[str, str, str]] = set()
        for schema_name, table_name, column_names in self._fetchall(pk_sql):
            for column_name in column_names:
                primary_keys.add((schema_name, table_name, column_name))

        tables: dict[tuple[str, str], SchemaTable] = {}
        for schema_name, table_name in self._fetchall(tables_sql):
            if schema_name in _SYSTEM_SCHEMAS:
                continue
            if self._schemas is not None and schema_name not in self._schemas:
                continue
            tables[(schema_name, table_name)] = SchemaTable(
                schema_name=schema_name, table_name=table_name
            )

        for schema_name, table_name, column_name, data_type, ordinal, nullable in self._fetchall(
            columns_sql
        ):
            table = tables.get((schema_name, table_name))
            if table is None:
                continue
            table.columns.append(
                SchemaColumn(
                    name=column_name,
                    data_type=data_type,
                    ordinal=ordinal,
                    is_primary_key=(schema_name, table_name, column_name) in primary_keys,
                    is_nullable=nullable == "YES",
                )
            )

        for table in tables.values():
            ref = TableRef(schema_name=table.schema_name, table_name=table.table_name)
            table.row_count = int(self._fetchone(f"SELECT COUNT(*) FROM {qualified(ref)}")[0])

        return ObservedSchema(tables=list(tables.values()))

    def profile_column(self, table: TableRef, column: str, sample_size: int) -> ColumnStats:
        col = quote_ident(column)
        stats_sql = f"""
            SELECT
                COUNT(*) AS row_count,
                COUNT(*) - COUNT({col}) AS null_count,
                COUNT(DISTINCT {col}) AS distinct_count,
                MIN(LENGTH(CAST({col} AS VARCHAR))) AS min_length,
                MAX(LENGTH(CAST({col} AS VARCHAR))) AS max_length,
                CAST(MIN({col}) AS VARCHAR) AS min_value,
                CAST(MAX({col}) AS VARCHAR) AS max_value
            FROM {qualified(table)}
        """
        row_count, null_count, distinct_count, min_len, max_len, min_val, max_val = (
            self._fetchone(stats_sql)
        )

        sample: list[str] = []
        if sample_size > 0 and row_count - null_count > 0:
            sample_sql = f"""
                SELECT v FROM (
                    SELECT CAST({col} AS VARCHAR) AS v
                    FROM {qualified(table)}
                    WHERE {col} IS NOT NULL
                ) USING SAMPLE reservoir({int(sample_size)} ROWS) REPEATABLE ({self._seed})
            """
            sample = [row[0] for row in self._fetchall(sample_sql)]

        return ColumnStats(
            row_count=int(row_count),
            null_count=int(null_count),
            distinct_count=int(distinct_count),
            min_length=min_len,
            max_length=max_len,
            min_value=min_val,
            max_value=max_val,
            sample_values=sample,
        )

    def sample_distinct_values(self, table: TableRef, column: str, limit: int) -> list[str]:
        col = quote_ident(column)
        sql = f"""
            SELECT v FROM (
                SELECT DISTINCT CAST({col} AS VARCHAR) AS v
                FROM {qualified(table)}
                WHERE {col} IS NOT NULL
            ) USING SAMPLE reservoir({int(limit)} ROWS) REPEATABLE ({self._seed})
        """
        return [row[0] for row in self._fetchall(sql)]

    def test_overlap(
        self, values: list[str], target: TableRef, target_column: str
    ) -> OverlapResult:
        if not values:
            return OverlapResult(sampled=0, matched=0)
        col = quote_ident(target_column)
        sql = f"""
            SELECT COUNT(DISTINCT CAST({col} AS VARCHAR))
            FROM {qualified(target)}
            WHERE list_contains(?::VARCHAR[], CAST({col} AS VARCHAR))
        """
        matched = int(self._fetchone(sql, [values])[0])
        return OverlapResult(sampled=len(set(values)), matched=matched)

    def analyze_join(
        self,
        source: TableRef,
        source_column: str,
        target: TableRef,
        target_column: str,
    ) -> JoinAnalysis:
        sc = quote_ident(source_column)
        tc = quote_ident(target_column)
        sql = f"""
            WITH
            src AS (
                SELECT CAST({sc} AS VARCHAR) AS v FROM {qualified(source)} WHERE {sc} IS NOT NULL
            ),
            tgt AS (
                SELECT CAST({tc} AS VARCHAR) AS v FROM {qualified(target)} WHERE {tc} IS NOT NULL
            ),
            src_counts AS (SELECT v, COUNT(*) AS n FROM src GROUP BY v),
            tgt_counts AS (SELECT v, COUNT(*) AS n FROM tgt GROUP BY v),
            matched_tgt AS (
                SELECT t.v, t.n FROM tgt_counts t WHERE t.v IN (SELECT v FROM src_counts)
            )
            SELECT
                (SELECT COUNT(*) FROM src) AS source_rows,
                (SELECT COUNT(*) FROM src WHERE v IN (SELECT v FROM tgt_counts)) AS matched_rows,
                (SELECT COUNT(*) FROM src_counts) AS source_distinct,
                (SELECT COALESCE(MAX(n), 0) FROM src_counts) AS max_source_repeat,
                (SELECT COUNT(*) FROM tgt) AS target_rows,
                (SELECT COUNT(*) FROM tgt_counts) AS target_distinct,
                (SELECT COUNT(*) FROM matched_tgt) AS target_matched_distinct,
                (SELECT COALESCE(MAX(n), 0) FROM matched_tgt) AS max_target_repeat,
                (SELECT MAX(TRY_CAST(v AS DOUBLE)) FROM src) AS max_source_value
        """
        row = self._fetchone(sql)
        return JoinAnalysis(
            source_rows=int(row[0]),
            matched_rows=int(row[1]),
            source_distinct=int(row[2]),
            max_source_repeat=int(row[3]),
            target_rows=int(row[4]),
            target_distinct=int(row[5]),
            target_matched_distinct=int(row[6]),
            max_target_repeat=int(row[7]),
            max_source_value=float(row[8]) if row[8] is not None else None,
        )
