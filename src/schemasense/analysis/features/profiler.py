"""Column profiling.

Profiles are computed column by column; a failing column yields a failed
``Result`` and never prevents its siblings from being profiled.
"""

from __future__ import annotations

from schemasense.analysis.features.models import ColumnProfile
from schemasense.core.logging import get_logger
from schemasense.core.models import Result
from schemasense.datasource import DataSource, SchemaTable, TableRef

logger = get_logger(__name__)


def profile_column(
    datasource: DataSource,
    table: SchemaTable,
    column_name: str,
    sample_size: int,
) -> Result[ColumnProfile]:
    """Profile one column (row/null/distinct counts, lengths, reservoir sample)."""
    column = table.get_column(column_name)
    if column is None:
        return Result.fail(f"Column {column_name} not found in {table.qualified_name}")

    ref = TableRef(schema_name=table.schema_name, table_name=table.table_name)
    try:
        stats = datasource.profile_column(ref, column_name, sample_size)
    except Exception as e:
        logger.warning(
            "column_profile_failed",
            table=table.qualified_name,
            column=column_name,
            error=str(e),
        )
        return Result.fail(f"Profiling {table.qualified_name}.{column_name} failed: {e}")

    return Result.ok(
        ColumnProfile(
            table_name=table.qualified_name,
            column_name=column_name,
            data_type=column.data_type,
            is_primary_key=column.is_primary_key,
            row_count=stats.row_count,
            null_count=stats.null_count,
            distinct_count=stats.distinct_count,
            min_length=stats.min_length,
            max_length=stats.max_length,
            min_value=stats.min_value,
            max_value=stats.max_value,
            sample_values=stats.sample_values,
        )
    )


def profile_table(
    datasource: DataSource, table: SchemaTable, sample_size: int
) -> dict[str, Result[ColumnProfile]]:
    """Profile every column of a table, isolating per-column failures."""
    return {
        column.name: profile_column(datasource, table, column.name, sample_size)
        for column in table.columns
    }
