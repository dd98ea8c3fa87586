"""Schema/data source collaborators."""

from schemasense.datasource.base import DataSource
from schemasense.datasource.duckdb_source import DuckDBDataSource
from schemasense.datasource.models import (
    ColumnStats,
    JoinAnalysis,
    ObservedSchema,
    OverlapResult,
    SchemaColumn,
    SchemaTable,
    TableRef,
)

__all__ = [
    "DataSource",
    "DuckDBDataSource",
    "ColumnStats",
    "JoinAnalysis",
    "ObservedSchema",
    "OverlapResult",
    "SchemaColumn",
    "SchemaTable",
    "TableRef",
]
