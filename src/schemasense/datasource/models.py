"""Pydantic models exchanged with a schema/data source."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SchemaColumn(BaseModel):
    """A column as reported by the datasource."""

    name: str
    data_type: str
    ordinal: int = 0
    is_primary_key: bool = False
    is_nullable: bool = True


class SchemaTable(BaseModel):
    """A table as reported by the datasource."""

    schema_name: str = "main"
    table_name: str
    row_count: int | None = None
    columns: list[SchemaColumn] = Field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    def get_column(self, name: str) -> SchemaColumn | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class ObservedSchema(BaseModel):
    """Full schema snapshot."""

    tables: list[SchemaTable] = Field(default_factory=list)

    def get_table(self, qualified_name: str) -> SchemaTable | None:
        for table in self.tables:
            if table.qualified_name == qualified_name:
                return table
        return None


class TableRef(BaseModel):
    """Reference to a table in the datasource."""

    schema_name: str = "main"
    table_name: str

    def __str__(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


class ColumnStats(BaseModel):
    """Per-column statistics plus a reservoir sample of values (as text)."""

    row_count: int
    null_count: int
    distinct_count: int
    min_length: int | None = None
    max_length: int | None = None
    min_value: str | None = None
    max_value: str | None = None
    sample_values: list[str] = Field(default_factory=list)


class OverlapResult(BaseModel):
    """Fraction of sampled source values present in a target column."""

    sampled: int
    matched: int

    @property
    def match_rate(self) -> float:
        return self.matched / self.sampled if self.sampled else 0.0


class JoinAnalysis(BaseModel):
    """Full-data join metrics between a source column and a target column."""

    source_rows: int
    matched_rows: int
    source_distinct: int
    max_source_repeat: int
    target_rows: int
    target_distinct: int
    target_matched_distinct: int
    max_target_repeat: int
    max_source_value: float | None = None

    @property
    def orphan_rows(self) -> int:
        return self.source_rows - self.matched_rows

    @property
    def reverse_orphan_count(self) -> int:
        """Distinct target values that no source row references."""
        return self.target_distinct - self.target_matched_distinct
