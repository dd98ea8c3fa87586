"""Schema/data source collaborator interface.

The extraction core only needs three capabilities from a datasource:
get the schema, profile a column, and test value overlap. Everything is
read-only.
"""

from abc import ABC, abstractmethod

from schemasense.datasource.models import (
    ColumnStats,
    JoinAnalysis,
    ObservedSchema,
    OverlapResult,
    TableRef,
)


class DataSource(ABC):
    """Abstract base for datasources.

    Implementations must be safe to call from several worker threads at once.
    """

    @abstractmethod
    def get_schema(self) -> ObservedSchema:
        """Enumerate tables and columns, with declared primary keys and row counts."""
        ...

    @abstractmethod
    def profile_column(self, table: TableRef, column: str, sample_size: int) -> ColumnStats:
        """Compute statistics and a reservoir sample for one column."""
        ...

    @abstractmethod
    def sample_distinct_values(self, table: TableRef, column: str, limit: int) -> list[str]:
        """Return up to ``limit`` distinct non-null values, sampled without bias."""
        ...

    @abstractmethod
    def test_overlap(
        self, values: list[str], target: TableRef, target_column: str
    ) -> OverlapResult:
        """Count how many of ``values`` exist in the target column."""
        ...

    @abstractmethod
    def analyze_join(
        self,
        source: TableRef,
        source_column: str,
        target: TableRef,
        target_column: str,
    ) -> JoinAnalysis:
        """Compute full-data match, orphan and multiplicity metrics."""
        ...
