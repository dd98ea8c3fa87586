"""Pydantic models for relationship resolution."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from schemasense.core.models.base import Cardinality


class KeyColumn(BaseModel):
    """A column a reference may point at (declared or inferred unique key)."""

    schema_name: str
    table_name: str
    column_name: str
    data_type: str
    declared: bool = True

    @property
    def qualified_table(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


class SourceColumn(BaseModel):
    """A column tested as a reference to some key."""

    schema_name: str
    table_name: str
    column_name: str
    data_type: str

    @property
    def qualified_table(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    def __str__(self) -> str:
        return f"{self.qualified_table}.{self.column_name}"


class RelationshipCandidate(BaseModel):
    """Output of the sampled overlap pass. Never persisted."""

    source: SourceColumn
    target: KeyColumn
    sampled: int
    matched: int

    @property
    def sample_match_rate(self) -> float:
        return self.matched / self.sampled if self.sampled else 0.0


class VerifiedRelationship(BaseModel):
    """A candidate confirmed over the complete data."""

    source_table: str
    source_column: str
    target_table: str
    target_column: str
    cardinality: Cardinality
    match_rate: float  # percent, two decimals
    orphan_count: int
    sample_match_rate: float
    confidence: float

    # Semantic role, assigned only after verification
    role: str | None = None
    role_description: str | None = None
    role_confidence: float | None = None
    role_source: str | None = None  # llm, name

    evidence: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (self.source_table, self.source_column, self.target_table, self.target_column)


class RejectedCandidate(BaseModel):
    """A candidate dropped during verification, with the reason."""

    source_table: str
    source_column: str
    target_table: str
    target_column: str
    reason: str


class ResolverResult(BaseModel):
    """Everything one resolver pass produced."""

    relationships: list[VerifiedRelationship] = Field(default_factory=list)
    rejected: list[RejectedCandidate] = Field(default_factory=list)
    sources_tested: int = 0
    candidates_found: int = 0
    warnings: list[str] = Field(default_factory=list)
