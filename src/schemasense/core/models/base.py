"""Base models and types used across all modules.

This module contains the fundamental types that don't belong to any specific
domain module (features, relationships, ontology, etc.).
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Result[T](BaseModel):
    """Result type for operations that can fail.

    Use this instead of exceptions for expected failures.
    Exceptions are reserved for configuration and programming errors.
    """

    success: bool
    value: T | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, value: T, warnings: list[str] | None = None) -> Result[T]:
        """Create a successful result."""
        return cls(success=True, value=value, warnings=warnings or [])

    @classmethod
    def fail(cls, error: str) -> Result[T]:
        """Create a failed result."""
        return cls(success=False, error=error)

    def unwrap(self) -> T:
        """Get the value or raise if failed."""
        if not self.success:
            raise ValueError(f"Result failed: {self.error}")
        assert self.value is not None
        return self.value

    def map(self, fn: Callable[[T], Any]) -> Result[Any]:
        """Transform the value if successful."""
        if self.success and self.value is not None:
            return Result.ok(fn(self.value), self.warnings)
        return self


# === Enums ===


_PROVENANCE_RANK = {"inferred": 0, "agent_tool": 1, "manual": 2}


class Provenance(str, Enum):
    """Origin of a metadata record, totally ordered by precedence.

    manual > agent_tool > inferred
    """

    INFERRED = "inferred"
    AGENT_TOOL = "agent_tool"
    MANUAL = "manual"

    @property
    def rank(self) -> int:
        return _PROVENANCE_RANK[self.value]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Provenance):
            return NotImplemented
        return self.rank < other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Provenance):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Provenance):
            return NotImplemented
        return self.rank <= other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Provenance):
            return NotImplemented
        return self.rank >= other.rank


class Cardinality(str, Enum):
    """Relationship cardinality, read source -> target."""

    ONE_TO_ONE = "1:1"
    ONE_TO_MANY = "1:N"
    MANY_TO_ONE = "N:1"
    MANY_TO_MANY = "N:M"


class ColumnRole(str, Enum):
    """Structural role of a column."""

    PRIMARY_KEY = "primary_key"
    FOREIGN_KEY = "foreign_key"
    ATTRIBUTE = "attribute"
    MEASURE = "measure"
    UNKNOWN = "unknown"


class ClassificationPath(str, Enum):
    """Routing decision made from data type and value patterns."""

    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"
    ENUM = "enum"
    UUID = "uuid"
    EXTERNAL_ID = "external_id"
    NUMERIC = "numeric"
    TEXT = "text"
    JSON = "json"
    UNKNOWN = "unknown"


class SemanticType(str, Enum):
    """Semantic subtype assigned to a column."""

    SOFT_DELETE = "soft_delete"
    AUDIT_CREATED = "audit_created"
    AUDIT_UPDATED = "audit_updated"
    EVENT_TIME = "event_time"
    INTERVAL_START = "interval_start"
    INTERVAL_END = "interval_end"
    BOOLEAN = "boolean"
    ENUM = "enum"
    RATING = "rating"
    UUID_IDENTIFIER = "uuid_identifier"
    SEQUENTIAL_IDENTIFIER = "sequential_identifier"
    EXTERNAL_IDENTIFIER = "external_identifier"
    MONETARY_AMOUNT = "monetary_amount"
    CURRENCY_CODE = "currency_code"
    QUANTITY = "quantity"
    EMAIL = "email"
    URL = "url"
    FREE_TEXT = "free_text"
    JSON = "json"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> SemanticType:
        """Lenient conversion for collaborator output."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


# === Identifiers ===


class ColumnRef(BaseModel):
    """Reference to a column by name."""

    table_name: str
    column_name: str

    def __str__(self) -> str:
        return f"{self.table_name}.{self.column_name}"

    def __hash__(self) -> int:
        return hash((self.table_name, self.column_name))
