"""SQLAlchemy models for projects, ontologies and the recorded schema.

The recorded schema is the last schema observed in the datasource. Schema
refresh diffs it against a fresh observation to produce pending changes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schemasense.storage.base import Base, TenantScoped


class Project(Base):
    """A tenant. Every ontology and metadata row belongs to exactly one project."""

    __tablename__ = "projects"

    project_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


class Ontology(TenantScoped, Base):
    """Semantic metadata layer built over one datasource."""

    __tablename__ = "ontologies"
    __table_args__ = (UniqueConstraint("project_id", "name", name="uq_project_ontology_name"),)

    ontology_id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid4())
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    # empty, building, ready, failed
    status: Mapped[str] = mapped_column(String, nullable=False, default="empty")
    last_built_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )

    tables: Mapped[list[Table]] = relationship(
        back_populates="ontology", cascade="all, delete-orphan"
    )


class Table(TenantScoped, Base):
    """A table as last observed in the datasource."""

    __tablename__ = "tables"
    __table_args__ = (
        UniqueConstraint("ontology_id", "schema_name", "table_name", name="uq_ontology_table"),
    )

    table_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    ontology_id: Mapped[str] = mapped_column(
        ForeignKey("ontologies.ontology_id", ondelete="CASCADE"), nullable=False
    )
    schema_name: Mapped[str] = mapped_column(String, nullable=False, default="main")
    table_name: Mapped[str] = mapped_column(String, nullable=False)
    row_count: Mapped[int | None] = mapped_column(Integer)
    # Cleared when a reviewer rejects the table; deselected tables are not analysed
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    last_profiled_at: Mapped[datetime | None] = mapped_column(DateTime)

    ontology: Mapped[Ontology] = relationship(back_populates="tables")
    columns: Mapped[list[Column]] = relationship(
        back_populates="table", cascade="all, delete-orphan", order_by="Column.ordinal"
    )

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


class Column(TenantScoped, Base):
    """A column as last observed, with its most recent profile."""

    __tablename__ = "columns"
    __table_args__ = (UniqueConstraint("table_id", "column_name", name="uq_table_column"),)

    column_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    table_id: Mapped[str] = mapped_column(
        ForeignKey("tables.table_id", ondelete="CASCADE"), nullable=False
    )
    column_name: Mapped[str] = mapped_column(String, nullable=False)
    data_type: Mapped[str] = mapped_column(String, nullable=False)
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_primary_key: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_nullable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Last profile
    null_count: Mapped[int | None] = mapped_column(Integer)
    distinct_count: Mapped[int | None] = mapped_column(Integer)
    min_length: Mapped[int | None] = mapped_column(Integer)
    max_length: Mapped[int | None] = mapped_column(Integer)
    min_value: Mapped[str | None] = mapped_column(String)
    max_value: Mapped[str | None] = mapped_column(String)
    sample_values: Mapped[list[Any] | None] = mapped_column(JSON)
    profiled_at: Mapped[datetime | None] = mapped_column(DateTime)

    table: Mapped[Table] = relationship(back_populates="columns")


Index("idx_columns_table", Column.table_id)
