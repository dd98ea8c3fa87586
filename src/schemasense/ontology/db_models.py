"""SQLAlchemy models for the ontology: merge-managed records and pending changes.

Entities, column annotations and facts are keyed by stable schema identity
(qualified table name, column name, term), not by recorded-schema row ids,
so curated records survive schema churn and are flagged stale instead.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from schemasense.storage.base import Base, ProvenanceTracked, TenantScoped


class Entity(TenantScoped, ProvenanceTracked, Base):
    """A business entity backed by one table."""

    __tablename__ = "entities"
    __table_args__ = (
        UniqueConstraint("ontology_id", "primary_table", name="uq_entity_table"),
    )

    entity_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    ontology_id: Mapped[str] = mapped_column(
        ForeignKey("ontologies.ontology_id", ondelete="CASCADE"), nullable=False
    )
    primary_table: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(String)
    row_count: Mapped[int | None] = mapped_column(Integer)


class ColumnAnnotation(TenantScoped, ProvenanceTracked, Base):
    """Semantic annotation of one column."""

    __tablename__ = "column_annotations"
    __table_args__ = (
        UniqueConstraint("ontology_id", "table_name", "column_name", name="uq_annotation_column"),
    )

    annotation_id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid4())
    )
    ontology_id: Mapped[str] = mapped_column(
        ForeignKey("ontologies.ontology_id", ondelete="CASCADE"), nullable=False
    )
    table_name: Mapped[str] = mapped_column(String, nullable=False)
    column_name: Mapped[str] = mapped_column(String, nullable=False)

    data_type: Mapped[str | None] = mapped_column(String)
    semantic_type: Mapped[str | None] = mapped_column(String)
    role: Mapped[str | None] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(String)
    confidence: Mapped[float | None] = mapped_column(Float)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enum_values: Mapped[list[str] | None] = mapped_column(JSON)


class Fact(TenantScoped, ProvenanceTracked, Base):
    """A business term and its definition."""

    __tablename__ = "facts"
    __table_args__ = (UniqueConstraint("ontology_id", "term", name="uq_fact_term"),)

    fact_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    ontology_id: Mapped[str] = mapped_column(
        ForeignKey("ontologies.ontology_id", ondelete="CASCADE"), nullable=False
    )
    term: Mapped[str] = mapped_column(String, nullable=False)
    definition: Mapped[str] = mapped_column(String, nullable=False)
    related_tables: Mapped[list[str] | None] = mapped_column(JSON)
    confidence: Mapped[float | None] = mapped_column(Float)


class PendingChange(TenantScoped, Base):
    """A detected schema delta.

    status values:
    - 'pending': additive/ambiguous delta awaiting review
    - 'approved' / 'rejected': reviewed
    - 'auto_applied': destructive delta, already reflected; informational only
    """

    __tablename__ = "pending_changes"

    change_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    ontology_id: Mapped[str] = mapped_column(
        ForeignKey("ontologies.ontology_id", ondelete="CASCADE"), nullable=False
    )

    # new_table, dropped_table, new_column, dropped_column, modified_column,
    # new_enum_value, new_fk_pattern
    change_type: Mapped[str] = mapped_column(String, nullable=False)
    table_name: Mapped[str] = mapped_column(String, nullable=False)
    column_name: Mapped[str | None] = mapped_column(String)
    old_value: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    new_value: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    # create_entity, review_entity, create_column_metadata, review_column,
    # update_column_metadata, update_enum_values, create_relationship
    suggested_action: Mapped[str | None] = mapped_column(String)
    suggested_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    # schema_refresh, data_scan
    change_source: Mapped[str] = mapped_column(String, nullable=False, default="schema_refresh")
    detected_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    reviewed_by: Mapped[str | None] = mapped_column(String)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime)
    review_reason: Mapped[str | None] = mapped_column(String)


Index("idx_pending_changes_status", PendingChange.ontology_id, PendingChange.status)


class ClarificationQuestion(TenantScoped, Base):
    """A question for a human about a pattern the data alone cannot explain.

    One question per (table, column, detected pattern); later runs refresh
    pending questions in place and never reopen answered or dismissed ones.
    """

    __tablename__ = "clarification_questions"
    __table_args__ = (
        UniqueConstraint(
            "ontology_id", "table_name", "column_name", "detected_pattern", name="uq_question"
        ),
    )

    question_id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid4())
    )
    ontology_id: Mapped[str] = mapped_column(
        ForeignKey("ontologies.ontology_id", ondelete="CASCADE"), nullable=False
    )
    table_name: Mapped[str] = mapped_column(String, nullable=False)
    column_name: Mapped[str] = mapped_column(String, nullable=False)

    # data_quality, enumeration
    category: Mapped[str] = mapped_column(String, nullable=False)
    # high_null_rate, cryptic_enum_values
    detected_pattern: Mapped[str] = mapped_column(String, nullable=False)
    text: Mapped[str] = mapped_column(String, nullable=False)
    reasoning: Mapped[str | None] = mapped_column(String)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=3)  # 1 = critical
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    answer: Mapped[str | None] = mapped_column(String)
    answered_by: Mapped[str | None] = mapped_column(String)
    answered_at: Mapped[datetime | None] = mapped_column(DateTime)
    run_id: Mapped[str | None] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


Index("idx_questions_status", ClarificationQuestion.ontology_id, ClarificationQuestion.status)
