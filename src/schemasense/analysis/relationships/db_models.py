"""SQLAlchemy model for verified relationships.

Keyed by (ontology, source table, source column, target table, target
column) using qualified names, so a manual relationship outlives the
recorded column it points at and is only flagged stale.
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from schemasense.storage.base import Base, ProvenanceTracked, TenantScoped


class Relationship(TenantScoped, ProvenanceTracked, Base):
    """A relationship between two columns, verified from data or curated."""

    __tablename__ = "relationships"
    __table_args__ = (
        UniqueConstraint(
            "ontology_id",
            "source_table",
            "source_column",
            "target_table",
            "target_column",
            name="uq_relationship_columns",
        ),
    )

    relationship_id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid4())
    )
    ontology_id: Mapped[str] = mapped_column(
        ForeignKey("ontologies.ontology_id", ondelete="CASCADE"), nullable=False
    )

    source_table: Mapped[str] = mapped_column(String, nullable=False)
    source_column: Mapped[str] = mapped_column(String, nullable=False)
    target_table: Mapped[str] = mapped_column(String, nullable=False)
    target_column: Mapped[str] = mapped_column(String, nullable=False)

    cardinality: Mapped[str | None] = mapped_column(String)  # '1:1', '1:N', 'N:1', 'N:M'
    match_rate: Mapped[float | None] = mapped_column(Float)  # percent
    orphan_count: Mapped[int | None] = mapped_column(Integer)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    role: Mapped[str | None] = mapped_column(String)
    role_description: Mapped[str | None] = mapped_column(String)
    role_confidence: Mapped[float | None] = mapped_column(Float)
    role_source: Mapped[str | None] = mapped_column(String)  # llm, name, manual

    evidence: Mapped[dict[str, Any] | None] = mapped_column(JSON)


Index("idx_relationships_source", Relationship.ontology_id, Relationship.source_table)
Index("idx_relationships_target", Relationship.ontology_id, Relationship.target_table)
