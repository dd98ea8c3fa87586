"""SQLAlchemy model for column classifier output.

One record per recorded column, replaced in place on every run. The full
feature bag is stored as JSON; queryable dimensions are columns.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from schemasense.storage.base import Base, TenantScoped


class ColumnFeatureRecord(TenantScoped, Base):
    """Classifier result for one column."""

    __tablename__ = "column_features"

    feature_id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid4())
    )
    column_id: Mapped[str] = mapped_column(
        ForeignKey("columns.column_id", ondelete="CASCADE"), nullable=False, unique=True
    )
    ontology_id: Mapped[str] = mapped_column(
        ForeignKey("ontologies.ontology_id", ondelete="CASCADE"), nullable=False, index=True
    )

    classification_path: Mapped[str] = mapped_column(String, nullable=False)
    semantic_type: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    description: Mapped[str | None] = mapped_column(String)
    reasoning: Mapped[str | None] = mapped_column(String)
    classified_by: Mapped[str] = mapped_column(String, nullable=False)  # rule, llm, none

    # FeatureBag as JSON (discriminated on "kind")
    features: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    needs_fk_resolution: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    needs_cross_column_check: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error: Mapped[str | None] = mapped_column(String)

    run_id: Mapped[str | None] = mapped_column(String)
    classified_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
