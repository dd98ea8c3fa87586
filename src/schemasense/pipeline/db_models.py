"""Pipeline database models.

SQLAlchemy models for extraction runs and step checkpoints.
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
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schemasense.storage.base import Base, TenantScoped


class ExtractionRun(TenantScoped, Base):
    """One build attempt of an ontology.

    At most one run per ontology is 'running' (partial unique index).
    """

    __tablename__ = "extraction_runs"

    run_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    ontology_id: Mapped[str] = mapped_column(
        ForeignKey("ontologies.ontology_id", ondelete="CASCADE"), nullable=False, index=True
    )

    # running, succeeded, failed
    status: Mapped[str] = mapped_column(String, nullable=False, default="running")
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    degraded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skipped_steps: Mapped[list[str]] = mapped_column(JSON, default=list)
    failing_step: Mapped[str | None] = mapped_column(String)
    error: Mapped[str | None] = mapped_column(String)

    # Run this one resumed from (its succeeded steps were reused)
    resumed_from_run_id: Mapped[str | None] = mapped_column(String)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    started_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    # Heartbeat; a running row not touched within the stale timeout may be taken over
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    total_duration_seconds: Mapped[float] = mapped_column(Float, default=0.0)

    # Aggregate metrics
    steps_succeeded: Mapped[int] = mapped_column(Integer, default=0)
    steps_failed: Mapped[int] = mapped_column(Integer, default=0)
    steps_skipped: Mapped[int] = mapped_column(Integer, default=0)
    total_llm_calls: Mapped[int] = mapped_column(Integer, default=0)
    total_llm_input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_llm_output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_retries: Mapped[int] = mapped_column(Integer, default=0)

    checkpoints: Mapped[list[StepCheckpoint]] = relationship(
        back_populates="run", cascade="all, delete-orphan"
    )


Index(
    "uq_extraction_runs_active",
    ExtractionRun.ontology_id,
    unique=True,
    sqlite_where=text("status = 'running'"),
    postgresql_where=text("status = 'running'"),
)


class StepCheckpoint(TenantScoped, Base):
    """State of one step within one run. Enables resume and status polling."""

    __tablename__ = "step_checkpoints"
    __table_args__ = (UniqueConstraint("run_id", "step_name", name="uq_checkpoint_run_step"),)

    checkpoint_id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid4())
    )
    run_id: Mapped[str] = mapped_column(
        ForeignKey("extraction_runs.run_id", ondelete="CASCADE"), nullable=False, index=True
    )
    ontology_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    step_name: Mapped[str] = mapped_column(String, nullable=False)

    # pending, running, succeeded, failed, skipped
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    retries: Mapped[int] = mapped_column(Integer, default=0)

    # Progress
    progress_current: Mapped[int] = mapped_column(Integer, default=0)
    progress_total: Mapped[int] = mapped_column(Integer, default=0)
    progress_message: Mapped[str | None] = mapped_column(String)
    progress_percentage: Mapped[float] = mapped_column(Float, default=0.0)

    # Outputs (for passing to dependent steps)
    outputs: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    # Run whose result this checkpoint reuses
    reused_from_run_id: Mapped[str | None] = mapped_column(String)

    error: Mapped[str | None] = mapped_column(String)
    warnings: Mapped[list[str]] = mapped_column(JSON, default=list)

    started_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    duration_seconds: Mapped[float] = mapped_column(Float, default=0.0)

    # Metrics
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    records_created: Mapped[int] = mapped_column(Integer, default=0)
    tables_processed: Mapped[int] = mapped_column(Integer, default=0)
    columns_processed: Mapped[int] = mapped_column(Integer, default=0)
    llm_calls: Mapped[int] = mapped_column(Integer, default=0)
    llm_input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    llm_output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    db_queries: Mapped[int] = mapped_column(Integer, default=0)
    db_writes: Mapped[int] = mapped_column(Integer, default=0)
    timings: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)

    run: Mapped[ExtractionRun] = relationship(back_populates="checkpoints")
