"""Run status utilities.

Query and display extraction run status. While a step is still running its
live progress comes from the in-process progress registry; otherwise the
persisted checkpoint is authoritative.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from schemasense.core.errors import NotFoundError
from schemasense.pipeline.base import PIPELINE_DAG, PhaseStatus
from schemasense.pipeline.db_models import ExtractionRun, StepCheckpoint
from schemasense.pipeline.progress import ProgressReporter, get_progress_reporter


@dataclass
class PhaseStatusInfo:
    """Status information for a single step."""

    name: str
    description: str
    status: PhaseStatus
    optional: bool = False
    progress_current: int = 0
    progress_total: int = 0
    progress_percentage: float = 0.0
    progress_message: str | None = None
    attempts: int = 0
    retries: int = 0
    duration_seconds: float | None = None
    completed_at: datetime | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    reused_from_run_id: str | None = None
    records_processed: int = 0
    records_created: int = 0


@dataclass
class RunStatus:
    """Status of one extraction run."""

    run_id: str
    ontology_id: str
    status: str
    started_at: datetime
    completed_at: datetime | None
    cancelled: bool
    degraded: bool
    skipped_steps: list[str]
    failing_step: str | None
    error: str | None
    resumed_from_run_id: str | None
    phases: list[PhaseStatusInfo]

    @property
    def completed_count(self) -> int:
        """Number of succeeded steps."""
        return sum(1 for p in self.phases if p.status == PhaseStatus.SUCCEEDED)

    @property
    def total_count(self) -> int:
        return len(self.phases)

    @property
    def progress_percent(self) -> float:
        """Completion percentage across steps."""
        if self.total_count == 0:
            return 0.0
        settled = sum(
            1 for p in self.phases if p.status in (PhaseStatus.SUCCEEDED, PhaseStatus.SKIPPED)
        )
        return (settled / self.total_count) * 100

    @property
    def current_step(self) -> str | None:
        for phase in self.phases:
            if phase.status == PhaseStatus.RUNNING:
                return phase.name
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "ontology_id": self.ontology_id,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled": self.cancelled,
            "degraded": self.degraded,
            "skipped_steps": self.skipped_steps,
            "failing_step": self.failing_step,
            "error": self.error,
            "resumed_from_run_id": self.resumed_from_run_id,
            "current_step": self.current_step,
            "completed": self.completed_count,
            "total": self.total_count,
            "progress_percent": round(self.progress_percent, 1),
            "phases": [
                {
                    "name": p.name,
                    "description": p.description,
                    "status": p.status.value,
                    "optional": p.optional,
                    "progress": {
                        "current": p.progress_current,
                        "total": p.progress_total,
                        "percentage": p.progress_percentage,
                        "message": p.progress_message,
                    },
                    "attempts": p.attempts,
                    "retries": p.retries,
                    "duration_seconds": p.duration_seconds,
                    "completed_at": p.completed_at.isoformat() if p.completed_at else None,
                    "error": p.error,
                    "warnings": p.warnings,
                    "reused_from_run_id": p.reused_from_run_id,
                    "records_processed": p.records_processed,
                    "records_created": p.records_created,
                }
                for p in self.phases
            ],
        }


def get_run_status(
    session: Session,
    ontology_id: str,
    run_id: str | None = None,
    reporter: ProgressReporter | None = None,
) -> RunStatus:
    """Get the status of a run, the latest one for the ontology by default.

    Raises:
        NotFoundError: No such run (or the ontology has none)
    """
    stmt = select(ExtractionRun).where(ExtractionRun.ontology_id == ontology_id)
    if run_id is not None:
        stmt = stmt.where(ExtractionRun.run_id == run_id)
    else:
        stmt = stmt.order_by(ExtractionRun.started_at.desc()).limit(1)
    run = session.execute(stmt).scalar_one_or_none()
    if run is None:
        target = run_id or "any run"
        raise NotFoundError(f"No extraction run ({target}) for ontology {ontology_id}")

    reporter = reporter or get_progress_reporter()
    by_step = {c.step_name: c for c in run.checkpoints}

    phases: list[PhaseStatusInfo] = []
    for definition in PIPELINE_DAG:
        checkpoint = by_step.get(definition.name)
        if checkpoint is None:
            phases.append(
                PhaseStatusInfo(
                    name=definition.name,
                    description=definition.description,
                    status=PhaseStatus.PENDING,
                    optional=definition.optional,
                )
            )
            continue

        info = PhaseStatusInfo(
            name=definition.name,
            description=definition.description,
            status=PhaseStatus(checkpoint.status),
            optional=definition.optional,
            progress_current=checkpoint.progress_current,
            progress_total=checkpoint.progress_total,
            progress_percentage=checkpoint.progress_percentage,
            progress_message=checkpoint.progress_message,
            attempts=checkpoint.attempts,
            retries=checkpoint.retries,
            duration_seconds=checkpoint.duration_seconds,
            completed_at=checkpoint.completed_at,
            error=checkpoint.error,
            warnings=list(checkpoint.warnings or []),
            reused_from_run_id=checkpoint.reused_from_run_id,
            records_processed=checkpoint.records_processed,
            records_created=checkpoint.records_created,
        )
        if info.status == PhaseStatus.RUNNING:
            live = reporter.live(run.run_id, definition.name)
            if live is not None and live.percentage >= info.progress_percentage:
                info.progress_current = live.current
                info.progress_total = live.total
                info.progress_percentage = live.percentage
                info.progress_message = live.message
        phases.append(info)

    return RunStatus(
        run_id=run.run_id,
        ontology_id=run.ontology_id,
        status=run.status,
        started_at=run.started_at,
        completed_at=run.completed_at,
        cancelled=run.cancelled,
        degraded=run.degraded,
        skipped_steps=list(run.skipped_steps or []),
        failing_step=run.failing_step,
        error=run.error,
        resumed_from_run_id=run.resumed_from_run_id,
        phases=phases,
    )


def list_runs(session: Session, ontology_id: str, limit: int = 20) -> list[ExtractionRun]:
    """Most recent runs of an ontology, newest first."""
    stmt = (
        select(ExtractionRun)
        .where(ExtractionRun.ontology_id == ontology_id)
        .order_by(ExtractionRun.started_at.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())


def reset_runs(session: Session, ontology_id: str) -> int:
    """Delete the run history of an ontology so the next run starts fresh.

    Returns:
        Number of checkpoints deleted
    """
    count_stmt = (
        select(func.count())
        .select_from(StepCheckpoint)
        .where(StepCheckpoint.ontology_id == ontology_id)
    )
    count = session.execute(count_stmt).scalar() or 0

    runs = session.execute(
        select(ExtractionRun).where(ExtractionRun.ontology_id == ontology_id)
    ).scalars()
    for run in runs:
        session.delete(run)
    session.flush()
    return count
